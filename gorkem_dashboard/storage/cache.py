"""Optimistic read cache in front of :class:`SheetRecordStore`.

Mutations are applied to the cached copy immediately, persisted through the
store in a background task, and then either reconciled with a fresh read
(success) or rolled back to the pre-mutation snapshot (failure).

Lifecycle of a single mutation::

    IDLE -> SNAPSHOT -> PENDING -> RECONCILING -> IDLE   (store call succeeded)
                           \\-----> IDLE                  (failed; snapshot restored)

Mutations on the same sheet are not serialized. A mutation started while an
earlier one is still pending snapshots the already-optimistic cache, and two
writes to the same row settle in whatever order their responses arrive.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Set

from gorkem_dashboard.storage.errors import SheetsError
from gorkem_dashboard.storage.sheet_store import (
    RECORD_FIELDS,
    ROW_INDEX_KEY,
    Sheet,
    SheetData,
    SheetRecordStore,
    build_record_row,
    cell_text,
    template_headers,
)


logger = logging.getLogger(__name__)


class MutationState(str, Enum):
    IDLE = "idle"
    SNAPSHOT = "snapshot"
    PENDING = "pending"
    RECONCILING = "reconciling"


@dataclass
class CacheEntry:
    data: SheetData
    generation: int


class MutationHandle:
    """Tracks one in-flight mutation and carries its outcome back to the caller."""

    def __init__(self, sheet_name: str, action: str) -> None:
        self.sheet_name = sheet_name
        self.action = action
        self.state = MutationState.IDLE
        self.abandoned = False
        self._outcome: asyncio.Future = asyncio.get_running_loop().create_future()
        self._settled = asyncio.Event()

    async def result(self) -> Any:
        """Wait for the store call; raises the store's error after rollback."""

        return await asyncio.shield(self._outcome)

    async def wait_settled(self) -> None:
        """Wait until the mutation has rolled back or finished reconciling."""

        await self._settled.wait()

    def done(self) -> bool:
        return self._outcome.done()

    def abandon(self) -> None:
        """Stop caring about the outcome. The request itself still runs to completion."""

        self.abandoned = True
        self._outcome.add_done_callback(self._log_abandoned_outcome)

    def _set_result(self, value: Any) -> None:
        if not self._outcome.done():
            self._outcome.set_result(value)

    def _set_exception(self, exc: BaseException) -> None:
        if not self._outcome.done():
            self._outcome.set_exception(exc)

    def _settle(self) -> None:
        self.state = MutationState.IDLE
        self._settled.set()

    def _log_abandoned_outcome(self, future: asyncio.Future) -> None:
        exc = future.exception()
        logger.info(
            "Abandoned mutation finished",
            extra={"sheet_name": self.sheet_name, "action": self.action, "error": str(exc) if exc else None},
        )


class SheetCache:
    """In-memory ``sheet name -> SheetData`` cache with optimistic writes."""

    def __init__(self, store: SheetRecordStore) -> None:
        self.store = store
        self._entries: Dict[str, CacheEntry] = {}
        self._generations: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    def peek(self, sheet_name: str) -> Optional[SheetData]:
        entry = self._entries.get(sheet_name)
        return entry.data if entry else None

    async def get_sheet_data(self, sheet_name: str, refresh: bool = False) -> SheetData:
        entry = self._entries.get(sheet_name)
        if entry is not None and not refresh:
            return entry.data
        return await self.refetch(sheet_name)

    async def refetch(self, sheet_name: str) -> SheetData:
        generation = self._generation(sheet_name)
        data = await self.store.get_sheet_data(sheet_name)
        if self._generation(sheet_name) == generation:
            self._entries[sheet_name] = CacheEntry(data=data, generation=generation)
        return data

    def invalidate(self, sheet_name: str) -> None:
        """Drop the cached copy; in-flight results for it will be discarded."""

        self._generations[sheet_name] = self._generation(sheet_name) + 1
        self._entries.pop(sheet_name, None)

    async def list_sheets(self) -> List[Sheet]:
        """List tabs for presentation code. Failures degrade to an empty list."""

        try:
            return list(await self.store.list_sheets())
        except Exception as exc:  # noqa: BLE001 - listing never fails the page
            logger.warning("Listing sheets failed; returning no sheets", extra={"error": str(exc)})
            return []

    def submit_update(self, sheet_name: str, row_index: int, record: Mapping[str, Any]) -> MutationHandle:
        entry = self._entries.get(sheet_name)
        headers = list(entry.data.headers) if entry else None
        payload = self._complete_row(entry, row_index, record)

        def _apply(data: SheetData) -> None:
            if not 0 <= row_index < len(data.records):
                logger.debug(
                    "Row not cached; skipping optimistic update",
                    extra={"sheet_name": sheet_name, "row_index": row_index},
                )
                return
            target = dict(data.records[row_index])
            for header in data.headers:
                if header in record:
                    target[header] = cell_text(record[header])
            data.records[row_index] = target

        return self._submit(
            sheet_name,
            action="update_record",
            apply=_apply,
            call=lambda: self.store.update_record(sheet_name, row_index, payload, headers=headers),
        )

    @staticmethod
    def _complete_row(
        entry: Optional[CacheEntry], row_index: int, record: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        """Fill headers missing from ``record`` with the cached cell values.

        Row writes cover column A through the last value, so a partial record
        would blank out the columns it skips. Keys that are not headers are
        dropped, matching the optimistic apply.
        """

        if entry is None or not 0 <= row_index < len(entry.data.records):
            return record
        headers = entry.data.headers
        if not any(key in headers for key in record):
            return record
        cached = entry.data.records[row_index]
        return {header: record[header] if header in record else cached.get(header, "") for header in headers}

    async def update_record(self, sheet_name: str, row_index: int, record: Mapping[str, Any]) -> Any:
        return await self.submit_update(sheet_name, row_index, record).result()

    def submit_append(self, sheet_name: str, field_values: Mapping[str, Any]) -> MutationHandle:
        row = build_record_row(field_values)

        def _apply(data: SheetData) -> None:
            if not data.headers:
                return
            new_record = {ROW_INDEX_KEY: str(len(data.records))}
            for column, header in enumerate(data.headers):
                new_record[header] = row[column] if column < len(RECORD_FIELDS) else ""
            data.records.append(new_record)

        return self._submit(
            sheet_name,
            action="append_record",
            apply=_apply,
            call=lambda: self.store.append_record(sheet_name, field_values),
        )

    async def append_record(self, sheet_name: str, field_values: Mapping[str, Any]) -> Any:
        return await self.submit_append(sheet_name, field_values).result()

    async def create_sheet(
        self, name: str, headers: Sequence[str] = (), template: Optional[str] = None
    ) -> Sheet:
        if template is not None and not headers:
            headers = template_headers(template)
        sheet = await self.store.create_sheet(name, headers)
        self.invalidate(name)
        return sheet

    async def delete_sheet(self, sheet_tab_id: int, sheet_name: Optional[str] = None) -> None:
        await self.store.delete_sheet(sheet_tab_id)
        if sheet_name:
            self.invalidate(sheet_name)

    async def rename_sheet(self, sheet_tab_id: int, new_name: str, old_name: Optional[str] = None) -> None:
        await self.store.rename_sheet(sheet_tab_id, new_name)
        if old_name:
            self.invalidate(old_name)
        self.invalidate(new_name)

    async def wait_reconciled(self) -> None:
        """Wait for every in-flight mutation and background refetch to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _generation(self, sheet_name: str) -> int:
        return self._generations.get(sheet_name, 0)

    def _submit(
        self,
        sheet_name: str,
        action: str,
        apply: Callable[[SheetData], None],
        call: Callable[[], Awaitable[Any]],
    ) -> MutationHandle:
        handle = MutationHandle(sheet_name, action)
        generation = self._generation(sheet_name)
        entry = self._entries.get(sheet_name)

        handle.state = MutationState.SNAPSHOT
        snapshot = copy.deepcopy(entry.data) if entry else None
        if entry is not None:
            apply(entry.data)

        handle.state = MutationState.PENDING
        self._spawn(self._run_mutation(handle, call, snapshot, generation))
        return handle

    async def _run_mutation(
        self,
        handle: MutationHandle,
        call: Callable[[], Awaitable[Any]],
        snapshot: Optional[SheetData],
        generation: int,
    ) -> None:
        sheet_name = handle.sheet_name
        try:
            result = await call()
        except Exception as exc:  # noqa: BLE001 - handed to the caller through the handle
            if snapshot is not None and self._generation(sheet_name) == generation:
                self._entries[sheet_name] = CacheEntry(data=snapshot, generation=generation)
                logger.warning(
                    "Mutation failed; cache rolled back",
                    extra={"sheet_name": sheet_name, "action": handle.action, "error": str(exc)},
                )
            handle._settle()
            handle._set_exception(exc)
            return

        handle.state = MutationState.RECONCILING
        handle._set_result(result)
        self._spawn(self._reconcile(handle, generation))

    async def _reconcile(self, handle: MutationHandle, generation: int) -> None:
        sheet_name = handle.sheet_name
        try:
            data = await self.store.get_sheet_data(sheet_name)
        except SheetsError as exc:
            logger.warning(
                "Background refetch failed; keeping optimistic data",
                extra={"sheet_name": sheet_name, "error": str(exc)},
            )
        else:
            if self._generation(sheet_name) == generation:
                self._entries[sheet_name] = CacheEntry(data=data, generation=generation)
            else:
                logger.info("Discarded stale refetch", extra={"sheet_name": sheet_name})
        finally:
            handle._settle()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


__all__ = ["CacheEntry", "MutationHandle", "MutationState", "SheetCache"]
