"""Authenticated access to the Google Sheets v4 API.

This is the only module that performs I/O. Every call is translated into the
``AuthRequired`` / ``TransportError`` / ``NotFound`` taxonomy and is attempted
exactly once; retry policy belongs to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import httplib2
from google.auth import exceptions as auth_exceptions
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gorkem_dashboard.storage.credentials import CredentialProvider
from gorkem_dashboard.storage.errors import AuthRequired, NotFound, SheetsError, TransportError


logger = logging.getLogger(__name__)

T = TypeVar("T")

VALUE_INPUT_OPTION = "USER_ENTERED"
METADATA_FIELDS = "properties.title,sheets.properties"
AUTH_STATUSES = {401, 403}
# The API answers 400 rather than 404 for unknown tab names and tab ids.
NOT_FOUND_MARKERS = ("Unable to parse range", "No grid with id")


@dataclass(frozen=True)
class ClientConfig:
    """Explicit construction-time configuration for the transport and store."""

    spreadsheet_id: str
    credential_provider: CredentialProvider
    api_base_url: Optional[str] = None


class SheetsTransport:
    """Thin wrapper over ``spreadsheets`` and ``spreadsheets.values`` resources."""

    def __init__(self, config: ClientConfig, service: Any | None = None) -> None:
        self.config = config
        self._service = service
        self._service_injected = service is not None
        self._credentials: Any | None = None

    @property
    def spreadsheet_id(self) -> str:
        return self.config.spreadsheet_id

    def get_spreadsheet_metadata(self) -> Dict[str, Any]:
        """Return spreadsheet properties and per-tab properties."""

        def _execute_get_metadata():
            return (
                self._get_service()
                .spreadsheets()
                .get(spreadsheetId=self.spreadsheet_id, fields=METADATA_FIELDS)
                .execute()
            )

        return self._execute(_execute_get_metadata, action="get_spreadsheet_metadata") or {}

    def get_values(self, range_name: str) -> List[List[str]]:
        def _execute_get():
            return (
                self._get_service()
                .spreadsheets()
                .values()
                .get(spreadsheetId=self.spreadsheet_id, range=range_name)
                .execute()
            )

        result = self._execute(_execute_get, action="get_values", range_name=range_name) or {}
        return result.get("values", [])

    def append_values(self, range_name: str, rows: Sequence[Sequence[str]]) -> Dict[str, Any]:
        def _execute_append():
            return (
                self._get_service()
                .spreadsheets()
                .values()
                .append(
                    spreadsheetId=self.spreadsheet_id,
                    range=range_name,
                    valueInputOption=VALUE_INPUT_OPTION,
                    insertDataOption="INSERT_ROWS",
                    body={"values": [list(row) for row in rows]},
                )
                .execute()
            )

        return self._execute(_execute_append, action="append_values", range_name=range_name) or {}

    def update_values(self, range_name: str, rows: Sequence[Sequence[str]]) -> Dict[str, Any]:
        def _execute_update():
            return (
                self._get_service()
                .spreadsheets()
                .values()
                .update(
                    spreadsheetId=self.spreadsheet_id,
                    range=range_name,
                    valueInputOption=VALUE_INPUT_OPTION,
                    body={"values": [list(row) for row in rows]},
                )
                .execute()
            )

        return self._execute(_execute_update, action="update_values", range_name=range_name) or {}

    def batch_update(self, requests: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        def _execute_batch_update():
            return (
                self._get_service()
                .spreadsheets()
                .batchUpdate(spreadsheetId=self.spreadsheet_id, body={"requests": list(requests)})
                .execute()
            )

        return self._execute(_execute_batch_update, action="batch_update") or {}

    async def get_spreadsheet_metadata_async(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self.get_spreadsheet_metadata)

    async def get_values_async(self, range_name: str) -> List[List[str]]:
        return await asyncio.to_thread(self.get_values, range_name)

    async def append_values_async(self, range_name: str, rows: Sequence[Sequence[str]]) -> Dict[str, Any]:
        return await asyncio.to_thread(self.append_values, range_name, rows)

    async def update_values_async(self, range_name: str, rows: Sequence[Sequence[str]]) -> Dict[str, Any]:
        return await asyncio.to_thread(self.update_values, range_name, rows)

    async def batch_update_async(self, requests: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        return await asyncio.to_thread(self.batch_update, requests)

    def _execute(self, func: Callable[[], T], action: str, range_name: str | None = None) -> T:
        logger.info(
            "Calling Google Sheets API",
            extra={"action": action, "range": range_name, "spreadsheet_id": self.spreadsheet_id},
        )
        try:
            return func()
        except HttpError as exc:
            error = self._translate_http_error(exc, range_name)
            self._log_failure(action, range_name, error)
            raise error from exc
        except auth_exceptions.RefreshError as exc:
            error = AuthRequired(f"Google credentials could not be refreshed: {exc}")
            self._log_failure(action, range_name, error)
            raise error from exc
        except (auth_exceptions.TransportError, httplib2.HttpLib2Error, OSError) as exc:
            error = TransportError(f"Google Sheets request failed: {exc}")
            self._log_failure(action, range_name, error)
            raise error from exc

    @staticmethod
    def _log_failure(action: str, range_name: str | None, error: SheetsError) -> None:
        logger.warning(
            "Google Sheets API call failed",
            extra={"action": action, "range": range_name, "error": str(error)},
        )

    @staticmethod
    def _translate_http_error(exc: HttpError, range_name: str | None) -> SheetsError:
        status = getattr(exc.resp, "status", None)
        try:
            status = int(status) if status is not None else None
        except (TypeError, ValueError):
            status = None
        message = str(exc)

        if status in AUTH_STATUSES:
            return AuthRequired(f"Google Sheets rejected the credential ({status})")
        if status == 404 or (status == 400 and any(marker in message for marker in NOT_FOUND_MARKERS)):
            return NotFound(f"Spreadsheet range not found: {range_name or message}")
        return TransportError(f"Google Sheets API error: {message}", status=status)

    def _get_service(self):
        credentials = self.config.credential_provider.get_credentials()
        if credentials is None:
            raise AuthRequired("Sign in to Google Sheets to continue")

        if self._service_injected:
            return self._service
        if self._service is None or credentials is not self._credentials:
            client_options = {"api_endpoint": self.config.api_base_url} if self.config.api_base_url else None
            self._service = build(
                "sheets",
                "v4",
                credentials=credentials,
                cache_discovery=False,
                client_options=client_options,
            )
            self._credentials = credentials
        return self._service


__all__ = ["ClientConfig", "SheetsTransport", "VALUE_INPUT_OPTION"]
