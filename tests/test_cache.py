import asyncio
import copy

import pytest

from gorkem_dashboard.storage.cache import MutationState, SheetCache
from gorkem_dashboard.storage.errors import AuthRequired, NotFound, TransportError
from gorkem_dashboard.storage.sheet_store import ROW_INDEX_KEY, SheetData, SheetRecordStore, rows_to_sheet_data
from gorkem_dashboard.storage.transport import SheetsTransport
from tests.fakes import FailingCredentialProvider, FakeSheetsService, make_client_config, make_http_error


INCOME_HEADERS = ["Tarih", "Açıklama", "Tutar", "Tür", "Kategori"]
INCOME_ROWS = [
    INCOME_HEADERS,
    ["2024-01-05", "Hakediş 1", "150000", "Gelir", "Hakediş Gelirleri"],
    ["2024-02-05", "Kira", "12000", "Gelir", "Kira Gelirleri"],
]


def _store(service, credentials=object(), provider=None):
    config = make_client_config(credentials, provider=provider)
    return SheetRecordStore(config, transport=SheetsTransport(config, service=service))


def _income_service():
    service = FakeSheetsService()
    service.add_tab("Gelirler", rows=INCOME_ROWS, sheet_id=7)
    return service


class ScriptedStore:
    """Store double whose writes block until the test resolves them."""

    def __init__(self, rows=INCOME_ROWS):
        self.truth: SheetData = rows_to_sheet_data(copy.deepcopy(rows))
        self.pending = []
        self.writes = []
        self.fetches = 0
        self.fetch_gate = None

    async def get_sheet_data(self, sheet_name):
        self.fetches += 1
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        return copy.deepcopy(self.truth)

    async def update_record(self, sheet_name, row_index, record, headers=None):
        self.writes.append((row_index, dict(record)))
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        await future
        for header, value in record.items():
            if header in self.truth.headers:
                self.truth.records[row_index][header] = value
        return {"updatedRange": f"row {row_index}"}

    async def append_record(self, sheet_name, field_values):
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        await future
        return {"updates": {"updatedRows": 1}}

    async def list_sheets(self):
        raise AuthRequired("Sign in to Google Sheets to continue")


async def _until(predicate):
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def test_update_is_visible_before_the_write_completes():
    store = ScriptedStore()
    cache = SheetCache(store)

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        handle = cache.submit_update("Gelirler", 0, {"Açıklama": "Hakediş 1 (revize)"})

        optimistic = cache.peek("Gelirler")
        assert handle.state == MutationState.PENDING
        assert optimistic.records[0]["Açıklama"] == "Hakediş 1 (revize)"
        assert optimistic.records[0]["Tutar"] == "150000"
        assert not handle.done()

        await _until(lambda: store.pending)
        store.pending[0].set_result(None)
        result = await handle.result()
        await handle.wait_settled()
        return handle, result

    handle, result = asyncio.run(scenario())

    assert result == {"updatedRange": "row 0"}
    assert handle.state == MutationState.IDLE
    assert cache.peek("Gelirler").records[0]["Açıklama"] == "Hakediş 1 (revize)"
    assert store.fetches == 2


def test_partial_update_is_sent_as_full_row():
    store = ScriptedStore()
    cache = SheetCache(store)

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        handle = cache.submit_update("Gelirler", 1, {"Tutar": "12500"})
        await _until(lambda: store.pending)
        store.pending[0].set_result(None)
        await handle.result()
        await cache.wait_reconciled()

    asyncio.run(scenario())

    assert store.writes == [
        (
            1,
            {
                "Tarih": "2024-02-05",
                "Açıklama": "Kira",
                "Tutar": "12500",
                "Tür": "Gelir",
                "Kategori": "Kira Gelirleri",
            },
        )
    ]


def test_failed_update_restores_snapshot_and_raises():
    service = _income_service()
    cache = SheetCache(_store(service))

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        before = copy.deepcopy(cache.peek("Gelirler"))
        service.fail_next("update", make_http_error(500, "Internal error encountered."))
        with pytest.raises(TransportError):
            await cache.update_record("Gelirler", 1, {"Tutar": "1"})
        return before

    before = asyncio.run(scenario())

    assert cache.peek("Gelirler") == before
    assert service.rows("Gelirler") == INCOME_ROWS


def test_successful_update_reconciles_with_server_state():
    service = _income_service()
    cache = SheetCache(_store(service))

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        service.rows("Gelirler")[2][1] = "Kira (başka istemci)"
        await cache.update_record("Gelirler", 0, {"Açıklama": "Hakediş 1A"})
        await cache.wait_reconciled()

    asyncio.run(scenario())

    records = cache.peek("Gelirler").records
    assert records[0]["Açıklama"] == "Hakediş 1A"
    assert records[1]["Açıklama"] == "Kira (başka istemci)"
    assert records[0]["Kategori"] == "Hakediş Gelirleri"
    assert service.rows("Gelirler")[1][1] == "Hakediş 1A"


def test_second_mutation_snapshots_optimistic_state():
    store = ScriptedStore()
    cache = SheetCache(store)

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        first = cache.submit_update("Gelirler", 0, {"Açıklama": "A"})
        second = cache.submit_update("Gelirler", 1, {"Açıklama": "B"})
        await _until(lambda: len(store.pending) == 2)

        store.pending[1].set_exception(TransportError("boom", status=500))
        with pytest.raises(TransportError):
            await second.result()

        rolled_back = cache.peek("Gelirler")
        assert rolled_back.records[0]["Açıklama"] == "A"
        assert rolled_back.records[1]["Açıklama"] == "Kira"
        assert first.state == MutationState.PENDING

        store.pending[0].set_result(None)
        await first.result()
        await first.wait_settled()

    asyncio.run(scenario())

    records = cache.peek("Gelirler").records
    assert [record["Açıklama"] for record in records] == ["A", "Kira"]


def test_same_row_writes_settle_by_last_response():
    store = ScriptedStore()
    cache = SheetCache(store)

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        first = cache.submit_update("Gelirler", 0, {"Tutar": "160000"})
        second = cache.submit_update("Gelirler", 0, {"Tutar": "170000"})
        await _until(lambda: len(store.pending) == 2)
        assert cache.peek("Gelirler").records[0]["Tutar"] == "170000"

        store.pending[1].set_result(None)
        await second.result()
        await second.wait_settled()
        assert cache.peek("Gelirler").records[0]["Tutar"] == "170000"

        store.pending[0].set_result(None)
        await first.result()
        await first.wait_settled()

    asyncio.run(scenario())

    assert store.truth.records[0]["Tutar"] == "160000"
    assert cache.peek("Gelirler").records[0]["Tutar"] == "160000"


def test_update_ignores_keys_that_are_not_headers():
    service = _income_service()
    cache = SheetCache(_store(service))

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        handle = cache.submit_update("Gelirler", 0, {"Tutar": "999", "Not": "x"})
        optimistic = dict(cache.peek("Gelirler").records[0])
        await handle.result()
        await handle.wait_settled()
        return optimistic

    optimistic = asyncio.run(scenario())

    expected = ["2024-01-05", "Hakediş 1", "999", "Gelir", "Hakediş Gelirleri"]
    assert service.rows("Gelirler")[1] == expected
    assert [optimistic[header] for header in INCOME_HEADERS] == expected
    assert [cache.peek("Gelirler").records[0][header] for header in INCOME_HEADERS] == expected


def test_invalidate_discards_in_flight_refetch():
    store = ScriptedStore()
    cache = SheetCache(store)

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        store.fetch_gate = asyncio.Event()
        handle = cache.submit_update("Gelirler", 0, {"Açıklama": "A"})
        await _until(lambda: store.pending)
        store.pending[0].set_result(None)
        await handle.result()
        await _until(lambda: store.fetches == 2)

        cache.invalidate("Gelirler")
        store.fetch_gate.set()
        await handle.wait_settled()

    asyncio.run(scenario())

    assert cache.peek("Gelirler") is None


def test_update_on_uncached_sheet_still_writes():
    service = _income_service()
    cache = SheetCache(_store(service))

    async def scenario():
        handle = cache.submit_update("Gelirler", 1, {"Tarih": "2024-02-06", "Açıklama": "Kira"})
        assert cache.peek("Gelirler") is None
        await handle.result()
        await cache.wait_reconciled()

    asyncio.run(scenario())

    assert service.rows("Gelirler")[2][0] == "2024-02-06"
    assert cache.peek("Gelirler").records[1]["Tarih"] == "2024-02-06"


def test_append_adds_optimistic_row_then_reconciles():
    service = _income_service()
    cache = SheetCache(_store(service))
    fields = {
        "date": "2024-03-10",
        "description": "Enerji satışı",
        "amount": "4250",
        "type": "Gelir",
        "category": "Enerji Gelirleri",
    }

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        handle = cache.submit_append("Gelirler", fields)
        optimistic = cache.peek("Gelirler").records[-1]
        await handle.result()
        await handle.wait_settled()
        return optimistic

    optimistic = asyncio.run(scenario())

    assert optimistic[ROW_INDEX_KEY] == "2"
    assert optimistic["Açıklama"] == "Enerji satışı"
    records = cache.peek("Gelirler").records
    assert len(records) == 3
    assert records[-1]["Kategori"] == "Enerji Gelirleri"


def test_abandoned_mutation_still_rolls_back():
    store = ScriptedStore()
    cache = SheetCache(store)

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        handle = cache.submit_update("Gelirler", 0, {"Açıklama": "A"})
        handle.abandon()
        await _until(lambda: store.pending)
        store.pending[0].set_exception(TransportError("boom"))
        await cache.wait_reconciled()
        return handle

    handle = asyncio.run(scenario())

    assert handle.abandoned
    assert handle.state == MutationState.IDLE
    assert cache.peek("Gelirler").records[0]["Açıklama"] == "Hakediş 1"


def test_failed_background_refetch_keeps_optimistic_data():
    service = _income_service()
    cache = SheetCache(_store(service))

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        service.fail_next("get", make_http_error(503, "Backend Error"))
        handle = cache.submit_update("Gelirler", 0, {"Açıklama": "Hakediş 1A"})
        await handle.result()
        await handle.wait_settled()

    asyncio.run(scenario())

    assert cache.peek("Gelirler").records[0]["Açıklama"] == "Hakediş 1A"


def test_cached_reads_skip_the_store_until_refresh():
    store = ScriptedStore()
    cache = SheetCache(store)

    async def scenario():
        first = await cache.get_sheet_data("Gelirler")
        second = await cache.get_sheet_data("Gelirler")
        assert first is second
        await cache.get_sheet_data("Gelirler", refresh=True)

    asyncio.run(scenario())

    assert store.fetches == 2


def test_list_sheets_degrades_to_empty_list():
    assert asyncio.run(SheetCache(ScriptedStore()).list_sheets()) == []

    signed_out = SheetCache(_store(_income_service(), credentials=None))
    assert asyncio.run(signed_out.list_sheets()) == []

    error = ValueError("Service account info missing required fields: client_email")
    broken_key = SheetCache(_store(_income_service(), provider=FailingCredentialProvider(error)))
    assert asyncio.run(broken_key.list_sheets()) == []

    signed_in = SheetCache(_store(_income_service()))
    assert [sheet.name for sheet in asyncio.run(signed_in.list_sheets())] == ["Gelirler"]


def test_sheet_operations_invalidate_cached_tabs():
    service = _income_service()
    cache = SheetCache(_store(service))

    async def scenario():
        await cache.get_sheet_data("Gelirler")
        await cache.rename_sheet(7, "Gelirler 2024", old_name="Gelirler")
        assert cache.peek("Gelirler") is None

        created = await cache.create_sheet("Stok", template="inventory")
        assert created.headers[0] == "Ürün Adı"
        await cache.get_sheet_data("Stok")

        await cache.delete_sheet(created.sheet_tab_id, sheet_name="Stok")
        assert cache.peek("Stok") is None
        with pytest.raises(NotFound):
            await cache.get_sheet_data("Stok")

    asyncio.run(scenario())

    assert list(service.tabs) == ["Gelirler 2024"]
