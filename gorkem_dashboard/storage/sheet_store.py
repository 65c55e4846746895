"""Spreadsheet-backed record store.

Each tab of the configured spreadsheet behaves like a table: the first row
holds the headers and every following row is a record keyed by header. A
record's only identity is its position, exposed as ``_rowIndex`` (zero-based,
header row excluded), so record ``i`` lives on spreadsheet row ``i + 2``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from gorkem_dashboard.storage.errors import TransportError
from gorkem_dashboard.storage.headers import build_column_mapping
from gorkem_dashboard.storage.transport import ClientConfig, SheetsTransport


logger = logging.getLogger(__name__)

ROW_INDEX_KEY = "_rowIndex"
HEADER_ROW_OFFSET = 2
MAX_COLUMNS = 26

RECORD_FIELDS = ["date", "description", "amount", "type", "category"]

TEMPLATE_HEADERS: Dict[str, List[str]] = {
    "income-expense": ["Tarih", "Açıklama", "Tutar", "Tür", "Kategori"],
    "project-tracking": ["Proje Adı", "Başlangıç", "Bitiş", "Durum", "Sorumlu", "Bütçe"],
    "inventory": ["Ürün Adı", "Miktar", "Birim", "Fiyat", "Toplam", "Tarih"],
    "client-management": ["Müşteri Adı", "Email", "Telefon", "Şirket", "Adres", "Notlar"],
    "employee-records": ["Ad Soyad", "Pozisyon", "Maaş", "İşe Başlama", "Telefon", "Email"],
}
DEFAULT_TEMPLATE_HEADERS = ["Kolon 1", "Kolon 2", "Kolon 3"]

Record = Dict[str, str]


@dataclass
class Sheet:
    """One tab of the spreadsheet."""

    id: str
    name: str
    spreadsheet_id: str
    sheet_tab_id: int
    index: int = 0
    headers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "googleSheetId": self.spreadsheet_id,
            "sheetTabId": self.sheet_tab_id,
            "index": self.index,
            "headers": list(self.headers),
        }


@dataclass
class SheetData:
    headers: List[str] = field(default_factory=list)
    records: List[Record] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"headers": list(self.headers), "records": [dict(record) for record in self.records]}


def template_headers(template: str) -> List[str]:
    """Return the literal header row for a sheet template (a generic row when unknown)."""

    return list(TEMPLATE_HEADERS.get(template, DEFAULT_TEMPLATE_HEADERS))


def column_letter(index: int) -> str:
    """Return the column letter for a zero-based index.

    Only single-letter columns (A-Z) are supported.
    """

    if index < 0:
        raise ValueError("Column index must be >= 0")
    if index >= MAX_COLUMNS:
        raise ValueError(f"Column index {index} is beyond column Z; only A-Z are addressable")
    return chr(65 + index)


def a1_range(sheet_name: str, cell_range: str | None = None) -> str:
    title = "'" + sheet_name.replace("'", "''") + "'"
    return f"{title}!{cell_range}" if cell_range else title


def record_row_range(sheet_name: str, row_index: int, value_count: int) -> str:
    """Range covering columns A..N of the spreadsheet row holding record ``row_index``."""

    if row_index < 0:
        raise ValueError("Row index must be >= 0")
    if value_count < 1:
        raise ValueError("At least one value is required to address a row range")
    row_number = row_index + HEADER_ROW_OFFSET
    return a1_range(sheet_name, f"A{row_number}:{column_letter(value_count - 1)}{row_number}")


def rows_to_sheet_data(values: Sequence[Sequence[Any]]) -> SheetData:
    """Convert raw cell rows (header row first) into headers and padded records."""

    if not values:
        return SheetData()

    headers = [cell_text(cell) for cell in values[0]]
    records: List[Record] = []
    for index, row in enumerate(values[1:]):
        record: Record = {ROW_INDEX_KEY: str(index)}
        for column, header in enumerate(headers):
            record[header] = cell_text(row[column]) if column < len(row) else ""
        records.append(record)
    return SheetData(headers=headers, records=records)


def build_record_row(field_values: Mapping[str, Any]) -> List[str]:
    """Serialize ``field_values`` in the fixed date/description/amount/type/category order."""

    return [cell_text(field_values.get(name)) for name in RECORD_FIELDS]


def serialize_record(record: Mapping[str, Any], headers: Optional[Sequence[str]] = None) -> List[str]:
    """Order a record's values for a row write.

    With ``headers``, values follow header order up to the last header the
    record names; headers skipped in between are written as empty cells and
    keys that are not headers are dropped. A sheet without a header row falls
    back to the record's own key order.
    """

    keys = [key for key in record if key != ROW_INDEX_KEY]
    if not headers:
        return [cell_text(record[key]) for key in keys]

    unknown = [key for key in keys if key not in headers]
    if unknown:
        logger.warning("Dropping record keys that are not sheet headers", extra={"keys": unknown})
    positions = [headers.index(key) for key in keys if key in headers]
    if not positions:
        raise ValueError("Record has no values for any column of the sheet")
    return [cell_text(record.get(header)) for header in headers[: max(positions) + 1]]


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class SheetRecordStore:
    """Async record operations over the tabs of one spreadsheet."""

    def __init__(self, config: ClientConfig, transport: SheetsTransport | None = None) -> None:
        self.config = config
        self.transport = transport or SheetsTransport(config)

    @property
    def spreadsheet_id(self) -> str:
        return self.config.spreadsheet_id

    async def list_sheets(self) -> Iterator[Sheet]:
        """Return a one-shot iterator over the tabs present when the call was made."""

        metadata = await self.transport.get_spreadsheet_metadata_async()
        tabs = [sheet.get("properties", {}) for sheet in metadata.get("sheets", [])]
        logger.info(
            "Fetched spreadsheet metadata",
            extra={"spreadsheet_id": self.spreadsheet_id, "sheet_count": len(tabs)},
        )
        return (self._sheet_from_properties(properties) for properties in tabs)

    async def get_sheet_data(self, sheet_name: str) -> SheetData:
        values = await self.transport.get_values_async(a1_range(sheet_name))
        data = rows_to_sheet_data(values)
        logger.info(
            "Loaded sheet data",
            extra={"sheet_name": sheet_name, "record_count": len(data.records)},
        )
        return data

    async def get_headers(self, sheet_name: str) -> List[str]:
        values = await self.transport.get_values_async(a1_range(sheet_name, "1:1"))
        return [cell_text(cell) for cell in values[0]] if values else []

    async def get_column_mapping(self, sheet_name: str) -> Dict[str, int]:
        return build_column_mapping(await self.get_headers(sheet_name))

    async def append_record(self, sheet_name: str, field_values: Mapping[str, Any]) -> Dict[str, Any]:
        """Append one row in the fixed five-column layout after the last data row."""

        row = build_record_row(field_values)
        result = await self._append_rows(sheet_name, [row], action="append_record")
        logger.info("Appended record", extra={"sheet_name": sheet_name, "values": row})
        return result

    async def update_record(
        self,
        sheet_name: str,
        row_index: int,
        record: Mapping[str, Any],
        headers: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Overwrite the row of record ``row_index`` from column A through the record's width.

        Columns beyond the serialized values are left untouched, so callers
        must supply every header they want written.
        """

        if headers is None:
            headers = await self.get_headers(sheet_name)
        values = serialize_record(record, headers)
        range_name = record_row_range(sheet_name, row_index, len(values))
        result = await self.transport.update_values_async(range_name, [values])
        logger.info(
            "Updated record",
            extra={"sheet_name": sheet_name, "row_index": row_index, "range": range_name},
        )
        return result

    async def create_sheet(self, name: str, headers: Sequence[str] = ()) -> Sheet:
        response = await self.transport.batch_update_async(
            [{"addSheet": {"properties": {"title": name}}}]
        )
        replies = response.get("replies") or [{}]
        properties = replies[0].get("addSheet", {}).get("properties") or {"title": name}
        sheet = self._sheet_from_properties(properties)

        if headers:
            await self._append_rows(name, [list(headers)], action="create_sheet_headers")
            sheet.headers = list(headers)
        logger.info("Created sheet", extra={"sheet_name": name, "sheet_tab_id": sheet.sheet_tab_id})
        return sheet

    async def create_sheet_from_template(self, name: str, template: str) -> Sheet:
        return await self.create_sheet(name, template_headers(template))

    async def delete_sheet(self, sheet_tab_id: int) -> None:
        await self.transport.batch_update_async([{"deleteSheet": {"sheetId": int(sheet_tab_id)}}])
        logger.info("Deleted sheet", extra={"sheet_tab_id": sheet_tab_id})

    async def rename_sheet(self, sheet_tab_id: int, new_name: str) -> None:
        new_name = (new_name or "").strip()
        if not new_name:
            raise ValueError("Sheet name must not be empty")
        await self.transport.batch_update_async(
            [
                {
                    "updateSheetProperties": {
                        "properties": {"sheetId": int(sheet_tab_id), "title": new_name},
                        "fields": "title",
                    }
                }
            ]
        )
        logger.info("Renamed sheet", extra={"sheet_tab_id": sheet_tab_id, "sheet_name": new_name})

    async def _append_rows(self, sheet_name: str, rows: List[List[str]], action: str) -> Dict[str, Any]:
        result = await self.transport.append_values_async(a1_range(sheet_name), rows)
        updates = result.get("updates")
        if updates is not None and not updates.get("updatedRows"):
            logger.error(
                "Append did not write any rows",
                extra={"action": action, "sheet_name": sheet_name, "response": result},
            )
            raise TransportError("Google Sheets append did not write any rows")
        return result

    def _sheet_from_properties(self, properties: Mapping[str, Any]) -> Sheet:
        tab_id = int(properties.get("sheetId", 0) or 0)
        return Sheet(
            id=str(tab_id),
            name=properties.get("title") or "Untitled Sheet",
            spreadsheet_id=self.spreadsheet_id,
            sheet_tab_id=tab_id,
            index=int(properties.get("index", 0) or 0),
        )


__all__ = [
    "DEFAULT_TEMPLATE_HEADERS",
    "RECORD_FIELDS",
    "ROW_INDEX_KEY",
    "Record",
    "Sheet",
    "SheetData",
    "SheetRecordStore",
    "TEMPLATE_HEADERS",
    "a1_range",
    "build_record_row",
    "column_letter",
    "record_row_range",
    "rows_to_sheet_data",
    "serialize_record",
    "template_headers",
]
