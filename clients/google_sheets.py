"""
GoogleSheetsClient — Sheets v4 values / batchUpdate plus Drive v3 listing.

Sheets are addressed either by title or by numeric gid.  A1 ranges are
built with the title quoted (``'My Sheet'!A1:C10``) and URL-encoded into
the request path.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote

from clients.base import ProviderApiClient
from clients.models import (
    AppendValuesResponse,
    DriveFile,
    SheetProperties,
    Spreadsheet,
    UpdateValuesResponse,
    ValueRange,
)
from connectors.models import GOOGLE_SHEETS

logger = logging.getLogger(__name__)

_SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
_DRIVE_FILES_API = "https://www.googleapis.com/drive/v3/files"
_SPREADSHEET_MIME = "application/vnd.google-apps.spreadsheet"

SheetRef = Union[str, int]


# ── A1 helpers ──────────────────────────────────────────────────────────


def column_letter_to_number(column: str) -> int:
    """A → 1, Z → 26, AA → 27."""
    result = 0
    for ch in column.upper():
        if not "A" <= ch <= "Z":
            raise ValueError(f"Invalid column letter: {column!r}")
        result = result * 26 + (ord(ch) - 64)
    return result


def column_number_to_letter(column: int) -> str:
    """1 → A, 26 → Z, 27 → AA."""
    if column < 1:
        raise ValueError(f"Column number must be >= 1, got {column}")
    result = ""
    while column > 0:
        column, remainder = divmod(column - 1, 26)
        result = chr(65 + remainder) + result
    return result


def detect_last_column_index(values: Sequence[Sequence[Any]]) -> int:
    """Zero-based index of the widest row's last column (0 for no data)."""
    widest = max((len(row) for row in values), default=0)
    return max(0, widest - 1)


def a1_range(sheet_title: str, cells: Optional[str] = None) -> str:
    quoted = "'" + sheet_title.replace("'", "''") + "'"
    return f"{quoted}!{cells}" if cells else quoted


class GoogleSheetsClient(ProviderApiClient):
    provider = GOOGLE_SHEETS
    base_url = _SHEETS_API

    # ── Discovery ───────────────────────────────────────────────────────

    async def list_spreadsheets(self, max_results: Optional[int] = None) -> List[DriveFile]:
        """Spreadsheets visible to the user, most recently modified first."""
        files = await self.paginate(
            _DRIVE_FILES_API,
            items_key="files",
            cursor_param="pageToken",
            cursor_field="nextPageToken",
            params={
                "q": f"mimeType='{_SPREADSHEET_MIME}' and trashed=false",
                "fields": "nextPageToken, files(id, name, modifiedTime, webViewLink)",
                "orderBy": "modifiedTime desc",
                "pageSize": 100,
            },
            max_results=max_results,
        )
        return [DriveFile.model_validate(f) for f in files]

    async def get_spreadsheet(self, spreadsheet_id: str) -> Spreadsheet:
        body = await self.request(
            "GET",
            f"/{spreadsheet_id}",
            params={"fields": "spreadsheetId,properties,sheets.properties,spreadsheetUrl"},
        )
        return Spreadsheet.model_validate(body)

    async def get_sheet_properties(self, spreadsheet_id: str, sheet: SheetRef) -> SheetProperties:
        """
        Raises
        ------
        ProviderApiError (404) – no sheet with that gid / title
        """
        meta = await self.get_spreadsheet(spreadsheet_id)
        props = meta.find_sheet(sheet)
        if props is None:
            raise self._not_found(f"Sheet {sheet!r} not found in spreadsheet {spreadsheet_id}")
        return props

    async def get_sheet_id_by_name(self, spreadsheet_id: str, sheet_name: str) -> int:
        props = await self.get_sheet_properties(spreadsheet_id, sheet_name)
        return props.sheet_id

    # ── Values ──────────────────────────────────────────────────────────

    async def get_sheet_data(
        self,
        spreadsheet_id: str,
        sheet: SheetRef,
        cells: Optional[str] = None,
        *,
        value_render_option: str = "FORMATTED_VALUE",
    ) -> ValueRange:
        rng = await self._range(spreadsheet_id, sheet, cells)
        body = await self.request(
            "GET",
            f"/{spreadsheet_id}/values/{quote(rng, safe='')}",
            params={"valueRenderOption": value_render_option},
        )
        return ValueRange.model_validate(body)

    async def update_sheet_data(
        self,
        spreadsheet_id: str,
        sheet: SheetRef,
        cells: str,
        values: List[List[Any]],
        *,
        value_input_option: str = "USER_ENTERED",
    ) -> UpdateValuesResponse:
        """Overwrite ``cells`` with ``values`` (rows-major)."""
        rng = await self._range(spreadsheet_id, sheet, cells)
        body = await self.request(
            "PUT",
            f"/{spreadsheet_id}/values/{quote(rng, safe='')}",
            params={"valueInputOption": value_input_option},
            json={"range": rng, "majorDimension": "ROWS", "values": values},
        )
        return UpdateValuesResponse.model_validate(body)

    async def append_rows(
        self,
        spreadsheet_id: str,
        sheet: SheetRef,
        values: List[List[Any]],
        *,
        value_input_option: str = "USER_ENTERED",
    ) -> AppendValuesResponse:
        """Insert ``values`` as new rows after the sheet's data table."""
        rng = await self._range(spreadsheet_id, sheet)
        body = await self.request(
            "POST",
            f"/{spreadsheet_id}/values/{quote(rng, safe='')}:append",
            params={"valueInputOption": value_input_option, "insertDataOption": "INSERT_ROWS"},
            json={"majorDimension": "ROWS", "values": values},
        )
        return AppendValuesResponse.model_validate(body)

    async def clear_sheet_data(
        self,
        spreadsheet_id: str,
        sheet: SheetRef,
        cells: Optional[str] = None,
    ) -> str:
        """Clear values (formatting is kept); returns the cleared range."""
        rng = await self._range(spreadsheet_id, sheet, cells)
        body = await self.request(
            "POST",
            f"/{spreadsheet_id}/values/{quote(rng, safe='')}:clear",
            json={},
        )
        return body.get("clearedRange", rng)

    # ── Structure (batchUpdate) ─────────────────────────────────────────

    async def batch_update(self, spreadsheet_id: str, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
        return await self.request(
            "POST",
            f"/{spreadsheet_id}:batchUpdate",
            json={"requests": requests},
        )

    async def delete_rows(
        self,
        spreadsheet_id: str,
        sheet: SheetRef,
        start_row: int,
        count: int,
    ) -> None:
        """Delete ``count`` rows starting at zero-based ``start_row``."""
        sheet_id = await self._sheet_id(spreadsheet_id, sheet)
        await self.batch_update(
            spreadsheet_id,
            [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": sheet_id,
                            "dimension": "ROWS",
                            "startIndex": start_row,
                            "endIndex": start_row + count,
                        }
                    }
                }
            ],
        )

    async def create_sheet(
        self,
        spreadsheet_id: str,
        title: str,
        *,
        row_count: int = 1000,
        column_count: int = 26,
    ) -> SheetProperties:
        body = await self.batch_update(
            spreadsheet_id,
            [
                {
                    "addSheet": {
                        "properties": {
                            "title": title,
                            "gridProperties": {"rowCount": row_count, "columnCount": column_count},
                        }
                    }
                }
            ],
        )
        props = SheetProperties.model_validate(body["replies"][0]["addSheet"]["properties"])
        logger.info("Created sheet %r (gid %d) in %s", title, props.sheet_id, spreadsheet_id)
        return props

    async def ensure_columns_exist(
        self,
        spreadsheet_id: str,
        sheet: SheetRef,
        required_column_count: int,
    ) -> int:
        """
        Grow the grid to at least ``required_column_count`` columns.
        Returns the number of columns added (0 if already wide enough).
        """
        props = await self.get_sheet_properties(spreadsheet_id, sheet)
        missing = required_column_count - props.grid_properties.column_count
        if missing <= 0:
            return 0
        await self.batch_update(
            spreadsheet_id,
            [
                {
                    "appendDimension": {
                        "sheetId": props.sheet_id,
                        "dimension": "COLUMNS",
                        "length": missing,
                    }
                }
            ],
        )
        return missing

    async def hide_column(self, spreadsheet_id: str, sheet: SheetRef, column_index: int) -> None:
        sheet_id = await self._sheet_id(spreadsheet_id, sheet)
        await self.batch_update(
            spreadsheet_id,
            [
                {
                    "updateDimensionProperties": {
                        "range": _column_span(sheet_id, column_index, column_index + 1),
                        "properties": {"hiddenByUser": True},
                        "fields": "hiddenByUser",
                    }
                }
            ],
        )

    async def resize_columns(
        self,
        spreadsheet_id: str,
        sheet: SheetRef,
        start_index: int,
        end_index: int,
        pixel_size: Optional[int] = None,
    ) -> None:
        """Set a fixed width, or auto-fit to content when ``pixel_size`` is None."""
        sheet_id = await self._sheet_id(spreadsheet_id, sheet)
        span = _column_span(sheet_id, start_index, end_index)
        if pixel_size is None:
            request = {"autoResizeDimensions": {"dimensions": span}}
        else:
            request = {
                "updateDimensionProperties": {
                    "range": span,
                    "properties": {"pixelSize": pixel_size},
                    "fields": "pixelSize",
                }
            }
        await self.batch_update(spreadsheet_id, [request])

    async def set_dropdown_validation(
        self,
        spreadsheet_id: str,
        sheet: SheetRef,
        column_index: int,
        options: Sequence[str],
        *,
        start_row: int = 1,
        end_row: Optional[int] = None,
        strict: bool = False,
    ) -> None:
        """Attach a ONE_OF_LIST dropdown to one column (header row skipped by default)."""
        sheet_id = await self._sheet_id(spreadsheet_id, sheet)
        grid: Dict[str, Any] = {
            "sheetId": sheet_id,
            "startRowIndex": start_row,
            "startColumnIndex": column_index,
            "endColumnIndex": column_index + 1,
        }
        if end_row is not None:
            grid["endRowIndex"] = end_row
        await self.batch_update(
            spreadsheet_id,
            [
                {
                    "setDataValidation": {
                        "range": grid,
                        "rule": {
                            "condition": {
                                "type": "ONE_OF_LIST",
                                "values": [{"userEnteredValue": o} for o in options],
                            },
                            "showCustomUi": True,
                            "strict": strict,
                        },
                    }
                }
            ],
        )

    # ── Internals ───────────────────────────────────────────────────────

    async def _range(self, spreadsheet_id: str, sheet: SheetRef, cells: Optional[str] = None) -> str:
        if isinstance(sheet, int):
            title = (await self.get_sheet_properties(spreadsheet_id, sheet)).title
        else:
            title = sheet
        return a1_range(title, cells)

    async def _sheet_id(self, spreadsheet_id: str, sheet: SheetRef) -> int:
        if isinstance(sheet, int):
            return sheet
        return await self.get_sheet_id_by_name(spreadsheet_id, sheet)

    def _extract_error(self, body: Any) -> Tuple[Optional[str], List[str]]:
        # {"error": {"code": 429, "message": ..., "status": "RESOURCE_EXHAUSTED",
        #            "errors": [{"reason": "rateLimitExceeded"}], "details": [...]}}
        if not isinstance(body, dict) or not isinstance(body.get("error"), dict):
            return super()._extract_error(body)
        error = body["error"]
        codes: List[str] = []
        if error.get("status"):
            codes.append(error["status"])
        for item in error.get("errors") or []:
            if isinstance(item, dict) and item.get("reason"):
                codes.append(item["reason"])
        for detail in error.get("details") or []:
            if isinstance(detail, dict) and detail.get("reason"):
                codes.append(detail["reason"])
        return error.get("message"), codes


def _column_span(sheet_id: int, start_index: int, end_index: int) -> Dict[str, Any]:
    return {
        "sheetId": sheet_id,
        "dimension": "COLUMNS",
        "startIndex": start_index,
        "endIndex": end_index,
    }
