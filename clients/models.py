"""
Typed views of provider API resources.

Upstream JSON is camelCase; fields map through aliases and accept either
spelling on input.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── Google Sheets / Drive ───────────────────────────────────────────────


class DriveFile(_ApiModel):
    id: str
    name: str
    modified_time: Optional[str] = Field(default=None, alias="modifiedTime")
    web_view_link: Optional[str] = Field(default=None, alias="webViewLink")


class GridProperties(_ApiModel):
    row_count: int = Field(default=0, alias="rowCount")
    column_count: int = Field(default=0, alias="columnCount")


class SheetProperties(_ApiModel):
    sheet_id: int = Field(alias="sheetId")
    title: str
    index: int = 0
    grid_properties: GridProperties = Field(default_factory=GridProperties, alias="gridProperties")


class Sheet(_ApiModel):
    properties: SheetProperties


class SpreadsheetProperties(_ApiModel):
    title: str = ""
    locale: Optional[str] = None
    time_zone: Optional[str] = Field(default=None, alias="timeZone")


class Spreadsheet(_ApiModel):
    spreadsheet_id: str = Field(alias="spreadsheetId")
    properties: SpreadsheetProperties = Field(default_factory=SpreadsheetProperties)
    sheets: List[Sheet] = Field(default_factory=list)
    spreadsheet_url: Optional[str] = Field(default=None, alias="spreadsheetUrl")

    def find_sheet(self, sheet: "int | str") -> Optional[SheetProperties]:
        """Look a sheet up by numeric gid or by title."""
        for s in self.sheets:
            if isinstance(sheet, int) and s.properties.sheet_id == sheet:
                return s.properties
            if isinstance(sheet, str) and s.properties.title == sheet:
                return s.properties
        return None


class ValueRange(_ApiModel):
    range: str = ""
    major_dimension: str = Field(default="ROWS", alias="majorDimension")
    values: List[List[Any]] = Field(default_factory=list)


class UpdateValuesResponse(_ApiModel):
    spreadsheet_id: Optional[str] = Field(default=None, alias="spreadsheetId")
    updated_range: Optional[str] = Field(default=None, alias="updatedRange")
    updated_rows: int = Field(default=0, alias="updatedRows")
    updated_columns: int = Field(default=0, alias="updatedColumns")
    updated_cells: int = Field(default=0, alias="updatedCells")


class AppendValuesResponse(_ApiModel):
    spreadsheet_id: Optional[str] = Field(default=None, alias="spreadsheetId")
    table_range: Optional[str] = Field(default=None, alias="tableRange")
    updates: UpdateValuesResponse = Field(default_factory=UpdateValuesResponse)


# ── Airtable ────────────────────────────────────────────────────────────


class AirtableBase(_ApiModel):
    id: str
    name: str
    permission_level: Optional[str] = Field(default=None, alias="permissionLevel")


class AirtableField(_ApiModel):
    id: str
    name: str
    type: str
    description: Optional[str] = None
    options: Optional[Dict[str, Any]] = None


class AirtableView(_ApiModel):
    id: str
    name: str
    type: str


class AirtableTable(_ApiModel):
    id: str
    name: str
    primary_field_id: Optional[str] = Field(default=None, alias="primaryFieldId")
    description: Optional[str] = None
    fields: List[AirtableField] = Field(default_factory=list)
    views: List[AirtableView] = Field(default_factory=list)


class AirtableBaseSchema(_ApiModel):
    tables: List[AirtableTable] = Field(default_factory=list)


class AirtableRecord(_ApiModel):
    id: str
    created_time: Optional[str] = Field(default=None, alias="createdTime")
    fields: Dict[str, Any] = Field(default_factory=dict)


class DeletedRecord(_ApiModel):
    id: str
    deleted: bool
