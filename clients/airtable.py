"""
AirtableClient — Airtable Web API v0 records plus the meta (schema) API.

Record writes are limited upstream to 10 records per request; callers with
more split the list with ``batch_operations`` first.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple, TypeVar
from urllib.parse import quote

from clients.base import ProviderApiClient
from clients.models import (
    AirtableBase,
    AirtableBaseSchema,
    AirtableField,
    AirtableRecord,
    DeletedRecord,
)
from connectors.models import AIRTABLE

_AIRTABLE_API = "https://api.airtable.com/v0"

MAX_RECORDS_PER_REQUEST = 10
MAX_PAGE_SIZE = 100

T = TypeVar("T")


def batch_operations(items: Sequence[T], batch_size: int = MAX_RECORDS_PER_REQUEST) -> List[List[T]]:
    """Split ``items`` into consecutive chunks of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


def _check_batch(records: Sequence[Any]) -> None:
    if len(records) > MAX_RECORDS_PER_REQUEST:
        raise ValueError(
            f"Airtable accepts at most {MAX_RECORDS_PER_REQUEST} records per request, "
            f"got {len(records)}; split with batch_operations()"
        )


class AirtableClient(ProviderApiClient):
    provider = AIRTABLE
    base_url = _AIRTABLE_API

    # ── Meta API ────────────────────────────────────────────────────────

    async def list_bases(self, max_results: Optional[int] = None) -> List[AirtableBase]:
        bases = await self.paginate(
            "/meta/bases",
            items_key="bases",
            cursor_param="offset",
            cursor_field="offset",
            max_results=max_results,
        )
        return [AirtableBase.model_validate(b) for b in bases]

    async def get_base_schema(self, base_id: str) -> AirtableBaseSchema:
        body = await self.request("GET", f"/meta/bases/{base_id}/tables")
        return AirtableBaseSchema.model_validate(body)

    async def create_field(
        self,
        base_id: str,
        table_id: str,
        name: str,
        field_type: str,
        *,
        description: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> AirtableField:
        payload: Dict[str, Any] = {"name": name, "type": field_type}
        if description:
            payload["description"] = description
        if options:
            payload["options"] = options
        body = await self.request(
            "POST",
            f"/meta/bases/{base_id}/tables/{table_id}/fields",
            json=payload,
        )
        return AirtableField.model_validate(body)

    # ── Records ─────────────────────────────────────────────────────────

    async def list_records(
        self,
        base_id: str,
        table: str,
        *,
        fields: Optional[Sequence[str]] = None,
        filter_by_formula: Optional[str] = None,
        max_records: Optional[int] = None,
        page_size: Optional[int] = None,
        sort: Optional[Sequence[Dict[str, str]]] = None,
        view: Optional[str] = None,
        cell_format: Optional[str] = None,
        time_zone: Optional[str] = None,
        user_locale: Optional[str] = None,
    ) -> List[AirtableRecord]:
        """
        Every record matching the query, following ``offset`` across pages.

        ``sort`` items look like ``{"field": "Name", "direction": "asc"}``.
        """
        params: Dict[str, Any] = {}
        if fields:
            params["fields[]"] = list(fields)
        if filter_by_formula:
            params["filterByFormula"] = filter_by_formula
        if max_records is not None:
            params["maxRecords"] = max_records
        if page_size is not None:
            params["pageSize"] = min(page_size, MAX_PAGE_SIZE)
        for i, item in enumerate(sort or ()):
            params[f"sort[{i}][field]"] = item["field"]
            if item.get("direction"):
                params[f"sort[{i}][direction]"] = item["direction"]
        if view:
            params["view"] = view
        if cell_format:
            params["cellFormat"] = cell_format
        if time_zone:
            params["timeZone"] = time_zone
        if user_locale:
            params["userLocale"] = user_locale

        records = await self.paginate(
            self._table_path(base_id, table),
            items_key="records",
            cursor_param="offset",
            cursor_field="offset",
            params=params,
            max_results=max_records,
        )
        return [AirtableRecord.model_validate(r) for r in records]

    async def get_record(self, base_id: str, table: str, record_id: str) -> AirtableRecord:
        body = await self.request("GET", f"{self._table_path(base_id, table)}/{record_id}")
        return AirtableRecord.model_validate(body)

    async def create_records(
        self,
        base_id: str,
        table: str,
        records: Sequence[Dict[str, Any]],
        *,
        typecast: bool = False,
    ) -> List[AirtableRecord]:
        """Create up to 10 records; each item is a ``{field name: value}`` dict."""
        _check_batch(records)
        body = await self.request(
            "POST",
            self._table_path(base_id, table),
            json={"records": [{"fields": f} for f in records], "typecast": typecast},
        )
        return [AirtableRecord.model_validate(r) for r in body.get("records", [])]

    async def update_records(
        self,
        base_id: str,
        table: str,
        records: Sequence[Dict[str, Any]],
        *,
        typecast: bool = False,
        replace: bool = False,
    ) -> List[AirtableRecord]:
        """
        Update up to 10 records given as ``{"id": ..., "fields": {...}}``.

        ``replace=True`` issues a PUT, clearing fields not supplied.
        """
        _check_batch(records)
        body = await self.request(
            "PUT" if replace else "PATCH",
            self._table_path(base_id, table),
            json={"records": list(records), "typecast": typecast},
        )
        return [AirtableRecord.model_validate(r) for r in body.get("records", [])]

    async def delete_records(
        self,
        base_id: str,
        table: str,
        record_ids: Sequence[str],
    ) -> List[DeletedRecord]:
        _check_batch(record_ids)
        body = await self.request(
            "DELETE",
            self._table_path(base_id, table),
            params={"records[]": list(record_ids)},
        )
        return [DeletedRecord.model_validate(r) for r in body.get("records", [])]

    # ── Internals ───────────────────────────────────────────────────────

    @staticmethod
    def _table_path(base_id: str, table: str) -> str:
        return f"/{base_id}/{quote(table, safe='')}"

    def _extract_error(self, body: Any) -> Tuple[Optional[str], List[str]]:
        # 429s arrive as {"errors": [{"error": "RATE_LIMIT_REACHED", "message": ...}]}
        if isinstance(body, dict) and isinstance(body.get("errors"), list):
            codes = [e["error"] for e in body["errors"] if isinstance(e, dict) and e.get("error")]
            messages = [e.get("message") for e in body["errors"] if isinstance(e, dict)]
            return next((m for m in messages if m), None), codes
        return super()._extract_error(body)
