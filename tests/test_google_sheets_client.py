"""
Tests for the Google Sheets API client against an httpx MockTransport.
"""

import json

import httpx
import pytest

from clients.google_sheets import (
    GoogleSheetsClient,
    a1_range,
    column_letter_to_number,
    column_number_to_letter,
    detect_last_column_index,
)
from connectors.errors import ProviderApiError
from utils.rate_limiter import RateLimiter

_META = {
    "spreadsheetId": "ss1",
    "properties": {"title": "Budget"},
    "sheets": [
        {"properties": {"sheetId": 0, "title": "Sheet 1", "index": 0,
                        "gridProperties": {"rowCount": 1000, "columnCount": 26}}},
        {"properties": {"sheetId": 777, "title": "Archive", "index": 1,
                        "gridProperties": {"rowCount": 50, "columnCount": 5}}},
    ],
}


def _make_client(handler, **kwargs):
    delays = []
    seen = []

    async def sleep(delay):
        delays.append(delay)

    def recording(request):
        seen.append(request)
        return handler(request)

    client = GoogleSheetsClient(
        "tok-1",
        rate_limiter=RateLimiter(1000),
        transport=httpx.MockTransport(recording),
        sleep=sleep,
        **kwargs,
    )
    return client, seen, delays


def _routes(mapping):
    """Dispatch on (method, path suffix); metadata GETs return _META."""

    def handler(request):
        path = request.url.path
        if request.method == "GET" and path == "/v4/spreadsheets/ss1":
            return httpx.Response(200, json=_META)
        for (method, suffix), response in mapping.items():
            if request.method == method and path.endswith(suffix):
                return response(request) if callable(response) else response
        return httpx.Response(404, json={"error": {"code": 404, "message": "no route", "status": "NOT_FOUND"}})

    return handler


class TestHelpers:
    def test_column_letters(self):
        assert column_letter_to_number("A") == 1
        assert column_letter_to_number("z") == 26
        assert column_letter_to_number("AA") == 27
        assert column_number_to_letter(1) == "A"
        assert column_number_to_letter(26) == "Z"
        assert column_number_to_letter(27) == "AA"
        assert column_number_to_letter(703) == "AAA"
        for n in (1, 52, 702, 18278):
            assert column_letter_to_number(column_number_to_letter(n)) == n

    def test_invalid_columns(self):
        with pytest.raises(ValueError):
            column_number_to_letter(0)
        with pytest.raises(ValueError):
            column_letter_to_number("A1")

    def test_detect_last_column_index(self):
        assert detect_last_column_index([]) == 0
        assert detect_last_column_index([["a", "b"], ["c", "d", "e"], ["f"]]) == 2

    def test_a1_range_quotes_title(self):
        assert a1_range("Sheet 1", "A1:C3") == "'Sheet 1'!A1:C3"
        assert a1_range("Bob's") == "'Bob''s'"


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_list_spreadsheets_follows_page_tokens(self):
        def handler(request):
            if request.url.params.get("pageToken") == "p2":
                return httpx.Response(200, json={"files": [{"id": "c", "name": "C"}]})
            return httpx.Response(
                200,
                json={"files": [{"id": "a", "name": "A"}, {"id": "b", "name": "B", "modifiedTime": "2026-01-01T00:00:00Z"}],
                      "nextPageToken": "p2"},
            )

        client, seen, _ = _make_client(handler)
        files = await client.list_spreadsheets()

        assert [f.id for f in files] == ["a", "b", "c"]
        assert files[1].modified_time == "2026-01-01T00:00:00Z"
        assert len(seen) == 2
        assert seen[0].url.host == "www.googleapis.com"
        assert "application/vnd.google-apps.spreadsheet" in seen[0].url.params["q"]
        assert seen[0].headers["Authorization"] == "Bearer tok-1"

    @pytest.mark.asyncio
    async def test_list_spreadsheets_max_results(self):
        def handler(request):
            return httpx.Response(
                200, json={"files": [{"id": "a", "name": "A"}, {"id": "b", "name": "B"}], "nextPageToken": "more"}
            )

        client, seen, _ = _make_client(handler)
        files = await client.list_spreadsheets(max_results=1)
        assert [f.id for f in files] == ["a"]
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_get_spreadsheet_and_sheet_id(self):
        client, _, _ = _make_client(_routes({}))
        meta = await client.get_spreadsheet("ss1")
        assert meta.properties.title == "Budget"
        assert [s.properties.title for s in meta.sheets] == ["Sheet 1", "Archive"]
        assert await client.get_sheet_id_by_name("ss1", "Archive") == 777

    @pytest.mark.asyncio
    async def test_unknown_sheet_is_404(self):
        client, _, _ = _make_client(_routes({}))
        with pytest.raises(ProviderApiError) as excinfo:
            await client.get_sheet_id_by_name("ss1", "Missing")
        assert excinfo.value.status_code == 404
        assert not excinfo.value.retryable


class TestValues:
    @pytest.mark.asyncio
    async def test_get_sheet_data_by_title(self):
        client, seen, _ = _make_client(
            _routes({("GET", "!A1:C3"): httpx.Response(200, json={"range": "'Sheet 1'!A1:C3", "values": [["a", "b"]]})})
        )
        data = await client.get_sheet_data("ss1", "Sheet 1", "A1:C3")

        assert data.values == [["a", "b"]]
        assert seen[0].url.path == "/v4/spreadsheets/ss1/values/'Sheet 1'!A1:C3"

    @pytest.mark.asyncio
    async def test_get_sheet_data_by_gid_resolves_title(self):
        client, seen, _ = _make_client(
            _routes({("GET", "'Archive'"): httpx.Response(200, json={"range": "Archive", "values": []})})
        )
        await client.get_sheet_data("ss1", 777)
        assert [r.url.path for r in seen] == [
            "/v4/spreadsheets/ss1",
            "/v4/spreadsheets/ss1/values/'Archive'",
        ]

    @pytest.mark.asyncio
    async def test_get_sheet_data_unknown_gid(self):
        client, _, _ = _make_client(_routes({}))
        with pytest.raises(ProviderApiError) as excinfo:
            await client.get_sheet_data("ss1", 999)
        assert excinfo.value.status_code == 404

    @pytest.mark.asyncio
    async def test_update_sheet_data(self):
        client, seen, _ = _make_client(
            _routes({("PUT", "!A2:B2"): httpx.Response(200, json={"updatedRange": "'Sheet 1'!A2:B2", "updatedCells": 2})})
        )
        result = await client.update_sheet_data("ss1", "Sheet 1", "A2:B2", [["x", 1]])

        assert result.updated_cells == 2
        request = seen[0]
        assert request.url.params["valueInputOption"] == "USER_ENTERED"
        assert json.loads(request.content)["values"] == [["x", 1]]

    @pytest.mark.asyncio
    async def test_append_rows(self):
        client, seen, _ = _make_client(
            _routes({("POST", ":append"): httpx.Response(
                200, json={"tableRange": "'Sheet 1'!A1:B3", "updates": {"updatedRows": 2}})})
        )
        result = await client.append_rows("ss1", "Sheet 1", [["a"], ["b"]])

        assert result.updates.updated_rows == 2
        assert seen[0].url.params["insertDataOption"] == "INSERT_ROWS"
        assert seen[0].url.path.endswith("/values/'Sheet 1':append")

    @pytest.mark.asyncio
    async def test_clear_sheet_data(self):
        client, _, _ = _make_client(
            _routes({("POST", ":clear"): httpx.Response(200, json={"clearedRange": "'Sheet 1'!A1:Z1000"})})
        )
        assert await client.clear_sheet_data("ss1", "Sheet 1") == "'Sheet 1'!A1:Z1000"


class TestStructure:
    @pytest.mark.asyncio
    async def test_delete_rows_by_title(self):
        bodies = []

        def batch(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"spreadsheetId": "ss1", "replies": [{}]})

        client, _, _ = _make_client(_routes({("POST", ":batchUpdate"): batch}))
        await client.delete_rows("ss1", "Archive", 4, 2)

        assert bodies[0]["requests"][0]["deleteDimension"]["range"] == {
            "sheetId": 777, "dimension": "ROWS", "startIndex": 4, "endIndex": 6,
        }

    @pytest.mark.asyncio
    async def test_ensure_columns_exist_appends_missing(self):
        bodies = []

        def batch(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"replies": [{}]})

        client, _, _ = _make_client(_routes({("POST", ":batchUpdate"): batch}))

        assert await client.ensure_columns_exist("ss1", "Archive", 9) == 4
        assert bodies[0]["requests"][0]["appendDimension"] == {
            "sheetId": 777, "dimension": "COLUMNS", "length": 4,
        }

        assert await client.ensure_columns_exist("ss1", 0, 20) == 0
        assert len(bodies) == 1

    @pytest.mark.asyncio
    async def test_create_sheet(self):
        reply = {"replies": [{"addSheet": {"properties": {"sheetId": 42, "title": "Sync Log", "index": 2}}}]}
        client, _, _ = _make_client(_routes({("POST", ":batchUpdate"): httpx.Response(200, json=reply)}))

        props = await client.create_sheet("ss1", "Sync Log")
        assert props.sheet_id == 42
        assert props.title == "Sync Log"

    @pytest.mark.asyncio
    async def test_hide_column_by_gid_skips_metadata(self):
        bodies = []

        def batch(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"replies": [{}]})

        client, seen, _ = _make_client(_routes({("POST", ":batchUpdate"): batch}))
        await client.hide_column("ss1", 777, 3)

        assert len(seen) == 1
        update = bodies[0]["requests"][0]["updateDimensionProperties"]
        assert update["properties"] == {"hiddenByUser": True}
        assert update["range"]["startIndex"] == 3
        assert update["range"]["endIndex"] == 4

    @pytest.mark.asyncio
    async def test_resize_and_dropdown(self):
        bodies = []

        def batch(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"replies": [{}]})

        client, _, _ = _make_client(_routes({("POST", ":batchUpdate"): batch}))
        await client.resize_columns("ss1", 0, 0, 3)
        await client.resize_columns("ss1", 0, 0, 3, pixel_size=120)
        await client.set_dropdown_validation("ss1", 0, 2, ["Open", "Done"])

        assert "autoResizeDimensions" in bodies[0]["requests"][0]
        assert bodies[1]["requests"][0]["updateDimensionProperties"]["properties"] == {"pixelSize": 120}
        rule = bodies[2]["requests"][0]["setDataValidation"]["rule"]
        assert rule["condition"]["type"] == "ONE_OF_LIST"
        assert rule["condition"]["values"] == [{"userEnteredValue": "Open"}, {"userEnteredValue": "Done"}]


class TestErrorHandling:
    @pytest.mark.asyncio
    async def test_quota_error_retried_with_multiplied_backoff(self):
        responses = [
            httpx.Response(429, json={"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}}),
            httpx.Response(200, json=_META),
        ]
        client, seen, delays = _make_client(lambda request: responses.pop(0), base_delay=1.0)

        meta = await client.get_spreadsheet("ss1")
        assert meta.spreadsheet_id == "ss1"
        assert len(seen) == 2
        assert len(delays) == 1
        assert 3.0 <= delays[0] <= 4.0

    @pytest.mark.asyncio
    async def test_legacy_rate_limit_reason_on_403_is_quota(self):
        responses = [
            httpx.Response(403, json={"error": {"code": 403, "message": "Rate Limit Exceeded",
                                                "errors": [{"reason": "rateLimitExceeded"}]}}),
            httpx.Response(200, json=_META),
        ]
        client, seen, _ = _make_client(lambda request: responses.pop(0))
        await client.get_spreadsheet("ss1")
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_permission_denied_fails_fast(self):
        def handler(request):
            return httpx.Response(
                403, json={"error": {"code": 403, "message": "The caller does not have permission", "status": "PERMISSION_DENIED"}}
            )

        client, seen, delays = _make_client(handler)
        with pytest.raises(ProviderApiError) as excinfo:
            await client.get_spreadsheet("ss1")

        assert excinfo.value.is_auth_error
        assert excinfo.value.error_codes == ("PERMISSION_DENIED",)
        assert excinfo.value.raw_body["error"]["code"] == 403
        assert len(seen) == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self):
        client, seen, delays = _make_client(
            lambda request: httpx.Response(500, json={"error": {"code": 500, "message": "Internal", "status": "INTERNAL"}}),
            max_retries=2,
        )
        with pytest.raises(ProviderApiError) as excinfo:
            await client.get_spreadsheet("ss1")
        assert excinfo.value.status_code == 500
        assert len(seen) == 3
        assert len(delays) == 2
