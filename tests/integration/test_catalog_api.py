"""
Integration Tests for the catalog HTTP API.

Requests go through the full application (middleware, routers, exception
handlers) against the in-memory SQLite database.
"""

import json

import pytest
from httpx import AsyncClient

BANKS = "/api/v1/banks"
MARKETS = "/api/v1/markets"
LOCALS = "/api/v1/locals"


class TestHealth:
    async def test_liveness(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_request_id_is_generated(self, client: AsyncClient):
        response = await client.get("/health")

        assert len(response.headers["X-Request-ID"]) == 36
        assert response.headers["X-Response-Time"].endswith("ms")

    async def test_request_id_is_propagated(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"


class TestList:
    """Tests for GET on a catalog collection."""

    async def test_envelope_and_meta(self, client: AsyncClient, banks):
        response = await client.get(BANKS, params={"per_page": 2})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert len(body["data"]["rows"]) == 2
        assert body["data"]["meta"] == {"current_page": 1, "per_page": 2, "total": 5, "last_page": 3}

    async def test_search(self, client: AsyncClient, banks):
        response = await client.get(BANKS, params={"q": "BANCO"})

        codes = {row["code"] for row in response.json()["data"]["rows"]}
        assert codes == {"BNA", "BPR"}

    async def test_bracketed_filters(self, client: AsyncClient, banks):
        response = await client.get(
            BANKS,
            params=[("filters[code_in][]", "GAL"), ("filters[code_in][]", "SUP"), ("filters[is_active]", "true")],
        )

        assert [row["code"] for row in response.json()["data"]["rows"]] == ["GAL"]

    async def test_sort(self, client: AsyncClient, banks):
        response = await client.get(BANKS, params={"sort": "code", "dir": "desc"})

        codes = [row["code"] for row in response.json()["data"]["rows"]]
        assert codes == ["SUP", "MAC", "GAL", "BPR", "BNA"]

    async def test_per_page_is_clamped(self, client: AsyncClient, banks):
        response = await client.get(BANKS, params={"per_page": 100000})

        assert response.json()["data"]["meta"]["per_page"] == 100

    async def test_markets_include_locals_count(self, client: AsyncClient, market_with_locals):
        response = await client.get(MARKETS)

        assert response.json()["data"]["rows"][0]["locals_count"] == 3

    async def test_locals_by_market_code(self, client: AsyncClient, market_with_locals):
        response = await client.get(LOCALS, params={"filters[market_code]": "CEN", "sort": "monthly_rent", "dir": "asc"})

        rents = [row["monthly_rent"] for row in response.json()["data"]["rows"]]
        assert rents == [100, 250, 400]


class TestItem:
    """Tests for single-record endpoints."""

    async def test_create_and_get(self, client: AsyncClient):
        created = await client.post(BANKS, json={"code": "icb", "name": "ICBC"})

        assert created.status_code == 201
        data = created.json()["data"]
        assert data["code"] == "ICB"

        fetched = await client.get(f"{BANKS}/{data['id']}")
        assert fetched.json()["data"]["item"]["uuid"] == data["uuid"]
        assert fetched.json()["data"]["meta"] == {"loaded_relations": [], "loaded_counts": []}

    async def test_get_missing_is_404(self, client: AsyncClient):
        response = await client.get(f"{BANKS}/999")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RES_NOT_FOUND"

    async def test_invalid_body_is_422(self, client: AsyncClient):
        response = await client.post(BANKS, json={"name": "No code"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VAL_REQUEST_INVALID"

    async def test_duplicate_is_409(self, client: AsyncClient, banks):
        response = await client.post(BANKS, json={"code": "BNA", "name": "Again"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "RES_CONSTRAINT_VIOLATION"

    async def test_patch(self, client: AsyncClient, banks):
        response = await client.patch(f"{BANKS}/{banks[0].id}", json={"name": "Nacion"})

        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Nacion"
        assert response.json()["data"]["code"] == "BNA"

    async def test_patch_with_stale_timestamp_is_409(self, client: AsyncClient, banks):
        response = await client.patch(
            f"{BANKS}/{banks[0].id}",
            json={"name": "Nacion", "expected_updated_at": "2000-01-01T00:00:00"},
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "RES_CONFLICT"

    async def test_delete_restore_force(self, client: AsyncClient, banks):
        bank_id = banks[0].id

        deleted = await client.delete(f"{BANKS}/{bank_id}")
        assert deleted.json()["data"] == {"id": bank_id, "done": True}
        assert (await client.get(f"{BANKS}/{bank_id}")).status_code == 404

        restored = await client.post(f"{BANKS}/{bank_id}/restore")
        assert restored.json()["data"]["done"] is True
        assert (await client.get(f"{BANKS}/{bank_id}")).status_code == 200

        await client.delete(f"{BANKS}/{bank_id}/force")
        assert (await client.post(f"{BANKS}/{bank_id}/restore")).status_code == 404

    async def test_set_active(self, client: AsyncClient, banks):
        response = await client.patch(f"{BANKS}/{banks[0].id}/active", json={"active": False})

        assert response.json()["data"]["is_active"] is False

    async def test_market_deactivate_conflict(self, client: AsyncClient, market_with_locals):
        response = await client.post(f"{MARKETS}/{market_with_locals.id}/deactivate")

        assert response.status_code == 409


class TestShow:
    """Tests for single-record reads with relations, counts and trashed rows."""

    async def test_with_relation_and_count(self, client: AsyncClient, market_with_locals):
        response = await client.get(
            f"{MARKETS}/{market_with_locals.id}",
            params={"with": "locals", "with_count": "locals"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert sorted(local["code"] for local in data["item"]["locals"]) == ["L1", "L2", "L3"]
        assert data["item"]["locals_count"] == 3
        assert data["meta"] == {"loaded_relations": ["locals"], "loaded_counts": ["locals_count"]}

    async def test_local_with_market(self, client: AsyncClient, market_with_locals):
        listing = await client.get(LOCALS, params={"filters[code]": "L1"})
        local_id = listing.json()["data"]["rows"][0]["id"]

        response = await client.get(f"{LOCALS}/{local_id}", params=[("with[]", "market")])

        assert response.json()["data"]["item"]["market"]["code"] == "CEN"

    async def test_unknown_relation_is_400(self, client: AsyncClient, banks):
        response = await client.get(f"{BANKS}/{banks[0].id}", params={"with": "owner"})

        assert response.status_code == 400

    async def test_with_trashed(self, client: AsyncClient, market_with_locals):
        market_id = market_with_locals.id
        await client.delete(f"{MARKETS}/{market_id}")

        hidden = await client.get(f"{MARKETS}/{market_id}")
        shown = await client.get(f"{MARKETS}/{market_id}", params={"with_trashed": "true"})

        assert hidden.status_code == 404
        assert shown.status_code == 200
        assert shown.json()["data"]["item"]["deleted_at"] is not None

    async def test_by_uuid(self, client: AsyncClient, banks):
        response = await client.get(f"{BANKS}/by-uuid/{banks[2].uuid}")

        assert response.json()["data"]["item"]["code"] == "GAL"

    async def test_by_uuid_missing_is_404(self, client: AsyncClient, banks):
        response = await client.get(f"{BANKS}/by-uuid/no-such-uuid")

        assert response.status_code == 404


class TestBulk:
    async def test_bulk_delete(self, client: AsyncClient, banks):
        ids = [banks[0].id, banks[1].id]

        response = await client.post(f"{BANKS}/bulk", json={"action": "delete", "ids": ids})

        assert response.json()["data"] == {"action": "delete", "affected": 2}
        listing = await client.get(BANKS)
        assert listing.json()["data"]["meta"]["total"] == 3

    async def test_bulk_set_active_by_uuid(self, client: AsyncClient, banks):
        uuids = [bank.uuid for bank in banks]

        response = await client.post(
            f"{BANKS}/bulk",
            json={"action": "set_active", "uuids": uuids, "active": False},
        )

        assert response.json()["data"]["affected"] == 5

    async def test_bulk_empty_ids(self, client: AsyncClient, banks):
        response = await client.post(f"{BANKS}/bulk", json={"action": "force_delete", "ids": []})

        assert response.json()["data"]["affected"] == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"action": "delete"},
            {"action": "delete", "ids": [1], "uuids": ["x"]},
            {"action": "set_active", "ids": [1]},
            {"action": "archive", "ids": [1]},
        ],
    )
    async def test_invalid_bulk_request(self, client: AsyncClient, payload):
        response = await client.post(f"{BANKS}/bulk", json=payload)

        assert response.status_code == 422


class TestExport:
    """Tests for streaming downloads."""

    async def test_csv(self, client: AsyncClient, banks):
        response = await client.get(
            f"{BANKS}/export",
            params={"format": "csv", "sort": "code", "dir": "asc", "filters[is_active]": "true"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"].startswith('attachment; filename="bank_export_')
        lines = response.text.splitlines()
        assert lines[0] == "ID,Code,Name,Status,Created"
        assert [line.split(",")[1] for line in lines[1:]] == ["BNA", "BPR", "GAL", "MAC"]

    async def test_json(self, client: AsyncClient, banks):
        response = await client.get(f"{BANKS}/export", params={"format": "json", "q": "macro"})

        rows = json.loads(response.text)
        assert [row["Code"] for row in rows] == ["MAC"]
        assert rows[0]["Status"] is True

    async def test_xlsx_has_byte_order_mark(self, client: AsyncClient, banks):
        response = await client.get(f"{BANKS}/export", params={"format": "xlsx"})

        assert response.content.startswith("\ufeff".encode("utf-8"))
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"].endswith('.xlsx"')

    async def test_unknown_format_is_400(self, client: AsyncClient, banks):
        response = await client.get(f"{BANKS}/export", params={"format": "pdf"})

        assert response.status_code == 400
        assert response.json()["error"]["details"]["format"] == "pdf"
