"""HTTP API tests: issue CRUD, maintenance endpoints, report and error envelopes."""

from __future__ import annotations

from httpx import AsyncClient

from opsdesk.core import OpsDeskDB
from tests._db_factory import ADMIN, seed


async def _create(client: AsyncClient, title: str = "Target", **extra: object) -> dict:
    resp = await client.post("/api/issues", json={"title": title, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestHealth:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestIssues:
    async def test_create_assigns_display_id(self, client: AsyncClient) -> None:
        first = await _create(client, severity="S2", type="billing_subscription", user_id="u1")
        second = await _create(client, app="admin-core")
        assert first["display_id"] == "EC-1"
        assert first["severity"] == "S2"
        assert second["display_id"] == "AC-1"

    async def test_create_requires_title(self, client: AsyncClient) -> None:
        resp = await client.post("/api/issues", json={"severity": "S1"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_ARGUMENT"

    async def test_create_unknown_app(self, client: AsyncClient) -> None:
        resp = await client.post("/api/issues", json={"title": "x", "app": "marketing"})
        assert resp.status_code == 400

    async def test_invalid_json_body(self, client: AsyncClient) -> None:
        resp = await client.post("/api/issues", content=b"{nope", headers={"content-type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_list_and_detail(self, client: AsyncClient) -> None:
        created = await _create(client)
        listed = (await client.get("/api/issues")).json()
        assert [i["id"] for i in listed] == [created["id"]]
        by_display = await client.get("/api/issue/EC-1")
        assert by_display.json()["id"] == created["id"]

    async def test_list_bad_limit(self, client: AsyncClient) -> None:
        resp = await client.get("/api/issues?limit=zero")
        assert resp.status_code == 400

    async def test_detail_missing(self, client: AsyncClient) -> None:
        resp = await client.get("/api/issue/EC-404")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_patch_strips_identity_keys(self, client: AsyncClient) -> None:
        created = await _create(client)
        resp = await client.patch(
            f"/api/issue/{created['id']}",
            json={"actor": ADMIN, "displayId": "EC-77", "issue_id": "EC-78", "severity": "S1"},
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["display_id"] == "EC-1"
        assert body["severity"] == "S1"

    async def test_patch_requires_admin(self, client: AsyncClient) -> None:
        created = await _create(client)
        resp = await client.patch(f"/api/issue/{created['id']}", json={"actor": "random", "status": "closed"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "PERMISSION_DENIED"

    async def test_patch_missing_actor(self, client: AsyncClient) -> None:
        created = await _create(client)
        resp = await client.patch(f"/api/issue/{created['id']}", json={"status": "closed"})
        assert resp.status_code == 400

    async def test_patch_bad_version(self, client: AsyncClient) -> None:
        created = await _create(client)
        resp = await client.patch(f"/api/issue/{created['id']}", json={"actor": ADMIN, "planned_for_version": "1.2"})
        assert resp.status_code == 400
        assert "Malformed version" in resp.json()["error"]["message"]

    async def test_delete(self, client: AsyncClient) -> None:
        created = await _create(client)
        resp = await client.delete(f"/api/issue/{created['id']}", params={"actor": ADMIN})
        assert resp.status_code == 200
        assert resp.json()["deleted"] is True
        assert (await client.get("/api/issues")).json() == []
        with_deleted = (await client.get("/api/issues", params={"include_deleted": "true"})).json()
        assert len(with_deleted) == 1

    async def test_notes(self, client: AsyncClient) -> None:
        created = await _create(client)
        resp = await client.post(f"/api/issue/{created['id']}/notes", json={"actor": ADMIN, "text": "Looking into it"})
        assert resp.status_code == 201
        assert resp.json()["author"] == ADMIN
        detail = (await client.get(f"/api/issue/{created['id']}")).json()
        assert [n["text"] for n in detail["notes"]] == ["Looking into it"]


class TestMaintenance:
    async def test_next_id(self, client: AsyncClient) -> None:
        await _create(client)
        resp = await client.get("/api/next-id/EC")
        assert resp.json() == {"prefix": "EC", "next_id": "EC-2"}

    async def test_next_id_unknown_prefix(self, client: AsyncClient) -> None:
        resp = await client.get("/api/next-id/ZZ")
        assert resp.status_code == 400

    async def test_backfill(self, client: AsyncClient, api_db: OpsDeskDB) -> None:
        seed(api_db, title="orphan")
        resp = await client.post("/api/maintenance/backfill", json={"actor": ADMIN})
        assert resp.json() == {"assigned": 1}

    async def test_backfill_forbidden(self, client: AsyncClient) -> None:
        resp = await client.post("/api/maintenance/backfill", json={"actor": "someone"})
        assert resp.status_code == 403

    async def test_repair(self, client: AsyncClient, api_db: OpsDeskDB) -> None:
        seed(api_db, title="a", display_id="EC-1", created_at="2025-01-01T00:00:00+00:00")
        seed(api_db, title="b", display_id="EC-1", created_at="2025-01-02T00:00:00+00:00")
        resp = await client.post("/api/maintenance/repair", json={"actor": ADMIN})
        assert resp.json() == {"fixed": 1, "log": ["EC-1 (duplicate #1) → EC-2"]}
        again = await client.post("/api/maintenance/repair", json={"actor": ADMIN})
        assert again.json() == {"fixed": 0, "log": ["No duplicates found"]}

    async def test_repair_over_ceiling(self, client: AsyncClient, api_db: OpsDeskDB) -> None:
        api_db.batch_limit = 1
        for n in range(3):
            seed(api_db, title=f"t{n}", display_id="EC-1")
        resp = await client.post("/api/maintenance/repair", json={"actor": ADMIN})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "PRECONDITION_FAILED"

    async def test_import(self, client: AsyncClient, api_db: OpsDeskDB) -> None:
        seed(api_db, title="seven", display_id="EC-7")
        rows = [{"title": t, "severity": "S3"} for t in ("a", "b", "c")]
        resp = await client.post("/api/import", json={"actor": ADMIN, "rows": rows})
        assert resp.status_code == 201
        assert [i["display_id"] for i in resp.json()["issues"]] == ["EC-8", "EC-9", "EC-10"]

    async def test_import_requires_rows(self, client: AsyncClient) -> None:
        resp = await client.post("/api/import", json={"actor": ADMIN, "rows": "nope"})
        assert resp.status_code == 400

    async def test_audit(self, client: AsyncClient) -> None:
        created = await _create(client, actor="reporter-1")
        resp = await client.get("/api/audit", params={"target": created["id"]})
        records = resp.json()
        assert [r["action"] for r in records] == ["issue_created"]
        assert records[0]["actor"] == "reporter-1"


class TestReport:
    async def test_report(self, client: AsyncClient) -> None:
        await _create(client, "Login broken", severity="S1", type="auth_account_access", user_id=ADMIN)
        await _create(client, "Wrong answer key", severity="S2", type="quiz_assessment_logic", status="in_progress")
        resp = await client.get("/api/report")
        assert resp.status_code == 200
        data = resp.json()
        assert data["summary"]["total_open"] == 2
        assert data["summary"]["tester_trust_risk_present"] is True
        assert [i["display_id"] for i in data["fix_now"]] == ["EC-1"]
        assert data["fix_now"][0]["assignee"] == "admin@example.com"
