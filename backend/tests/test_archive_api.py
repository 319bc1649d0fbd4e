"""Tests for the /api/archive endpoints.

Covers request/response shapes, identity handling, error mapping, and the
effect of archiving on entity listings.
"""

import aiosqlite
import pytest

from conftest import as_user


async def _archive(client, user_id, entity_id, entity_type):
    return await client.post("/api/archive/archive", json={
        "entityId": entity_id,
        "entityType": entity_type,
    }, headers=as_user(user_id))


async def _unarchive(client, user_id, entity_id, entity_type):
    return await client.post(
        "/api/archive/unarchive",
        params={"entityId": entity_id, "entityType": entity_type},
        headers=as_user(user_id),
    )


class TestArchiveEndpoint:

    async def test_archive_returns_camel_case_record(self, client, created_project):
        pid = str(created_project["id"])
        resp = await _archive(client, "alice", pid, "Project")
        assert resp.status_code == 200
        data = resp.json()
        assert set(data) == {"id", "entityId", "entityType", "archivedBy", "archivedDate"}
        assert data["entityId"] == pid
        assert data["entityType"] == "Project"
        assert data["archivedBy"] == "alice"

    async def test_accepts_numeric_id_and_type_code(self, client, created_project):
        resp = await _archive(client, "alice", created_project["id"], 0)
        assert resp.status_code == 200
        assert resp.json()["entityId"] == str(created_project["id"])
        assert resp.json()["entityType"] == "Project"

    async def test_accepts_snake_case_body(self, client, created_message):
        resp = await client.post("/api/archive/archive", json={
            "entity_id": str(created_message["id"]),
            "entity_type": "message",
        }, headers=as_user("bob"))
        assert resp.status_code == 200
        assert resp.json()["entityType"] == "Message"

    async def test_archive_twice_returns_400(self, client, created_project):
        pid = str(created_project["id"])
        assert (await _archive(client, "alice", pid, "Project")).status_code == 200

        resp = await _archive(client, "alice", pid, "Project")
        assert resp.status_code == 400
        assert resp.json() == {"detail": "You already archived this item.", "error": "already_archived"}

        archives = (await client.get("/api/archive/my-archives", headers=as_user("alice"))).json()
        assert len(archives) == 1

    async def test_missing_entity_returns_400(self, client, alice):
        resp = await _archive(client, "alice", "999", "Project")
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Project not found.", "error": "entity_not_found"}

    async def test_unknown_entity_type_is_validation_error(self, client, alice):
        resp = await _archive(client, "alice", "1", "Milestone")
        assert resp.status_code == 422
        assert any("entityType" in e["field"] for e in resp.json()["errors"])

    async def test_empty_entity_id_is_validation_error(self, client, alice):
        resp = await _archive(client, "alice", "", "Project")
        assert resp.status_code == 422

    async def test_missing_identity_returns_401(self, client, created_project):
        resp = await client.post("/api/archive/archive", json={
            "entityId": str(created_project["id"]), "entityType": "Project",
        })
        assert resp.status_code == 401

    async def test_unknown_caller_returns_401(self, client, created_project):
        resp = await _archive(client, "mallory", str(created_project["id"]), "Project")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Unknown user"


class TestUnarchiveEndpoint:

    async def test_unarchive_with_query_params(self, client, created_project):
        pid = str(created_project["id"])
        await _archive(client, "alice", pid, "Project")

        resp = await _unarchive(client, "alice", pid, "Project")
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    async def test_unarchive_with_json_body(self, client, created_project):
        pid = str(created_project["id"])
        await _archive(client, "alice", pid, "Project")

        resp = await client.post("/api/archive/unarchive", json={
            "entityId": pid, "entityType": "Project",
        }, headers=as_user("alice"))
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    async def test_unarchive_accepts_type_code(self, client, created_message):
        mid = str(created_message["id"])
        await _archive(client, "bob", mid, "Message")
        resp = await _unarchive(client, "bob", mid, "2")
        assert resp.status_code == 200

    async def test_unarchive_without_params_is_validation_error(self, client, alice):
        resp = await client.post("/api/archive/unarchive", headers=as_user("alice"))
        assert resp.status_code == 422

    async def test_unarchive_bad_type_is_validation_error(self, client, alice):
        resp = await _unarchive(client, "alice", "1", "Folder")
        assert resp.status_code == 422

    async def test_unarchive_not_archived_returns_400(self, client, created_project):
        resp = await _unarchive(client, "alice", str(created_project["id"]), "Project")
        assert resp.status_code == 400
        assert resp.json() == {
            "detail": "Archive record not found for this user.",
            "error": "archive_not_found",
        }

    async def test_other_user_cannot_unarchive(self, client, created_project, bob):
        pid = str(created_project["id"])
        await _archive(client, "alice", pid, "Project")

        resp = await _unarchive(client, "bob", pid, "Project")
        assert resp.status_code == 400
        assert resp.json()["error"] == "archive_not_found"

        project = (await client.get(f"/api/projects/{pid}")).json()
        assert project["is_archived"] is True


class TestMyArchives:

    async def test_empty_for_new_user(self, client, alice):
        resp = await client.get("/api/archive/my-archives", headers=as_user("alice"))
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_lists_own_records_newest_first(self, client, created_project, created_message):
        await _archive(client, "alice", str(created_project["id"]), "Project")
        await _archive(client, "alice", str(created_message["id"]), "Message")
        await _archive(client, "bob", str(created_project["id"]), "Project")

        resp = await client.get("/api/archive/my-archives", headers=as_user("alice"))
        data = resp.json()
        assert [a["entityType"] for a in data] == ["Message", "Project"]
        assert all(a["archivedBy"] == "alice" for a in data)

    async def test_requires_identity(self, client):
        resp = await client.get("/api/archive/my-archives")
        assert resp.status_code == 401


class TestMirroredFlagInListings:

    async def test_archived_project_hidden_from_default_listing(self, client, created_project):
        pid = created_project["id"]
        await _archive(client, "alice", str(pid), "Project")

        ids = [p["id"] for p in (await client.get("/api/projects")).json()]
        assert pid not in ids

        ids = [p["id"] for p in (await client.get("/api/projects?include_archived=true")).json()]
        assert pid in ids

        project = (await client.get(f"/api/projects/{pid}")).json()
        assert project["is_archived"] is True
        assert project["archive_date"] is not None

    async def test_archived_user_hidden_from_directory(self, client, alice, bob):
        await _archive(client, "alice", "bob", "User")

        ids = [u["id"] for u in (await client.get("/api/users")).json()]
        assert ids == ["alice"]
        user = (await client.get("/api/users/bob")).json()
        assert user["is_archived"] is True

    async def test_archived_message_hidden_from_inbox(self, client, created_message):
        mid = created_message["id"]
        await _archive(client, "bob", str(mid), "Message")

        inbox = (await client.get("/api/messages", headers=as_user("bob"))).json()
        assert mid not in [m["id"] for m in inbox]
        inbox = (await client.get("/api/messages?include_archived=true", headers=as_user("bob"))).json()
        assert mid in [m["id"] for m in inbox]


class TestEndToEnd:

    async def test_alice_archives_and_restores_project_42(self, client, tmp_db, alice):
        async with aiosqlite.connect(tmp_db) as db:
            await db.execute("INSERT INTO projects (id, project_name) VALUES (42, 'Data Warehouse')")
            await db.commit()

        resp = await _archive(client, "alice", "42", "Project")
        assert resp.status_code == 200

        archives = (await client.get("/api/archive/my-archives", headers=as_user("alice"))).json()
        assert len(archives) == 1
        assert archives[0]["entityId"] == "42"
        assert archives[0]["entityType"] == "Project"
        assert (await client.get("/api/projects/42")).json()["is_archived"] is True

        resp = await _unarchive(client, "alice", "42", "Project")
        assert resp.json() == {"success": True}

        archives = (await client.get("/api/archive/my-archives", headers=as_user("alice"))).json()
        assert archives == []
        assert (await client.get("/api/projects/42")).json()["is_archived"] is False


class TestSystemEndpoints:

    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["db"] == "ok"

    async def test_metrics_count_archive_outcomes(self, client, created_project):
        pid = str(created_project["id"])
        await _archive(client, "alice", pid, "Project")
        await _archive(client, "alice", pid, "Project")

        from pmarchive.metrics import metrics
        assert metrics.archive_op_count("archive", "ok") == 1
        assert metrics.archive_op_count("archive", "already_archived") == 1
        assert metrics.archive_op_count("unarchive", "ok") == 0

        resp = await client.get("/api/metrics")
        assert resp.status_code == 200
        body = resp.text
        assert 'pma_archive_operations_total{operation="archive",outcome="ok"} 1' in body
        assert 'pma_archive_operations_total{operation="archive",outcome="already_archived"} 1' in body
        assert "pma_http_requests_total" in body

    async def test_security_and_request_id_headers(self, client):
        resp = await client.get("/api/health", headers={"X-Request-ID": "trace-123"})
        assert resp.headers["X-Request-ID"] == "trace-123"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["Cache-Control"] == "no-store"
