"""Test fixtures for the PM Archive backend tests."""

import os

# Identity comes from this header in every test request (must be set before app imports)
os.environ.setdefault("PMA_USER_HEADER", "X-User-Id")
os.environ.setdefault("PMA_API_KEY", "")

import aiosqlite
import pytest
from httpx import ASGITransport, AsyncClient


@pytest.fixture()
async def tmp_db(tmp_path):
    """Create a temporary SQLite database with the full schema applied."""
    from pmarchive.database import run_migrations

    db_path = tmp_path / "test.db"
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        # Same journal mode as init_db so readers never hold up a committing writer
        await db.execute("PRAGMA journal_mode = WAL")
        await run_migrations(db)
    return db_path


@pytest.fixture()
async def db(tmp_db):
    """A direct connection to the test database, for service-level tests."""
    async with aiosqlite.connect(tmp_db) as conn:
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA busy_timeout = 5000")
        yield conn


@pytest.fixture()
async def app(tmp_db):
    """FastAPI app wired to the test database."""
    from pmarchive import database
    from pmarchive.metrics import metrics

    original_db_path = database.DB_PATH
    database.DB_PATH = tmp_db
    metrics.reset()

    from pmarchive.main import app as _app

    yield _app

    database.DB_PATH = original_db_path


@pytest.fixture()
async def client(app):
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def as_user(user_id):
    """Request headers identifying the caller."""
    return {"X-User-Id": user_id}


async def _seed_user(client, user_id, full_name):
    resp = await client.post("/api/users", json={
        "id": user_id,
        "full_name": full_name,
        "email": f"{user_id}@example.com",
        "department": "Engineering",
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture()
async def alice(client):
    return await _seed_user(client, "alice", "Alice Adams")


@pytest.fixture()
async def bob(client):
    return await _seed_user(client, "bob", "Bob Brown")


@pytest.fixture()
async def created_project(client, alice):
    """A project created by alice."""
    resp = await client.post("/api/projects", json={
        "project_name": "ERP Migration",
        "project_owner": "Finance",
        "priority": "High",
    }, headers=as_user("alice"))
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture()
async def created_message(client, alice, bob):
    """A personal message from alice to bob."""
    resp = await client.post("/api/messages", json={
        "content": "Standup moved to 10:30",
        "receiver_id": "bob",
    }, headers=as_user("alice"))
    assert resp.status_code == 201, resp.text
    return resp.json()
