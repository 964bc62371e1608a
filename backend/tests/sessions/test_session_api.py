"""Tests for the import session HTTP endpoints."""

import pytest

from promptvault.config import ImportConfig
from promptvault.dependencies import get_import_config, get_progress_store, get_work_queue
from promptvault.main import app
from promptvault.models import Platform, SessionStatus
from promptvault.progress.store import MemoryProgressStore
from promptvault.worker.queue import QueuePublishError, WorkQueue
from tests.fixtures import OTHER_USER_ID, USER_ID, chatgpt_export, data_url

AUTH = {"X-User-Id": USER_ID}


async def _create(client, platform="chatgpt", headers=AUTH) -> str:
    resp = await client.post(
        "/api/import/session",
        json={"platform": platform, "fileName": "conversations.json", "fileSize": 2048,
              "fileType": "application/json"},
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json()["sessionId"]


class _BrokenQueue(WorkQueue):
    async def publish(self, item):
        raise QueuePublishError("queue is down")


class _UnclearableStore(MemoryProgressStore):
    async def clear(self, session_id):
        raise ConnectionError("redis down")


class TestCreateSession:
    async def test_requires_identity(self, client):
        resp = await client.post(
            "/api/import/session",
            json={"platform": "chatgpt", "fileName": "a.json", "fileSize": 1},
        )
        assert resp.status_code == 401

    async def test_create_and_get(self, client):
        session_id = await _create(client)
        resp = await client.get(f"/api/import/session/{session_id}", headers=AUTH)
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == session_id
        assert body["status"] == "pending"
        assert body["userId"] == USER_ID
        assert body["file"]["name"] == "conversations.json"
        assert body["totalPrompts"] == 0

    async def test_unknown_platform(self, client):
        resp = await client.post(
            "/api/import/session",
            json={"platform": "myspace", "fileName": "a.json", "fileSize": 1},
            headers=AUTH,
        )
        assert resp.status_code == 422

    async def test_disabled_platform(self, client):
        config = ImportConfig(disabled_platforms=frozenset({Platform.GEMINI}))
        app.dependency_overrides[get_import_config] = lambda: config
        resp = await client.post(
            "/api/import/session",
            json={"platform": "gemini", "fileName": "a.json", "fileSize": 1},
            headers=AUTH,
        )
        assert resp.status_code == 403

    async def test_other_users_session_is_forbidden(self, client):
        session_id = await _create(client)
        resp = await client.get(
            f"/api/import/session/{session_id}", headers={"X-User-Id": OTHER_USER_ID}
        )
        assert resp.status_code == 403

    async def test_missing_session(self, client):
        resp = await client.get("/api/import/session/nope", headers=AUTH)
        assert resp.status_code == 404

    async def test_list_sessions(self, client):
        first = await _create(client)
        second = await _create(client, platform="claude")
        await _create(client, headers={"X-User-Id": OTHER_USER_ID})
        resp = await client.get("/api/import/sessions", headers=AUTH)
        assert resp.status_code == 200
        assert {s["id"] for s in resp.json()} == {first, second}


class TestProcess:
    async def test_end_to_end(self, client, work_queue):
        session_id = await _create(client)
        resp = await client.post(
            "/api/import/process",
            json={"sessionId": session_id, "blobUrl": data_url(chatgpt_export()),
                  "platform": "chatgpt"},
            headers=AUTH,
        )
        assert resp.status_code == 200
        assert resp.json()["message"] == "Processing started"
        assert resp.json()["messageId"].startswith("local-")

        await work_queue.drain()

        body = (await client.get(f"/api/import/session/{session_id}", headers=AUTH)).json()
        assert body["status"] == "completed"
        assert body["totalPrompts"] == 3
        assert body["processedPrompts"] == 3
        assert body["metadata"]["platform"] == "chatgpt"

    async def test_progress_store_outage_does_not_strand_session(self, client, work_queue, registry):
        app.dependency_overrides[get_progress_store] = lambda: _UnclearableStore()
        session_id = await _create(client)
        resp = await client.post(
            "/api/import/process",
            json={"sessionId": session_id, "blobUrl": data_url(chatgpt_export()),
                  "platform": "chatgpt"},
            headers=AUTH,
        )
        assert resp.status_code == 200

        await work_queue.drain()

        assert (await registry.get(session_id)).status == SessionStatus.COMPLETED

    async def test_cannot_process_twice(self, client, work_queue):
        session_id = await _create(client)
        payload = {"sessionId": session_id, "blobUrl": data_url("[]"), "platform": "chatgpt"}
        first = await client.post("/api/import/process", json=payload, headers=AUTH)
        assert first.status_code == 200
        second = await client.post("/api/import/process", json=payload, headers=AUTH)
        assert second.status_code == 409
        await work_queue.drain()

    async def test_platform_must_match(self, client):
        session_id = await _create(client)
        resp = await client.post(
            "/api/import/process",
            json={"sessionId": session_id, "blobUrl": "https://blobs.test/x", "platform": "claude"},
            headers=AUTH,
        )
        assert resp.status_code == 400

    async def test_rejects_unsupported_blob_scheme(self, client):
        session_id = await _create(client)
        resp = await client.post(
            "/api/import/process",
            json={"sessionId": session_id, "blobUrl": "file:///etc/passwd", "platform": "chatgpt"},
            headers=AUTH,
        )
        assert resp.status_code == 422

    async def test_other_user_cannot_process(self, client):
        session_id = await _create(client)
        resp = await client.post(
            "/api/import/process",
            json={"sessionId": session_id, "blobUrl": "https://blobs.test/x", "platform": "chatgpt"},
            headers={"X-User-Id": OTHER_USER_ID},
        )
        assert resp.status_code == 403

    async def test_publish_failure_fails_session(self, client, registry):
        app.dependency_overrides[get_work_queue] = lambda: _BrokenQueue()
        session_id = await _create(client)
        resp = await client.post(
            "/api/import/process",
            json={"sessionId": session_id, "blobUrl": "https://blobs.test/x", "platform": "chatgpt"},
            headers=AUTH,
        )
        assert resp.status_code == 502
        session = await registry.get(session_id)
        assert session.status == SessionStatus.FAILED
        assert session.error == "Failed to start processing"


@pytest.mark.parametrize("path", ["/api/import/sessions", "/api/import/session/x"])
async def test_reads_require_identity(client, path):
    assert (await client.get(path)).status_code == 401


async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.json()["status"] == "ok"
