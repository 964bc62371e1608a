"""Shared pytest fixtures for PromptVault tests."""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from promptvault.config import ImportConfig
from promptvault.db.connection import Database
from promptvault.dependencies import (
    get_import_config,
    get_progress_store,
    get_session_registry,
    get_work_queue,
    get_worker_dispatcher,
)
from promptvault.main import app
from promptvault.sessions.registry import SessionRegistry
from promptvault.worker.blobs import BlobFetcher
from promptvault.worker.dispatcher import WorkerDispatcher
from promptvault.worker.queue import InProcessWorkQueue
from promptvault.worker.sink import SqlitePromptSink
from tests.fixtures import RecordingProgressStore, make_blob_transport


@pytest.fixture
async def db():
    """In-memory database for tests."""
    database = await Database.connect(":memory:")
    yield database
    await database.close()


@pytest.fixture
def config():
    """Import config tuned for fast tests."""
    return ImportConfig(
        database_path=":memory:",
        poll_interval_seconds=0.01,
        worker_timeout_seconds=5,
        batch_size=2,
    )


@pytest.fixture
async def registry(db):
    """SessionRegistry backed by in-memory database."""
    return SessionRegistry(db)


@pytest.fixture
def progress():
    """In-memory progress store that remembers every write."""
    return RecordingProgressStore()


@pytest.fixture
async def sink(db):
    return SqlitePromptSink(db)


@pytest.fixture
def blobs():
    """URL -> body (bytes) or HTTP status (int) served to the blob fetcher."""
    return {}


@pytest.fixture
async def http_client(blobs):
    async with httpx.AsyncClient(transport=make_blob_transport(blobs)) as client:
        yield client


@pytest.fixture
async def dispatcher(registry, progress, http_client, sink, config):
    return WorkerDispatcher(
        registry,
        progress,
        BlobFetcher(http_client, max_bytes=config.max_file_bytes),
        sink,
        config,
    )


@pytest.fixture
async def work_queue(dispatcher, config):
    queue = InProcessWorkQueue(
        dispatcher, max_attempts=config.max_delivery_attempts, retry_delay=0
    )
    yield queue
    await queue.close()


@pytest.fixture
async def client(config, registry, progress, dispatcher, work_queue):
    """Async test client with in-memory components wired into the app."""
    app.dependency_overrides[get_import_config] = lambda: config
    app.dependency_overrides[get_session_registry] = lambda: registry
    app.dependency_overrides[get_progress_store] = lambda: progress
    app.dependency_overrides[get_worker_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_work_queue] = lambda: work_queue
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
