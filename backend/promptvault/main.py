"""PromptVault import service entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import redis.asyncio as aioredis
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from promptvault.config import ImportConfig
from promptvault.db.connection import Database
from promptvault.dependencies import (
    get_import_config,
    get_progress_store,
    get_session_registry,
    get_work_queue,
    get_worker_dispatcher,
)
from promptvault.progress.router import router as progress_router
from promptvault.progress.store import MemoryProgressStore, ProgressStore, RedisProgressStore
from promptvault.sessions.registry import SessionRegistry
from promptvault.sessions.router import router as sessions_router
from promptvault.worker.blobs import BlobFetcher
from promptvault.worker.dispatcher import WorkerDispatcher
from promptvault.worker.queue import HttpWorkQueue, InProcessWorkQueue, WorkQueue
from promptvault.worker.router import router as worker_router
from promptvault.worker.sink import SqlitePromptSink

logger = logging.getLogger("promptvault")


async def _progress_store(config: ImportConfig) -> ProgressStore:
    if config.redis_url:
        client = aioredis.from_url(
            config.redis_url, decode_responses=True, socket_connect_timeout=5
        )
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            # Single-process deployments still work without Redis
            logger.warning("Redis unavailable (%s), keeping progress in memory", e)
            await client.aclose()
        else:
            return RedisProgressStore(client, config.progress_ttl_seconds)
    return MemoryProgressStore(config.progress_ttl_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage database, Redis and HTTP client lifecycle and service wiring."""
    # Load .env from backend/ directory
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

    config = ImportConfig.from_env()
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.setLevel(config.log_level)
    app.dependency_overrides[get_import_config] = lambda: config

    db = await Database.connect(config.database_path)
    registry = SessionRegistry(db)
    app.dependency_overrides[get_session_registry] = lambda: registry

    progress = await _progress_store(config)
    app.dependency_overrides[get_progress_store] = lambda: progress

    # Shared client for blob downloads and queue publishing
    http = httpx.AsyncClient(timeout=config.fetch_timeout_seconds, follow_redirects=True)

    dispatcher = WorkerDispatcher(
        registry,
        progress,
        BlobFetcher(
            http,
            max_bytes=config.max_file_bytes,
            timeout=config.fetch_timeout_seconds,
        ),
        SqlitePromptSink(db),
        config,
    )
    app.dependency_overrides[get_worker_dispatcher] = lambda: dispatcher

    queue: WorkQueue
    if config.queue_publish_url and config.queue_token:
        queue = HttpWorkQueue(
            http,
            publish_url=config.queue_publish_url,
            token=config.queue_token,
            worker_url=config.worker_url,
            max_attempts=config.max_delivery_attempts,
        )
        logger.info("Publishing import jobs to %s", config.queue_publish_url)
    else:
        queue = InProcessWorkQueue(dispatcher, max_attempts=config.max_delivery_attempts)
        logger.info("No queue configured, running import jobs in-process")
    app.dependency_overrides[get_work_queue] = lambda: queue

    app.state.db = db
    yield

    await queue.close()
    await http.aclose()
    await progress.close()
    await db.close()


app = FastAPI(
    title="PromptVault Import",
    description="Imports chat exports from AI assistants into a prompt library",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(progress_router)
app.include_router(worker_router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": "0.1.0"}
