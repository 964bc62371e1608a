"""Dependency placeholders, overridden at startup and in tests."""

from fastapi import Header, HTTPException

from promptvault.config import ImportConfig
from promptvault.progress.store import ProgressStore
from promptvault.sessions.registry import SessionRegistry
from promptvault.worker.dispatcher import WorkerDispatcher
from promptvault.worker.queue import WorkQueue


def get_import_config() -> ImportConfig:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("ImportConfig not configured")


def get_session_registry() -> SessionRegistry:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("SessionRegistry not configured")


def get_progress_store() -> ProgressStore:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("ProgressStore not configured")


def get_work_queue() -> WorkQueue:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("WorkQueue not configured")


def get_worker_dispatcher() -> WorkerDispatcher:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("WorkerDispatcher not configured")


async def get_current_user_id(x_user_id: str | None = Header(None)) -> str:
    """Caller identity, as established by the authentication layer in front of us."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id
