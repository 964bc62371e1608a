"""Progress stream API route."""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from promptvault.config import ImportConfig
from promptvault.dependencies import (
    get_current_user_id,
    get_import_config,
    get_progress_store,
    get_session_registry,
)
from promptvault.progress.store import ProgressStore
from promptvault.progress.stream import stream_progress
from promptvault.sessions.registry import (
    SessionForbiddenError,
    SessionNotFoundError,
    SessionRegistry,
)

router = APIRouter(prefix="/api/import", tags=["import"])


@router.get("/progress/{session_id}", response_model=None)
async def progress_events(
    session_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
    store: ProgressStore = Depends(get_progress_store),
    config: ImportConfig = Depends(get_import_config),
) -> StreamingResponse:
    """Stream progress snapshots until the import finishes."""
    try:
        await registry.get_owned(session_id, user_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Import session not found: {session_id}")
    except SessionForbiddenError:
        raise HTTPException(status_code=403, detail="Forbidden")

    return StreamingResponse(
        stream_progress(
            session_id,
            store,
            registry,
            poll_interval=config.poll_interval_seconds,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
