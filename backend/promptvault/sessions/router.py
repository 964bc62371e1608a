"""Import session API routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from promptvault.config import ImportConfig
from promptvault.dependencies import (
    get_current_user_id,
    get_import_config,
    get_progress_store,
    get_session_registry,
    get_work_queue,
)
from promptvault.models import Failed, FileDescriptor, ImportSession, WorkItem
from promptvault.progress.store import ProgressStore
from promptvault.sessions.registry import (
    SessionForbiddenError,
    SessionNotFoundError,
    SessionRegistry,
    SessionStateError,
)
from promptvault.sessions.schemas import (
    CreateSessionRequest,
    CreateSessionResponse,
    ProcessRequest,
    ProcessResponse,
)
from promptvault.worker.queue import QueuePublishError, WorkQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/import", tags=["import"])


@router.post("/session", status_code=201)
async def create_session(
    request: CreateSessionRequest,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
    config: ImportConfig = Depends(get_import_config),
) -> CreateSessionResponse:
    """Open a pending import session for a file the client is about to upload."""
    if not config.is_platform_enabled(request.platform):
        raise HTTPException(
            status_code=403, detail=f"{request.platform} imports are currently disabled"
        )
    session_id = await registry.create(
        user_id,
        request.platform,
        FileDescriptor(name=request.file_name, size=request.file_size, type=request.file_type),
    )
    return CreateSessionResponse(session_id=session_id)


@router.get("/sessions")
async def list_sessions(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
) -> list[ImportSession]:
    return await registry.list_for_user(user_id, limit=limit)


@router.get("/session/{session_id}")
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
) -> ImportSession:
    try:
        return await registry.get_owned(session_id, user_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except SessionForbiddenError as e:
        raise HTTPException(status_code=403, detail="Forbidden") from e


@router.post("/process")
async def process_import(
    request: ProcessRequest,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
    store: ProgressStore = Depends(get_progress_store),
    queue: WorkQueue = Depends(get_work_queue),
) -> ProcessResponse:
    """Attach the uploaded blob to its session and enqueue the work item."""
    try:
        session = await registry.get_owned(request.session_id, user_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except SessionForbiddenError as e:
        raise HTTPException(status_code=403, detail="Forbidden") from e

    if session.platform != request.platform:
        raise HTTPException(
            status_code=400,
            detail=f"Session was created for {session.platform}, not {request.platform}",
        )

    try:
        await registry.attach_file(request.session_id, user_id, request.blob_url)
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    # A fresh run starts without a leftover snapshot
    try:
        await store.clear(request.session_id)
    except Exception as e:
        logger.warning("Could not clear progress for session %s: %s", request.session_id, e)

    item = WorkItem(
        session_id=request.session_id,
        blob_url=request.blob_url,
        platform=request.platform,
        user_id=user_id,
    )
    try:
        message_id = await queue.publish(item)
    except QueuePublishError as e:
        logger.error("Could not enqueue session %s: %s", request.session_id, e)
        await registry.finalize(
            request.session_id, Failed(error_message="Failed to start processing")
        )
        raise HTTPException(status_code=502, detail="Failed to start processing") from e

    return ProcessResponse(message="Processing started", message_id=message_id)
