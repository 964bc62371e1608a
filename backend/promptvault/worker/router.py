"""Worker endpoint: the queue transport's way into the import pipeline.

Status codes tell the transport what to do next: 2xx acknowledges, 422 is a
permanent rejection, 503 asks for redelivery, and 500 reports a failure the
session has already been finalized with.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from promptvault.dependencies import get_worker_dispatcher
from promptvault.errors import (
    ImportPipelineError,
    ImportValidationError,
    TransientIOError,
)
from promptvault.worker.dispatcher import WorkerDispatcher

router = APIRouter(prefix="/api/import", tags=["import"])

RETRIED_HEADER = "Upstash-Retried"


def _delivery_attempt(retried: str | None) -> int:
    """Convert the transport's 0-based retry count into a 1-based attempt."""
    if retried and retried.strip().isdigit():
        return int(retried) + 1
    return 1


@router.post("/worker")
async def run_worker(
    request: Request,
    dispatcher: WorkerDispatcher = Depends(get_worker_dispatcher),
) -> dict:
    """Process one delivery of an import work item."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    attempt = _delivery_attempt(request.headers.get(RETRIED_HEADER))
    try:
        result = await dispatcher.handle(payload, attempt=attempt)
    except ImportValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except TransientIOError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except ImportPipelineError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    return {
        "success": True,
        "duplicate": result.duplicate,
        "totalPrompts": result.total,
        "processedPrompts": result.processed,
        "failedPrompts": result.failed,
    }
