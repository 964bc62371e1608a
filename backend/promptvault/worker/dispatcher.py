"""WorkerDispatcher: runs one import work item end to end.

A delivery moves through received -> validating -> fetching -> parsing ->
persisting -> finalizing -> done. Parser output is pulled in batches of
`batch_size` and each batch is stored before the next is parsed, so
`persisting` starts with the first batch.

Any failure jumps straight to failed, finalizes the session, writes a
terminal snapshot, and re-raises so the queue transport can decide whether
to redeliver. Two failures leave the session alone: a TransientIOError on a
delivery that still has retries left, and a work item that does not match
its session.
"""

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from itertools import islice
from typing import Any

from pydantic import ValidationError

from promptvault.config import ImportConfig
from promptvault.errors import (
    ForeignWorkItemError,
    ImportPipelineError,
    ImportValidationError,
    TransientIOError,
    UnrecoverableWorkerFailure,
)
from promptvault.models import (
    Completed,
    Failed,
    ImportSession,
    Platform,
    ProgressSnapshot,
    SessionStatus,
    WorkItem,
)
from promptvault.parsers.base import PromptParser
from promptvault.parsers.models import NormalizedPrompt
from promptvault.parsers.registry import PARSERS
from promptvault.progress.store import ProgressStore, snapshot_from_session
from promptvault.sessions.registry import SessionNotFoundError, SessionRegistry
from promptvault.worker.blobs import BlobFetcher
from promptvault.worker.sink import PromptSink

logger = logging.getLogger(__name__)

# Share of the progress bar given to parsing and storing prompts (20% -> 90%)
_BATCH_START = 20
_BATCH_SPAN = 70


class WorkerState(StrEnum):
    RECEIVED = "received"
    VALIDATING = "validating"
    FETCHING = "fetching"
    PARSING = "parsing"
    PERSISTING = "persisting"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


_ORDER = list(WorkerState)


@dataclass
class WorkerRun:
    """Bookkeeping for a single delivery."""

    session_id: str | None
    attempt: int
    state: WorkerState = WorkerState.RECEIVED
    history: list[WorkerState] = field(default_factory=lambda: [WorkerState.RECEIVED])

    def advance(self, state: WorkerState) -> None:
        if self.state in (WorkerState.DONE, WorkerState.FAILED):
            raise RuntimeError(f"Worker run already {self.state}, cannot move to {state}")
        if state is not WorkerState.FAILED and _ORDER.index(state) <= _ORDER.index(self.state):
            raise RuntimeError(f"Illegal worker transition {self.state} -> {state}")
        logger.debug("Session %s: %s -> %s", self.session_id, self.state, state)
        self.state = state
        self.history.append(state)


@dataclass
class WorkerResult:
    session_id: str
    total: int = 0
    processed: int = 0
    failed: int = 0
    duplicate: bool = False


def _peek_session_id(payload: Any) -> str | None:
    """Best-effort session id from a payload that may not validate."""
    if isinstance(payload, dict):
        value = payload.get("sessionId") or payload.get("session_id")
        if isinstance(value, str) and value:
            return value
    return None


class WorkerDispatcher:
    def __init__(
        self,
        registry: SessionRegistry,
        progress: ProgressStore,
        fetcher: BlobFetcher,
        sink: PromptSink,
        config: ImportConfig,
        parsers: Mapping[Platform, PromptParser] = PARSERS,
    ) -> None:
        self._registry = registry
        self._progress = progress
        self._fetcher = fetcher
        self._sink = sink
        self._config = config
        self._parsers = parsers

    async def handle(self, payload: Any, *, attempt: int = 1) -> WorkerResult:
        """Process one delivery of a work item.

        `attempt` is 1-based. Raises ImportPipelineError subclasses; the
        session has been finalized before anything other than a retryable
        TransientIOError or a ForeignWorkItemError propagates.
        """
        run = WorkerRun(session_id=_peek_session_id(payload), attempt=attempt)
        try:
            run.advance(WorkerState.VALIDATING)
            item, session = await self._validate(payload)
            if session.status.is_terminal:
                logger.warning(
                    "Duplicate delivery for session %s (already %s), skipping",
                    item.session_id, session.status,
                )
                run.advance(WorkerState.DONE)
                return WorkerResult(
                    session_id=item.session_id,
                    total=session.total_prompts,
                    processed=session.processed_prompts,
                    failed=session.failed_prompts,
                    duplicate=True,
                )

            logger.info(
                "Processing session %s (%s), attempt %d", item.session_id, item.platform, attempt
            )
            await self._report(item.session_id, 0, "Starting file processing...")
            async with asyncio.timeout(self._config.worker_timeout_seconds):
                result = await self._process(run, item, session)
            run.advance(WorkerState.DONE)
            return result

        except TransientIOError as e:
            if attempt < self._config.max_delivery_attempts:
                logger.warning(
                    "Transient failure for session %s (attempt %d/%d): %s",
                    run.session_id, attempt, self._config.max_delivery_attempts, e,
                )
                raise
            failure = UnrecoverableWorkerFailure(str(e))
            await self._fail(run, failure)
            raise failure from e
        except ForeignWorkItemError as e:
            run.advance(WorkerState.FAILED)
            logger.error("Rejected work item for session %s: %s", run.session_id, e)
            raise
        except ImportPipelineError as e:
            await self._fail(run, e)
            raise
        except TimeoutError as e:
            failure = UnrecoverableWorkerFailure(
                f"Import timed out after {self._config.worker_timeout_seconds:g} seconds"
            )
            await self._fail(run, failure)
            raise failure from e
        except Exception as e:
            logger.exception("Unexpected worker failure for session %s", run.session_id)
            failure = UnrecoverableWorkerFailure(str(e) or type(e).__name__)
            await self._fail(run, failure)
            raise failure from e

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _validate(self, payload: Any) -> tuple[WorkItem, ImportSession]:
        try:
            item = WorkItem.model_validate(payload)
        except ValidationError as e:
            raise ImportValidationError(f"Invalid work item: {e.error_count()} validation error(s)") from e

        try:
            session = await self._registry.get(item.session_id)
        except SessionNotFoundError as e:
            raise ImportValidationError(str(e)) from e
        if session.user_id != item.user_id:
            raise ForeignWorkItemError("Work item user does not own this session")
        if session.platform != item.platform:
            raise ForeignWorkItemError(
                f"Platform mismatch: session is {session.platform}, work item is {item.platform}"
            )
        if not self._config.is_platform_enabled(item.platform):
            raise ImportValidationError(f"{item.platform} imports are currently disabled")
        if item.platform not in self._parsers:
            raise ImportValidationError(f"No parser available for {item.platform}")
        if session.status is SessionStatus.PENDING:
            raise ImportValidationError(f"Session {item.session_id} has no file attached")
        return item, session

    async def _process(
        self, run: WorkerRun, item: WorkItem, session: ImportSession
    ) -> WorkerResult:
        session_id = item.session_id
        started = time.monotonic()

        run.advance(WorkerState.FETCHING)
        await self._report(session_id, 10, "Downloading file...")
        raw = await self._fetcher.fetch(item.blob_url)

        run.advance(WorkerState.PARSING)
        await self._report(session_id, 20, "Parsing file...")
        prompts = self._parsers[item.platform].iter_prompts(raw)
        batch_size = max(self._config.batch_size, 1)
        size = max(len(raw), 1)
        total = processed = failed = covered = 0
        formats: Counter[str] = Counter()
        conversations: set[str] = set()

        # Each batch is parsed in a worker thread. When the deadline passes
        # mid-batch that thread finishes its batch in the background, but the
        # generator is never resumed afterwards.
        while batch := await asyncio.to_thread(_take, prompts, batch_size):
            if run.state is WorkerState.PARSING:
                run.advance(WorkerState.PERSISTING)
            first = total + 1
            total += len(batch)
            for prompt in batch:
                covered += len(prompt.content) + len(prompt.response or "")
                formats[prompt.metadata.get("format", "unknown")] += 1
                if prompt.conversation_id:
                    conversations.add(prompt.conversation_id)
            await self._report(
                session_id,
                _parse_progress(covered, size),
                f"Processing prompts {first}-{total}...",
                metadata=_counts(total, processed, failed),
            )
            for prompt in batch:
                try:
                    await self._sink.save(session, prompt)
                    processed += 1
                except Exception as e:
                    failed += 1
                    logger.warning("Failed to store prompt %s: %s", prompt.id, e)

        run.advance(WorkerState.FINALIZING)
        await self._report(
            session_id, 95, f"Found {total} prompts. Finalizing import...",
            metadata=_counts(total, processed, failed),
        )
        metadata = _summary(item, total, formats, conversations, time.monotonic() - started)
        if await self._registry.finalize(
            session_id, Completed(total=total, processed=processed, failed=failed, metadata=metadata)
        ):
            await self._report(
                session_id, 100, "Import completed successfully!",
                status=SessionStatus.COMPLETED,
                metadata={**_counts(total, processed, failed), **metadata},
            )
            logger.info(
                "Session %s completed: %d/%d stored, %d failed",
                session_id, processed, total, failed,
            )
        else:
            await self._mirror(session_id)
        return WorkerResult(session_id=session_id, total=total, processed=processed, failed=failed)

    async def _fail(self, run: WorkerRun, error: ImportPipelineError) -> None:
        run.advance(WorkerState.FAILED)
        message = str(error) or type(error).__name__
        logger.error("Import failed for session %s: %s", run.session_id, message)
        if run.session_id is None:
            return
        try:
            if await self._registry.finalize(run.session_id, Failed(error_message=message)):
                await self._report(
                    run.session_id, 0, message, status=SessionStatus.FAILED
                )
            else:
                await self._mirror(run.session_id)
        except Exception:
            logger.exception("Could not record failure for session %s", run.session_id)

    async def _mirror(self, session_id: str) -> None:
        """Publish whatever terminal outcome the registry actually holds."""
        try:
            session = await self._registry.get(session_id)
        except SessionNotFoundError:
            return
        if session.status.is_terminal:
            await self._write(snapshot_from_session(session))

    async def _report(
        self,
        session_id: str,
        progress: int,
        message: str,
        *,
        status: SessionStatus = SessionStatus.PROCESSING,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self._write(
            ProgressSnapshot(
                session_id=session_id,
                status=status,
                progress=progress,
                message=message,
                metadata=metadata,
            )
        )

    async def _write(self, snapshot: ProgressSnapshot) -> None:
        # Snapshots are advisory; the registry holds the real outcome.
        try:
            await self._progress.write(snapshot)
        except Exception as e:
            logger.warning("Could not write progress for session %s: %s", snapshot.session_id, e)


def _counts(total: int, processed: int, failed: int) -> dict[str, int]:
    return {"total": total, "processed": processed, "failed": failed}


def _take(prompts: Iterator[NormalizedPrompt], n: int) -> list[NormalizedPrompt]:
    return list(islice(prompts, n))


def _parse_progress(covered: int, size: int) -> int:
    """Progress from how much of the file the extracted text accounts for."""
    return _BATCH_START + (min(covered, size) * _BATCH_SPAN) // size


def _summary(
    item: WorkItem,
    total: int,
    formats: Counter[str],
    conversations: set[str],
    elapsed: float,
) -> dict[str, Any]:
    return {
        "platform": item.platform.value,
        "importDate": datetime.now(UTC).isoformat(),
        "formats": dict(formats),
        "conversations": len(conversations),
        "durationMs": int(elapsed * 1000),
        "throughput": round(total / elapsed, 2) if elapsed > 0 else float(total),
    }
