"""Work queue transports.

HttpWorkQueue hands work items to an external push queue (QStash-style:
POST to the publish endpoint with the worker URL as the path; the queue
then POSTs the body to the worker and redelivers on 5xx). InProcessWorkQueue
runs the dispatcher as a background task for single-process deployments.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING
from uuid import uuid4

import httpx

from promptvault.errors import ImportPipelineError, TransientIOError
from promptvault.models import WorkItem

if TYPE_CHECKING:
    from promptvault.worker.dispatcher import WorkerDispatcher

logger = logging.getLogger(__name__)

RETRIES_HEADER = "Upstash-Retries"


class QueuePublishError(Exception):
    """The work item could not be handed to the transport."""


class WorkQueue(ABC):
    @abstractmethod
    async def publish(self, item: WorkItem) -> str:
        """Enqueue a work item and return the transport's message id."""
        ...

    async def close(self) -> None:
        return None


class HttpWorkQueue(WorkQueue):
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        publish_url: str,
        token: str,
        worker_url: str,
        max_attempts: int = 3,
    ) -> None:
        self._client = client
        self._publish_url = publish_url.rstrip("/")
        self._token = token
        self._worker_url = worker_url
        self._max_attempts = max_attempts

    async def publish(self, item: WorkItem) -> str:
        try:
            response = await self._client.post(
                f"{self._publish_url}/{self._worker_url}",
                content=item.model_dump_json(by_alias=True),
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json",
                    RETRIES_HEADER: str(max(self._max_attempts - 1, 0)),
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise QueuePublishError(f"Failed to enqueue import job: {e}") from e

        try:
            message_id = response.json().get("messageId")
        except ValueError:
            message_id = None
        logger.info("Queued session %s as message %s", item.session_id, message_id)
        return message_id or ""


class InProcessWorkQueue(WorkQueue):
    """Deliver work items to a dispatcher in this process.

    Transient failures are redelivered with a linear backoff until the
    dispatcher has seen `max_attempts` deliveries.
    """

    def __init__(
        self,
        dispatcher: "WorkerDispatcher",
        *,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self._dispatcher = dispatcher
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._tasks: set[asyncio.Task] = set()

    async def publish(self, item: WorkItem) -> str:
        message_id = f"local-{uuid4().hex}"
        task = asyncio.create_task(self._deliver(item, message_id), name=message_id)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return message_id

    async def _deliver(self, item: WorkItem, message_id: str) -> None:
        payload = item.model_dump(by_alias=True, mode="json")
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._dispatcher.handle(payload, attempt=attempt)
                return
            except TransientIOError as e:
                if attempt >= self._max_attempts:
                    logger.error("Message %s exhausted its deliveries: %s", message_id, e)
                    return
                logger.warning(
                    "Redelivering message %s after transient failure (attempt %d/%d): %s",
                    message_id, attempt, self._max_attempts, e,
                )
                await asyncio.sleep(self._retry_delay * attempt)
            except ImportPipelineError as e:
                logger.error("Message %s failed permanently: %s", message_id, e)
                return

    async def drain(self) -> None:
        """Wait for every in-flight delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        # Deliveries are bounded by the worker timeout
        await self.drain()
