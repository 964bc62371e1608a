"""Canonical data structures for the import pipeline.

Defined once here, referenced everywhere else. Wire shapes use camelCase
aliases (sessionId, blobUrl, ...) because browser clients and the queue
transport speak JSON with those names; Python code uses snake_case.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Platform(StrEnum):
    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    GEMINI = "gemini"
    CLINE = "cline"
    CURSOR = "cursor"
    FILE = "file"


class SessionStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Import session
# ---------------------------------------------------------------------------


class FileDescriptor(WireModel):
    name: str
    size: int = Field(ge=0)
    type: str = "application/octet-stream"
    url: str | None = None


class ImportSession(WireModel):
    id: str
    user_id: str
    platform: Platform
    status: SessionStatus
    file: FileDescriptor
    total_prompts: int = 0
    processed_prompts: int = 0
    failed_prompts: int = 0
    error: str | None = None
    metadata: dict[str, Any] | None = None
    started_at: datetime
    completed_at: datetime | None = None


@dataclass
class Completed:
    """Successful worker outcome."""

    total: int
    processed: int
    failed: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if min(self.total, self.processed, self.failed) < 0:
            raise ValueError("prompt counters must be non-negative")
        if self.processed + self.failed > self.total:
            raise ValueError("processed + failed cannot exceed total")


@dataclass
class Failed:
    """Terminal failure; the message is shown to the user verbatim."""

    error_message: str


SessionOutcome = Completed | Failed


# ---------------------------------------------------------------------------
# Progress and work items
# ---------------------------------------------------------------------------


class ProgressSnapshot(WireModel):
    session_id: str
    status: SessionStatus
    progress: int = Field(ge=0, le=100)
    message: str
    metadata: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


_BLOB_SCHEMES = ("http://", "https://", "data:")


def check_blob_url(value: str) -> str:
    if not value.lower().startswith(_BLOB_SCHEMES):
        raise ValueError("blobUrl must be an http(s) or data: URL")
    return value


class WorkItem(WireModel):
    """Message handed to the worker by the queue transport."""

    session_id: str = Field(min_length=1)
    blob_url: str
    platform: Platform
    user_id: str = Field(min_length=1)

    @field_validator("blob_url")
    @classmethod
    def validate_blob_url(cls, value: str) -> str:
        return check_blob_url(value)
