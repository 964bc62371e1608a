"""Intermediate representation produced by the platform parsers.

Parser stages yield RawPrompt; PromptParser.iter_prompts drops empty text and
turns the survivors into NormalizedPrompt records with ids and sequence
numbers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class RawPrompt:
    """A user turn as extracted from an export, before normalization."""

    content: str
    response: str | None = None
    timestamp: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizedPrompt:
    """A prompt ready for downstream persistence."""

    id: str
    source: str  # Platform value
    sequence: int
    title: str
    content: str
    response: str | None = None
    timestamp: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def conversation_id(self) -> str | None:
        return self.metadata.get("conversationId")
