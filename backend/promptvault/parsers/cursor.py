"""Parser for Cursor chat exports.

Accepted JSON shapes: a list of sessions (each with `messages`), a flat list
of messages, `{"sessions": [...]}`, a single session, and the editor's
`tabs[].bubbles[]` chat storage where bubbles are typed "user" or "ai".
Composer transcripts copied as Markdown (`## User:` / `## Assistant:`) are
handled by marker segmentation.
"""

from collections.abc import Iterator
from typing import Any

from promptvault.errors import ParseDegradation
from promptvault.models import Platform
from promptvault.parsers.base import (
    PromptParser,
    Stage,
    coerce_timestamp,
    each_unit,
    is_user_role,
    load_json,
    segment_by_role_markers,
)
from promptvault.parsers.models import RawPrompt


def _speaker_is_user(message: Any) -> bool:
    return isinstance(message, dict) and is_user_role(
        message.get("role"), message.get("sender"), message.get("type")
    )


def _message_text(message: dict) -> str:
    for name in ("content", "text", "rawText", "message"):
        value = message.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def _iter_session(session: dict) -> Iterator[RawPrompt]:
    messages = session.get("messages")
    if messages is None:
        messages = session.get("bubbles") or []
    for i, message in enumerate(messages):
        if not _speaker_is_user(message):
            continue
        response = None
        model = message.get("model")
        if i + 1 < len(messages) and isinstance(messages[i + 1], dict):
            reply = messages[i + 1]
            if not _speaker_is_user(reply):
                response = _message_text(reply)
                model = model or reply.get("model") or reply.get("modelType")
        yield RawPrompt(
            content=_message_text(message),
            response=response,
            timestamp=coerce_timestamp(message.get("timestamp") or session.get("created_at")),
            metadata={
                "conversationId": session.get("id") or session.get("tabId"),
                "conversationTitle": session.get("title") or session.get("chatTitle") or session.get("name"),
                "model": model or session.get("model"),
                "workspace": session.get("workspace"),
            },
        )


def _sessions(data: Any) -> list[dict]:
    if isinstance(data, list):
        sessions = [s for s in data if isinstance(s, dict) and isinstance(s.get("messages"), list)]
        if sessions:
            return sessions
        if any(_speaker_is_user(item) for item in data):
            return [{"messages": [m for m in data if isinstance(m, dict)]}]
        if not data:
            return []
    elif isinstance(data, dict):
        if isinstance(data.get("sessions"), list):
            return [s for s in data["sessions"] if isinstance(s, dict)]
        if isinstance(data.get("tabs"), list):
            return [t for t in data["tabs"] if isinstance(t, dict)]
        if isinstance(data.get("messages"), list):
            return [data]
    raise ParseDegradation("no Cursor sessions found")


class CursorParser(PromptParser):
    platform = Platform.CURSOR
    assistant_aliases = ("assistant", "cursor", "ai", "model")

    def stages(self) -> list[Stage]:
        return [
            ("json", self.parse_json),
            ("composer", self.parse_composer),
        ]

    def parse_json(self, text: str) -> Iterator[RawPrompt]:
        return each_unit(_sessions(load_json(text)), _iter_session)

    def parse_composer(self, text: str) -> Iterator[RawPrompt]:
        return segment_by_role_markers(text, self.assistant_aliases)
