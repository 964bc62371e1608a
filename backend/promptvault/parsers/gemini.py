"""Parser for Gemini conversation exports.

Gemini exports come in several loosely related JSON shapes: a list of
conversations, an object with `conversations`, or a single conversation.
Turns live under `messages` or `turns`, and the speaker may be named by any
of `role`, `author`, `sender` or `type`. Plain-text copies of a chat
("You: ... / Gemini: ...") fall through to marker segmentation.
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
    text_of,
)
from promptvault.parsers.models import RawPrompt

_ROLE_FIELDS = ("role", "author", "sender", "type")
_TURN_FIELDS = ("messages", "turns")


def _turns(conv: dict) -> list:
    for name in _TURN_FIELDS:
        if isinstance(conv.get(name), list):
            return conv[name]
    return []


def _is_user(turn: Any) -> bool:
    return isinstance(turn, dict) and is_user_role(*(turn.get(f) for f in _ROLE_FIELDS))


def _turn_text(turn: dict) -> str:
    for name in ("content", "text", "message"):
        value = turn.get(name)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, (list, dict)):
            text = text_of(value)
            if text.strip():
                return text
    return text_of(turn.get("parts") or [])


def _looks_like_turn(item: Any) -> bool:
    return isinstance(item, dict) and any(f in item for f in _ROLE_FIELDS) and not any(
        f in item for f in _TURN_FIELDS
    )


def _iter_conversation(conv: dict) -> Iterator[RawPrompt]:
    turns = _turns(conv)
    for i, turn in enumerate(turns):
        if not _is_user(turn):
            continue
        response = None
        if i + 1 < len(turns) and isinstance(turns[i + 1], dict) and not _is_user(turns[i + 1]):
            response = _turn_text(turns[i + 1])
        yield RawPrompt(
            content=_turn_text(turn),
            response=response,
            timestamp=coerce_timestamp(turn.get("timestamp") or conv.get("created_at")),
            metadata={
                "conversationId": conv.get("id") or conv.get("conversation_id"),
                "conversationTitle": conv.get("title") or conv.get("name"),
                "model": turn.get("model") or conv.get("model"),
            },
        )


def _conversations(data: Any) -> list[dict]:
    if isinstance(data, list):
        if data and all(_looks_like_turn(item) for item in data):
            # A bare list of turns is a single conversation
            return [{"messages": data}]
        candidates = data
    elif isinstance(data, dict) and isinstance(data.get("conversations"), list):
        candidates = data["conversations"]
    else:
        candidates = [data]
    conversations = [c for c in candidates if isinstance(c, dict) and _turns(c)]
    if not conversations and candidates:
        raise ParseDegradation("no Gemini conversations found")
    return conversations


class GeminiParser(PromptParser):
    platform = Platform.GEMINI
    assistant_aliases = ("assistant", "gemini", "bard", "model")

    def stages(self) -> list[Stage]:
        return [
            ("json", self.parse_json),
            ("text", self.parse_text),
        ]

    def parse_json(self, text: str) -> Iterator[RawPrompt]:
        return each_unit(_conversations(load_json(text)), _iter_conversation)
