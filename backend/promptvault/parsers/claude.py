"""Parser for Claude exports.

Two structured shapes are understood: the Claude.ai data export
(conversations with `chat_messages` or `messages`, sender "human"/"assistant")
and Claude Code session logs in JSON-Lines, where each line is an event
carrying a message with a role.
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
    iter_json_lines,
    load_json,
    text_of,
)
from promptvault.parsers.models import RawPrompt


def _message_text(message: dict) -> str:
    """Prefer typed content blocks, fall back to the flat `text` field."""
    text = text_of(message.get("content"))
    if text.strip():
        return text
    return message.get("text") if isinstance(message.get("text"), str) else ""


def _sender(message: Any) -> str | None:
    if not isinstance(message, dict):
        return None
    return message.get("sender") or message.get("role")


def _iter_conversation(conv: dict) -> Iterator[RawPrompt]:
    messages = conv.get("chat_messages") or conv.get("messages") or []
    for i, message in enumerate(messages):
        if not is_user_role(_sender(message)):
            continue
        response = None
        if i + 1 < len(messages) and _sender(messages[i + 1]) == "assistant":
            response = _message_text(messages[i + 1])
        yield RawPrompt(
            content=_message_text(message),
            response=response,
            timestamp=coerce_timestamp(message.get("created_at")),
            metadata={
                "conversationId": conv.get("uuid") or conv.get("id"),
                "conversationTitle": conv.get("name") or conv.get("title"),
                "model": conv.get("model"),
            },
        )


def _conversations(data: Any) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if isinstance(data.get("conversations"), list):
            return data["conversations"]
        if "chat_messages" in data or "messages" in data:
            return [data]
    raise ParseDegradation("no Claude conversations found")


def _code_event(entry: Any) -> tuple[str | None, dict]:
    """Unwrap a Claude Code log line into (role, message)."""
    if not isinstance(entry, dict):
        return None, {}
    message = entry.get("message")
    if isinstance(message, dict) and "role" in message:
        return message.get("role"), message
    return entry.get("role"), entry


class ClaudeParser(PromptParser):
    platform = Platform.CLAUDE
    assistant_aliases = ("assistant", "claude", "model")

    def stages(self) -> list[Stage]:
        return [
            ("json", self.parse_json),
            ("jsonl", self.parse_jsonl),
            ("text", self.parse_text),
        ]

    def parse_json(self, text: str) -> Iterator[RawPrompt]:
        conversations = [c for c in _conversations(load_json(text)) if isinstance(c, dict)]
        return each_unit(conversations, _iter_conversation)

    def parse_jsonl(self, text: str) -> Iterator[RawPrompt]:
        events: list[tuple[str, dict, dict]] = []
        for entry in iter_json_lines(text):
            role, message = _code_event(entry)
            if role in ("user", "assistant"):
                events.append((role, message, entry))
        if not events:
            raise ParseDegradation("no Claude Code events found")

        for i, (role, message, entry) in enumerate(events):
            if role != "user":
                continue
            response = None
            model = None
            if i + 1 < len(events) and events[i + 1][0] == "assistant":
                reply = events[i + 1][1]
                response = text_of(reply.get("content"))
                model = reply.get("model")
            # Tool results come back as user turns with no text blocks; they drop out here.
            yield RawPrompt(
                content=text_of(message.get("content")),
                response=response,
                timestamp=coerce_timestamp(entry.get("timestamp")),
                metadata={
                    "conversationId": entry.get("sessionId"),
                    "model": model,
                    "type": entry.get("type"),
                },
            )
