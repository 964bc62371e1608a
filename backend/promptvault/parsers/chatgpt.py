"""Parser for ChatGPT conversations.json exports.

ChatGPT's export is tree-native: each conversation has a `mapping` dict of
nodes with parent/children pointers. Only user-authored nodes become
prompts; the first assistant child of a user node is kept as its response.
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
    iter_json_lines,
    load_json,
)
from promptvault.parsers.models import RawPrompt


def _extract_content(message: dict) -> str:
    """Extract text content from a ChatGPT message object."""
    content_obj = message.get("content") or {}
    if not isinstance(content_obj, dict):
        return ""
    parts = content_obj.get("parts") or []
    # Non-string parts are multimodal attachments
    text_parts = [p for p in parts if isinstance(p, str)]
    if not text_parts and isinstance(content_obj.get("text"), str):
        return content_obj["text"]
    return "\n".join(text_parts)


def _role(entry: Any) -> str | None:
    if not isinstance(entry, dict):
        return None
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    author = message.get("author") or {}
    return author.get("role") if isinstance(author, dict) else None


def _first_assistant_reply(entry: dict, mapping: dict) -> dict | None:
    for child_id in entry.get("children") or []:
        child = mapping.get(child_id)
        if _role(child) == "assistant" and _extract_content(child["message"]).strip():
            return child["message"]
    return None


def _iter_conversation(conv: dict) -> Iterator[RawPrompt]:
    mapping = conv.get("mapping")
    if not isinstance(mapping, dict):
        return

    user_entries = [e for e in mapping.values() if _role(e) == "user"]
    # Mapping order is usually chronological; create_time settles the rest.
    user_entries.sort(key=lambda e: (
        not isinstance(e["message"].get("create_time"), (int, float)),
        e["message"].get("create_time") or 0,
    ))

    for entry in user_entries:
        message = entry["message"]
        reply = _first_assistant_reply(entry, mapping)
        model = None
        if reply is not None:
            model = (reply.get("metadata") or {}).get("model_slug")
        yield RawPrompt(
            content=_extract_content(message),
            response=_extract_content(reply) if reply else None,
            timestamp=coerce_timestamp(message.get("create_time") or conv.get("create_time")),
            metadata={
                "conversationId": conv.get("id") or conv.get("conversation_id"),
                "conversationTitle": conv.get("title"),
                "model": model or conv.get("default_model_slug"),
            },
        )


def _conversations(data: Any) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if isinstance(data.get("conversations"), list):
            return data["conversations"]
        if "mapping" in data:
            return [data]
    raise ParseDegradation("no ChatGPT conversations found")


class ChatGPTParser(PromptParser):
    platform = Platform.CHATGPT
    assistant_aliases = ("assistant", "chatgpt", "gpt", "model")

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
        recognized = 0
        for line in iter_json_lines(text):
            if isinstance(line, dict) and isinstance(line.get("mapping"), dict):
                recognized += 1
                yield from each_unit([line], _iter_conversation)
        if not recognized:
            raise ParseDegradation("no ChatGPT conversation lines found")
