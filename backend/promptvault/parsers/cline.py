"""Parser for Cline task exports.

Cline stores a task as UI messages (`say: "task"` opens the task,
`say: "user_feedback"` carries later user replies) plus the raw API
conversation history. Its "export task" command writes Markdown with
`### Human` / `### Assistant` sections, and hand-copied logs use
`User:` / `Cline:` line markers. A file with none of these yields nothing.
"""

import re
from collections.abc import Iterator
from typing import Any

from promptvault.errors import ParseDegradation
from promptvault.models import Platform
from promptvault.parsers.base import (
    PromptParser,
    Stage,
    coerce_timestamp,
    each_unit,
    load_json,
    segment_by_role_markers,
    text_of,
)
from promptvault.parsers.models import RawPrompt

_USER_SAYS = {"task", "user_feedback"}
_ENVIRONMENT_DETAILS = re.compile(r"<environment_details>.*?</environment_details>", re.DOTALL)
_WRAPPER_TAGS = re.compile(r"</?(?:task|feedback|user_message)>")
_TITLE = re.compile(r"^#\s+(?!#)(?:Task\s*:?\s*)?(?P<title>.+?)\s*$", re.MULTILINE)


def _clean(text: str) -> str:
    """Drop the environment dump Cline appends to user turns."""
    return _WRAPPER_TAGS.sub("", _ENVIRONMENT_DETAILS.sub("", text))


def _is_ui_message(item: Any) -> bool:
    return isinstance(item, dict) and item.get("type") in ("say", "ask")


def _is_history_message(item: Any) -> bool:
    return isinstance(item, dict) and "role" in item and "content" in item


def _iter_ui_messages(task_id: str | None, messages: list, started: Any) -> Iterator[RawPrompt]:
    for message in messages:
        if not _is_ui_message(message):
            continue
        is_user = message.get("say") in _USER_SAYS or message.get("persona") == "user"
        if not is_user:
            continue
        text = message.get("text")
        if not isinstance(text, str):
            text = message.get("say") if message.get("persona") == "user" else ""
        yield RawPrompt(
            content=text or "",
            timestamp=coerce_timestamp(message.get("ts") or started),
            metadata={"conversationId": task_id, "conversationTitle": "Cline Task"},
        )


def _iter_history(task_id: str | None, history: list, started: Any) -> Iterator[RawPrompt]:
    for i, message in enumerate(history):
        if not _is_history_message(message) or message.get("role") != "user":
            continue
        response = None
        if i + 1 < len(history) and _is_history_message(history[i + 1]):
            if history[i + 1].get("role") == "assistant":
                response = text_of(history[i + 1]["content"])
        yield RawPrompt(
            content=_clean(text_of(message["content"])),
            response=response,
            timestamp=coerce_timestamp(started),
            metadata={"conversationId": task_id, "conversationTitle": "Cline Task"},
        )


def _iter_task(task: dict) -> Iterator[RawPrompt]:
    task_id = task.get("id")
    started = task.get("timestamp")
    ui_prompts = list(_iter_ui_messages(task_id, task.get("messages") or [], started))
    if any(p.content.strip() for p in ui_prompts):
        yield from ui_prompts
        return
    history = task.get("conversationHistory") or task.get("apiConversationHistory") or []
    yield from _iter_history(task_id, history, started)


def _tasks(data: Any) -> list[dict]:
    if isinstance(data, dict):
        if any(k in data for k in ("messages", "conversationHistory", "apiConversationHistory")):
            return [data]
        if isinstance(data.get("tasks"), list):
            return [t for t in data["tasks"] if isinstance(t, dict)]
    if isinstance(data, list) and data:
        if all(_is_ui_message(item) for item in data):
            return [{"messages": data}]
        if all(_is_history_message(item) for item in data):
            return [{"conversationHistory": data}]
    raise ParseDegradation("no Cline task structure found")


class ClineParser(PromptParser):
    platform = Platform.CLINE
    assistant_aliases = ("assistant", "cline", "model")

    def stages(self) -> list[Stage]:
        return [
            ("json", self.parse_json),
            ("markdown", self.parse_markdown),
        ]

    def parse_json(self, text: str) -> Iterator[RawPrompt]:
        return each_unit(_tasks(load_json(text)), _iter_task)

    def parse_markdown(self, text: str) -> Iterator[RawPrompt]:
        match = _TITLE.search(text)
        metadata = {"conversationTitle": match["title"] if match else None}
        for prompt in segment_by_role_markers(text, self.assistant_aliases, metadata):
            prompt.content = _clean(prompt.content)
            yield prompt
