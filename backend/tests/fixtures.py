"""Shared test helpers: export builders, stores and session setup."""

import base64
import json
from typing import Any

import httpx

from promptvault.models import FileDescriptor, Platform, ProgressSnapshot
from promptvault.progress.store import MemoryProgressStore
from promptvault.sessions.registry import SessionRegistry

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
BLOB_URL = "https://blobs.test/export.json"


class RecordingProgressStore(MemoryProgressStore):
    """MemoryProgressStore that keeps every snapshot written to it."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        super().__init__(ttl_seconds)
        self.history: list[ProgressSnapshot] = []

    async def write(self, snapshot: ProgressSnapshot) -> None:
        self.history.append(snapshot)
        await super().write(snapshot)

    def for_session(self, session_id: str) -> list[ProgressSnapshot]:
        return [s for s in self.history if s.session_id == session_id]


def make_blob_transport(blobs: dict[str, bytes | int]) -> httpx.MockTransport:
    """Serve `blobs`; unknown URLs are 404, int values are bare status codes."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = blobs.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        if isinstance(body, int):
            return httpx.Response(body)
        return httpx.Response(200, content=body)

    return httpx.MockTransport(handler)


def data_url(content: str | bytes, mime: str = "application/json") -> str:
    raw = content.encode() if isinstance(content, str) else content
    return f"data:{mime};base64,{base64.b64encode(raw).decode()}"


async def create_session(
    registry: SessionRegistry,
    platform: Platform = Platform.CHATGPT,
    user_id: str = USER_ID,
    file_name: str = "conversations.json",
) -> str:
    """Create a pending session."""
    return await registry.create(
        user_id, platform, FileDescriptor(name=file_name, size=1024, type="application/json")
    )


async def create_processing_session(
    registry: SessionRegistry,
    platform: Platform = Platform.CHATGPT,
    blob_url: str = BLOB_URL,
    user_id: str = USER_ID,
) -> str:
    """Create a session with its file attached, ready for the worker."""
    session_id = await create_session(registry, platform, user_id)
    await registry.attach_file(session_id, user_id, blob_url)
    return session_id


def make_work_item(
    session_id: str,
    platform: Platform = Platform.CHATGPT,
    blob_url: str = BLOB_URL,
    user_id: str = USER_ID,
) -> dict[str, Any]:
    """Work item as the queue transport delivers it (camelCase JSON)."""
    return {
        "sessionId": session_id,
        "blobUrl": blob_url,
        "platform": platform.value,
        "userId": user_id,
    }


# ---------------------------------------------------------------------------
# ChatGPT
# ---------------------------------------------------------------------------


def _chatgpt_node(
    node_id: str,
    parent: str | None,
    children: list[str],
    role: str = "user",
    content: str | list = "Hello",
    model_slug: str | None = None,
    create_time: float | None = 1700000000.0,
) -> dict:
    """Build a single ChatGPT mapping node."""
    parts = content if isinstance(content, list) else [content]
    msg = {
        "id": f"msg-{node_id}",
        "author": {"role": role},
        "create_time": create_time,
        "content": {"content_type": "text", "parts": parts},
        "metadata": {},
    }
    if model_slug:
        msg["metadata"]["model_slug"] = model_slug
    return {"id": node_id, "message": msg, "parent": parent, "children": children}


def make_chatgpt_conversation(
    *,
    conv_id: str = "conv-1",
    title: str = "Test Conversation",
    turns: list[tuple[str, str]] | None = None,
    model_slug: str | None = "gpt-4o",
) -> dict:
    """Linear ChatGPT conversation; `turns` is [(user, assistant), ...]."""
    if turns is None:
        turns = [
            ("What is Python?", "Python is a programming language."),
            ("Who created it?", "Guido van Rossum."),
            ("When?", "In 1991."),
        ]
    mapping = {"root": {"id": "root", "message": None, "parent": None, "children": []}}
    parent = "root"
    for i, (user_text, assistant_text) in enumerate(turns):
        user_id, assistant_id = f"u{i}", f"a{i}"
        mapping[parent]["children"].append(user_id)
        mapping[user_id] = _chatgpt_node(
            user_id, parent, [assistant_id], content=user_text,
            create_time=1700000000.0 + i * 10,
        )
        mapping[assistant_id] = _chatgpt_node(
            assistant_id, user_id, [], role="assistant", content=assistant_text,
            model_slug=model_slug, create_time=1700000000.0 + i * 10 + 5,
        )
        parent = assistant_id
    return {
        "id": conv_id,
        "title": title,
        "create_time": 1700000000.0,
        "default_model_slug": "gpt-4",
        "mapping": mapping,
    }


def chatgpt_export(*conversations: dict) -> bytes:
    return json.dumps(list(conversations or [make_chatgpt_conversation()])).encode()


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------


def make_claude_conversation(
    *,
    uuid: str = "claude-conv-1",
    name: str = "Refactoring help",
    turns: list[tuple[str, str]] | None = None,
) -> dict:
    if turns is None:
        turns = [("Refactor this function", "Here is a cleaner version."),
                 ("Add type hints", "Done.")]
    messages = []
    for user_text, assistant_text in turns:
        messages.append({
            "sender": "human",
            "created_at": "2024-05-01T10:00:00Z",
            "content": [{"type": "text", "text": user_text}],
        })
        messages.append({
            "sender": "assistant",
            "created_at": "2024-05-01T10:00:05Z",
            "content": [{"type": "text", "text": assistant_text}],
        })
    return {"uuid": uuid, "name": name, "chat_messages": messages}


def claude_code_log() -> bytes:
    """Claude Code session log (JSON-Lines) with a tool round-trip."""
    events = [
        {"type": "summary", "summary": "Fixing a bug"},
        {"type": "user", "sessionId": "cc-session", "timestamp": "2025-01-02T09:00:00Z",
         "message": {"role": "user", "content": "Fix the failing test"}},
        {"type": "assistant", "sessionId": "cc-session",
         "message": {"role": "assistant", "model": "claude-sonnet-4",
                     "content": [{"type": "text", "text": "Looking at it now."},
                                 {"type": "tool_use", "id": "t1", "name": "Read", "input": {}}]}},
        {"type": "user", "sessionId": "cc-session",
         "message": {"role": "user",
                     "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]}},
        {"type": "assistant", "sessionId": "cc-session",
         "message": {"role": "assistant", "content": [{"type": "text", "text": "Fixed."}]}},
    ]
    return "\n".join(json.dumps(e) for e in events).encode()


# ---------------------------------------------------------------------------
# Cline
# ---------------------------------------------------------------------------


def make_cline_task() -> dict:
    return {
        "id": "task-42",
        "timestamp": 1700000000000,
        "messages": [
            {"type": "say", "say": "task", "text": "Build a CLI for todo lists", "ts": 1700000000000},
            {"type": "say", "say": "text", "text": "Sure, starting with argparse."},
            {"type": "ask", "ask": "followup", "text": "Which storage format?"},
            {"type": "say", "say": "user_feedback", "text": "Use JSON files", "ts": 1700000060000},
        ],
    }


CLINE_MARKDOWN = """# Task: Add retry logic

### Human

Wrap the HTTP call in a retry loop.

### Assistant

Added exponential backoff.

### Human

Cap it at five attempts.

### Assistant

Done.
"""
