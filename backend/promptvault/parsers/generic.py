"""Parser for generic prompt files.

A JSON array (of strings or of objects with `content`/`prompt`/`text`), a
single such object, JSON-Lines, or plain text with one prompt per
blank-line separated block.
"""

from collections.abc import Iterator
from typing import Any

from promptvault.errors import ParseDegradation
from promptvault.models import Platform
from promptvault.parsers.base import (
    PromptParser,
    Stage,
    coerce_timestamp,
    iter_json_lines,
    load_json,
    split_paragraphs,
)
from promptvault.parsers.models import RawPrompt

_TEXT_FIELDS = ("content", "prompt", "text")


def _item_to_prompt(item: Any) -> RawPrompt | None:
    if isinstance(item, str):
        return RawPrompt(content=item)
    if not isinstance(item, dict):
        return None
    for name in _TEXT_FIELDS:
        if isinstance(item.get(name), str):
            return RawPrompt(
                content=item[name],
                response=item.get("response") if isinstance(item.get("response"), str) else None,
                timestamp=coerce_timestamp(item.get("timestamp") or item.get("created_at")),
                metadata={"name": item.get("name") or item.get("title")},
            )
    return None


class FileParser(PromptParser):
    platform = Platform.FILE

    def stages(self) -> list[Stage]:
        return [
            ("json", self.parse_json),
            ("jsonl", self.parse_jsonl),
            ("text", split_paragraphs),
        ]

    def parse_json(self, text: str) -> Iterator[RawPrompt]:
        data = load_json(text)
        items = data if isinstance(data, list) else [data]
        prompts = [p for p in map(_item_to_prompt, items) if p is not None]
        if items and not prompts:
            raise ParseDegradation("JSON holds no prompt-like items")
        return iter(prompts)

    def parse_jsonl(self, text: str) -> Iterator[RawPrompt]:
        recognized = 0
        for line in iter_json_lines(text):
            prompt = _item_to_prompt(line)
            if prompt is not None:
                recognized += 1
                yield prompt
        if not recognized:
            raise ParseDegradation("no prompt-like JSON lines")
