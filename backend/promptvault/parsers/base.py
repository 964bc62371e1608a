"""Shared machinery for the platform export parsers.

Every parser runs an ordered list of stages: a strict structured parse, an
optional secondary structured format, and heuristic text segmentation. A
stage that does not recognise its input raises ParseDegradation and the next
stage is tried. ``parse`` and ``iter_prompts`` never raise.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from promptvault.errors import ParseDegradation
from promptvault.models import Platform
from promptvault.parsers.models import NormalizedPrompt, RawPrompt

logger = logging.getLogger(__name__)

USER_ALIASES = ("you", "user", "human")
TITLE_LIMIT = 50

# Numeric timestamps above this are milliseconds, not seconds.
_MILLIS_THRESHOLD = 10_000_000_000

Stage = tuple[str, Callable[[str], Iterable[RawPrompt]]]


# ---------------------------------------------------------------------------
# Helpers shared by the platform modules
# ---------------------------------------------------------------------------


def decode_text(raw: str | bytes | bytearray) -> str:
    """Decode raw file content as UTF-8, stripping a BOM."""
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8-sig", errors="replace")
    return raw.removeprefix("\ufeff")


def load_json(text: str) -> Any:
    """Parse a whole document as JSON or signal degradation."""
    try:
        return json.loads(text)
    except ValueError as e:
        raise ParseDegradation(f"not a JSON document ({e.__class__.__name__})") from e


def iter_json_lines(text: str) -> Iterator[Any]:
    """Yield each parsable line of a JSON-Lines document, skipping bad lines."""
    valid = 0
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            value = json.loads(line)
        except ValueError:
            continue
        valid += 1
        yield value
    if not valid:
        raise ParseDegradation("no JSON lines found")


def text_of(value: Any) -> str:
    """Pull plain text out of the content shapes the exports use.

    Handles strings, lists of strings or typed blocks (only ``text`` blocks
    count), and objects with a ``text`` or ``parts`` field.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = [text_of(item) for item in value if _is_text_item(item)]
        return "\n".join(p for p in parts if p)
    if isinstance(value, dict):
        if isinstance(value.get("text"), str):
            return value["text"]
        if "parts" in value:
            return text_of(value["parts"])
    return ""


def _is_text_item(item: Any) -> bool:
    if isinstance(item, str):
        return True
    if isinstance(item, dict):
        return item.get("type", "text") == "text"
    return False


def coerce_timestamp(value: Any) -> datetime | None:
    """Parse epoch seconds, epoch milliseconds, or ISO 8601 into aware UTC."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000 if value > _MILLIS_THRESHOLD else value
            return datetime.fromtimestamp(seconds, tz=UTC)
        if isinstance(value, str) and value.strip():
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return dt if dt.tzinfo else dt.replace(tzinfo=UTC)
    except (ValueError, OverflowError, OSError):
        return None
    return None


def is_user_role(*values: Any) -> bool:
    """True if any of the role-ish fields names the human speaker."""
    return any(isinstance(v, str) and v.strip().lower() in USER_ALIASES for v in values)


def make_title(content: str) -> str:
    first_line = content.strip().split("\n", 1)[0].strip()
    if len(first_line) > TITLE_LIMIT:
        return first_line[:TITLE_LIMIT] + "..."
    return first_line


def each_unit(units: Iterable[Any], extract: Callable[[Any], Iterable[RawPrompt]]) -> Iterator[RawPrompt]:
    """Run ``extract`` on every unit, skipping units that blow up."""
    for index, unit in enumerate(units):
        try:
            yield from extract(unit)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.info("Skipping unparsable unit %d: %s", index, e)


def _marker_pattern(aliases: Iterable[str]) -> re.Pattern[str]:
    names = "|".join(re.escape(a) for a in aliases)
    return re.compile(
        rf"^\s*(?:#{{1,6}}\s*(?:\*\*)?(?:{names})\b(?:\*\*)?\s*(?::|$)(?:\*\*)?"
        rf"|(?:\*\*)?(?:{names})\b(?:\*\*)?\s*:(?:\*\*)?)\s*(?P<rest>.*)$",
        re.IGNORECASE,
    )


def segment_by_role_markers(
    text: str,
    assistant_aliases: Iterable[str],
    metadata: dict[str, Any] | None = None,
) -> Iterator[RawPrompt]:
    """Split a transcript on speaker markers and yield the user turns.

    Markers are lines such as ``User: ...``, ``**Human:**``, ``### Human`` or
    ``## You:``. Lines before the first marker are ignored. The assistant
    turn that directly follows a user turn becomes its response.
    """
    user_re = _marker_pattern(USER_ALIASES)
    assistant_re = _marker_pattern(assistant_aliases)

    turns: list[tuple[str, list[str]]] = []
    for line in text.splitlines():
        match = user_re.match(line)
        if match:
            turns.append(("user", [match["rest"]]))
            continue
        match = assistant_re.match(line)
        if match:
            turns.append(("assistant", [match["rest"]]))
            continue
        if turns:
            turns[-1][1].append(line)

    for i, (role, lines) in enumerate(turns):
        if role != "user":
            continue
        response = None
        if i + 1 < len(turns) and turns[i + 1][0] == "assistant":
            response = "\n".join(turns[i + 1][1]).strip() or None
        yield RawPrompt(
            content="\n".join(lines),
            response=response,
            metadata=dict(metadata or {}),
        )


def split_paragraphs(text: str) -> Iterator[RawPrompt]:
    """Yield one prompt per blank-line separated block."""
    for block in re.split(r"\n\s*\n", text):
        if block.strip():
            yield RawPrompt(content=block)


# ---------------------------------------------------------------------------
# Parser base class
# ---------------------------------------------------------------------------


class PromptParser(ABC):
    """Converts raw export content into NormalizedPrompt records."""

    platform: Platform
    assistant_aliases: tuple[str, ...] = ("assistant", "model")

    @abstractmethod
    def stages(self) -> list[Stage]:
        """Ordered (format tag, stage) pairs, strictest first."""
        ...

    def parse_text(self, text: str) -> Iterator[RawPrompt]:
        """Heuristic fallback: segment on speaker markers."""
        return segment_by_role_markers(text, self.assistant_aliases)

    def parse(self, raw: str | bytes) -> list[NormalizedPrompt]:
        """Parse a whole export. Never raises; returns whatever could be extracted."""
        return list(self.iter_prompts(raw))

    def iter_prompts(self, raw: str | bytes) -> Iterator[NormalizedPrompt]:
        """Yield prompts as the export is read. Never raises.

        The first stage that produces anything is kept for the rest of the
        file; if it breaks part way, the prompts already yielded stand.
        """
        try:
            text = decode_text(raw)
        except (AttributeError, TypeError):
            logger.info("%s parser received non-text input", self.platform)
            return
        if not text.strip():
            return

        for fmt, stage in self.stages():
            seen = emitted = 0
            try:
                for item in stage(text):
                    seen += 1
                    prompt = self._normalize(item, fmt, emitted)
                    if prompt is not None:
                        emitted += 1
                        yield prompt
            except ParseDegradation as e:
                if not seen:
                    logger.info("%s parser: %s stage skipped: %s", self.platform, fmt, e)
                    continue
            except Exception:
                logger.warning(
                    "%s parser: %s stage aborted after %d prompts",
                    self.platform, fmt, emitted, exc_info=True,
                )
                if not seen:
                    continue
            return

    def _normalize(self, raw: RawPrompt, fmt: str, sequence: int) -> NormalizedPrompt | None:
        content = raw.content.strip() if isinstance(raw.content, str) else ""
        if not content:
            return None
        metadata = {"format": fmt}
        metadata.update({k: v for k, v in raw.metadata.items() if v is not None})
        response = raw.response.strip() if isinstance(raw.response, str) else None
        return NormalizedPrompt(
            id=f"{self.platform.value}-{uuid4().hex}",
            source=self.platform.value,
            sequence=sequence,
            title=make_title(content),
            content=content,
            response=response or None,
            timestamp=raw.timestamp,
            metadata=metadata,
        )
