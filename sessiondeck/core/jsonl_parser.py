"""Stream Claude Code JSONL transcript files."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any, TypedDict, cast

logger = logging.getLogger(__name__)


class ContentBlock(TypedDict, total=False):
    """Content block within a Claude message."""

    type: str
    text: str
    id: str
    name: str
    input: dict[str, Any]
    content: str | list["ContentBlock"]
    tool_use_id: str
    is_error: bool


class Message(TypedDict, total=False):
    """Claude message structure."""

    role: str
    content: str | list[ContentBlock]
    model: str


class TranscriptRecord(TypedDict, total=False):
    """A single record from a JSONL transcript file."""

    type: str
    timestamp: str
    sessionId: str
    uuid: str
    parentUuid: str
    cwd: str
    gitBranch: str
    permissionMode: str
    version: str
    message: Message
    isSidechain: bool


def iter_records(jsonl_path: str | Path) -> Iterator[TranscriptRecord]:
    """Yield transcript records one line at a time.

    The file is read sequentially and never held in memory as a whole.
    Blank lines are ignored; lines that are not a JSON object are logged
    and skipped. A missing or unreadable file yields nothing.

    Args:
        jsonl_path: Path to the JSONL transcript file.

    Yields:
        Each decoded record, in file order.
    """
    path = Path(jsonl_path)
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue

                try:
                    record = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping malformed line {line_number} in {path}: {e}")
                    continue

                if not isinstance(record, dict):
                    logger.warning(f"Skipping non-object line {line_number} in {path}")
                    continue

                yield cast(TranscriptRecord, record)

    except OSError as e:
        logger.warning(f"Error reading transcript file {path}: {e}")


def extract_text_content(content: object) -> str:
    """Flatten message content (a string or a list of blocks) into plain text."""
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        parts: list[str] = []
        for item in cast(list[Any], content):
            if not isinstance(item, dict):
                continue
            block = cast(dict[str, Any], item)
            text = block.get("text")
            if block.get("type") == "text" and isinstance(text, str) and text:
                parts.append(text)
        return "\n".join(parts)

    return ""


def content_blocks(message: Message | None) -> list[ContentBlock]:
    """Return the dict blocks of a message, or an empty list for string content."""
    if not message:
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [cast(ContentBlock, b) for b in cast(list[Any], content) if isinstance(b, dict)]
