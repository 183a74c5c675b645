"""Turn one transcript file into a session patch, its events and search text."""

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sessiondeck.core.extractors import (
    detect_activity,
    detect_area,
    detect_task,
    extract_file_paths,
    extract_files_from_tool_input,
)
from sessiondeck.core.jsonl_parser import content_blocks, extract_text_content, iter_records
from sessiondeck.core.path_utils import decode_project_path, project_name_for, session_id_for
from sessiondeck.core.state_machine import as_utc
from sessiondeck.models.sessions import EventType, SessionEvent, SessionPatch

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 10_000
MAX_TOOL_IO_LENGTH = 5_000
MAX_SEARCH_CONTENT_LENGTH = 100_000
FIRST_MESSAGE_LENGTH = 500
FILES_PER_EVENT = 10
SLUG_LENGTH = 8


@dataclass
class ParsedSession:
    """Everything the indexer needs to persist one transcript."""

    patch: SessionPatch
    events: list[SessionEvent] = field(default_factory=lambda: list[SessionEvent]())
    search_content: str = ""
    tool_names: list[str] = field(default_factory=lambda: list[str]())
    files_touched: list[str] = field(default_factory=lambda: list[str]())


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 transcript timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def _text_field(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def _serialize_input(tool_input: Any) -> str | None:
    if tool_input is None:
        return None
    try:
        return json.dumps(tool_input, default=str)[:MAX_TOOL_IO_LENGTH]
    except (TypeError, ValueError):
        return None


def parse_session_file(file_path: str | Path) -> ParsedSession:
    """Read a transcript in a single pass and extract session fields.

    Raises:
        OSError: If the file cannot be stat-ed.
    """
    path = Path(file_path)
    stat = path.stat()
    fallback_time = datetime.fromtimestamp(stat.st_mtime, UTC)

    session_id = session_id_for(path)
    project_path = decode_project_path(path.parent.name)

    events: list[SessionEvent] = []
    tool_names: dict[str, None] = {}
    files_touched: dict[str, None] = {}
    search_parts: list[str] = []
    pending_tools: dict[str, int] = {}

    started_at: datetime | None = None
    last_activity: datetime | None = None
    current_time = fallback_time
    working_directory: str | None = None
    git_branch: str | None = None
    permission_mode: str | None = None
    first_user_message: str | None = None
    message_count = 0
    tool_call_count = 0

    for record in iter_records(path):
        timestamp = parse_timestamp(record.get("timestamp"))
        if timestamp:
            if started_at is None or timestamp < started_at:
                started_at = timestamp
            if last_activity is None or timestamp > last_activity:
                last_activity = timestamp
            current_time = timestamp

        working_directory = working_directory or _text_field(record.get("cwd"))
        git_branch = git_branch or _text_field(record.get("gitBranch"))
        permission_mode = permission_mode or _text_field(record.get("permissionMode"))

        record_type = record.get("type")
        message = record.get("message")
        if not isinstance(message, dict):
            message = None

        if record_type == "user":
            text = extract_text_content(message.get("content") if message else None)
            if text:
                message_count += 1
                if first_user_message is None:
                    first_user_message = text[:FIRST_MESSAGE_LENGTH]
                search_parts.append(text)
                events.append(
                    SessionEvent(
                        session_id=session_id,
                        timestamp=current_time,
                        event_type=EventType.USER,
                        content=text[:MAX_CONTENT_LENGTH],
                    )
                )

            for block in content_blocks(message):
                if block.get("type") != "tool_result":
                    continue
                output = extract_text_content(block.get("content"))
                if not output:
                    continue
                for found in extract_file_paths(output):
                    files_touched.setdefault(found, None)
                result_id = _text_field(block.get("tool_use_id"))
                event_index = pending_tools.pop(result_id, None) if result_id else None
                if event_index is not None:
                    events[event_index].tool_output = output[:MAX_TOOL_IO_LENGTH]

        elif record_type == "assistant" and message:
            content = message.get("content")
            if isinstance(content, str):
                if content:
                    search_parts.append(content)
                continue

            for block in content_blocks(message):
                block_type = block.get("type")
                if block_type == "text":
                    text = block.get("text")
                    if not isinstance(text, str) or not text:
                        continue
                    search_parts.append(text)
                    events.append(
                        SessionEvent(
                            session_id=session_id,
                            timestamp=current_time,
                            event_type=EventType.ASSISTANT_TEXT,
                            content=text[:MAX_CONTENT_LENGTH],
                        )
                    )
                elif block_type == "tool_use":
                    tool_call_count += 1
                    tool_name = _text_field(block.get("name")) or "unknown"
                    tool_names.setdefault(tool_name, None)
                    tool_input = block.get("input")
                    for found in extract_files_from_tool_input(tool_name, tool_input):
                        files_touched.setdefault(found, None)

                    snapshot = list(files_touched)[-FILES_PER_EVENT:]
                    events.append(
                        SessionEvent(
                            session_id=session_id,
                            timestamp=current_time,
                            event_type=EventType.TOOL_USE,
                            tool_name=tool_name,
                            tool_input=_serialize_input(tool_input),
                            files_touched=",".join(snapshot) or None,
                        )
                    )
                    tool_use_id = _text_field(block.get("id"))
                    if tool_use_id:
                        pending_tools[tool_use_id] = len(events) - 1

    started = started_at or fallback_time
    latest = last_activity or started

    patch = SessionPatch(
        session_id=session_id,
        slug=session_id[:SLUG_LENGTH],
        project_path=project_path,
        project_name=project_name_for(project_path),
        working_directory=working_directory,
        git_branch=git_branch,
        permission_mode=permission_mode,
        file_path=str(path),
        file_size_bytes=stat.st_size,
        started_at=started,
        last_activity=latest,
        message_count=message_count,
        tool_call_count=tool_call_count,
        detected_task=detect_task(first_user_message),
        detected_activity=detect_activity(tool_names),
        detected_area=detect_area(files_touched),
    )

    logger.debug(
        f"Parsed {path.name}: {len(events)} events, {tool_call_count} tool calls, "
        f"{len(files_touched)} files"
    )

    return ParsedSession(
        patch=patch,
        events=events,
        search_content="\n".join(search_parts)[:MAX_SEARCH_CONTENT_LENGTH],
        tool_names=list(tool_names),
        files_touched=list(files_touched),
    )
