"""Heuristic classifiers for session transcripts.

Everything here is a pure function of its input. The rule tables are ordered
tuples so the priority of each rule is visible in one place and can be tested
on its own. None of these functions raise: a missing signal yields ``None``
or an empty collection.
"""

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

MAX_TASK_LENGTH = 200
MIN_PATH_LENGTH = 3
MAX_PATH_LENGTH = 500

# --------------------------------------------------------------------------- task

_HEADER_RE = re.compile(r"^#+\s*", re.MULTILINE)
_CODE_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_FIRST_SENTENCE_RE = re.compile(r"^[^.!?]+[.!?]")

TASK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bI\s+(?:want|need)\s+(?:to|you\s+to)\s+([^.!?]+)", re.IGNORECASE),
    re.compile(r"\bcan\s+you\s+(?:please\s+)?([^.!?]+)", re.IGNORECASE),
    re.compile(
        r"\b((?:implement|create|build|fix|update|add|remove|refactor|test|debug)\s+[^.!?]+)",
        re.IGNORECASE,
    ),
    re.compile(r"^(?:please\s+)?help\s+(?:me\s+)?(?:to\s+)?([^.!?]+)", re.IGNORECASE),
)


def clean_message(message: str) -> str:
    """Strip markdown headers, fenced code and tags, and collapse whitespace."""
    text = _HEADER_RE.sub("", message)
    text = _CODE_FENCE_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def detect_task(message: str | None) -> str | None:
    """Summarize what the user asked for from their first message."""
    if not message:
        return None

    task = clean_message(message)
    for pattern in TASK_PATTERNS:
        match = pattern.search(task)
        if match:
            task = match.group(1).strip()
            break

    sentence = _FIRST_SENTENCE_RE.match(task)
    if sentence:
        task = sentence.group(0)

    task = task.strip()[:MAX_TASK_LENGTH]
    if not task:
        return None
    return task[0].upper() + task[1:]


# ----------------------------------------------------------------------- activity

EDIT_TOOLS = frozenset({"Edit", "Write", "MultiEdit"})
READ_TOOLS = frozenset({"Read", "Grep", "Glob"})
BASH_TOOLS = frozenset({"Bash"})
TASK_TOOLS = frozenset({"Task"})

DEFAULT_ACTIVITY = "chatting"


@dataclass(frozen=True)
class ToolProfile:
    """Which families of tools a session has used."""

    has_edit: bool
    has_read: bool
    has_bash: bool
    has_git: bool
    has_task: bool

    @classmethod
    def from_tool_names(cls, tool_names: Iterable[str]) -> "ToolProfile":
        names = {name for name in tool_names if isinstance(name, str)}
        return cls(
            has_edit=bool(names & EDIT_TOOLS),
            has_read=bool(names & READ_TOOLS),
            has_bash=bool(names & BASH_TOOLS),
            has_git=any("git" in name.lower() for name in names),
            has_task=bool(names & TASK_TOOLS),
        )


# First matching rule wins.
ACTIVITY_RULES: tuple[tuple[str, Callable[[ToolProfile], bool]], ...] = (
    ("committing", lambda p: p.has_git and p.has_edit),
    ("implementing", lambda p: p.has_task),
    ("implementing", lambda p: p.has_edit and p.has_bash),
    ("editing", lambda p: p.has_edit),
    ("exploring", lambda p: p.has_read),
    ("running", lambda p: p.has_bash),
)


def detect_activity(tool_names: Iterable[str]) -> str:
    """Classify what a session is doing from the set of tools it called."""
    profile = ToolProfile.from_tool_names(tool_names)
    for activity, rule in ACTIVITY_RULES:
        if rule(profile):
            return activity
    return DEFAULT_ACTIVITY


# --------------------------------------------------------------------------- area


@dataclass(frozen=True)
class AreaPattern:
    pattern: re.Pattern[str]
    weight: int


def _segment(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"(?:^|/){prefix}/([^/]+)")


AREA_PATTERNS: tuple[AreaPattern, ...] = (
    # Explicit area markers
    AreaPattern(_segment("areas"), 10),
    AreaPattern(_segment("domains"), 10),
    AreaPattern(_segment("modules"), 10),
    AreaPattern(_segment("features"), 10),
    # Monorepo layouts
    AreaPattern(_segment("packages"), 8),
    AreaPattern(_segment("apps"), 8),
    AreaPattern(_segment("services"), 8),
    AreaPattern(_segment("libs"), 8),
    AreaPattern(_segment("internal"), 8),
    # Generic source roots
    AreaPattern(_segment("src"), 3),
    AreaPattern(_segment("app"), 3),
    AreaPattern(_segment("lib"), 3),
    AreaPattern(_segment("components"), 3),
    # Workspace root
    AreaPattern(re.compile(r"(?:^|/)workspace/[^/]+/([^/]+)"), 1),
)

IGNORED_AREAS = frozenset(
    {
        "node_modules",
        "dist",
        "build",
        "__pycache__",
        ".git",
        ".next",
        "coverage",
        "out",
        ".turbo",
        ".cache",
        "target",
        "vendor",
        "bower_components",
        ".venv",
        "env",
        "venv",
        "__tests__",
        "tests",
        "test",
        "spec",
        "docs",
        "doc",
        "public",
        "static",
        "assets",
    }
)


def _area_label(segment: str) -> str | None:
    if segment.lower() in IGNORED_AREAS:
        return None
    # A file directly under a marker directory names the area by its stem
    label = segment.split(".", 1)[0] if not segment.startswith(".") else segment
    if not label or label.lower() in IGNORED_AREAS:
        return None
    return label


def score_areas(files_touched: Iterable[str]) -> dict[str, int]:
    """Accumulated pattern weight per candidate area, in first-seen order."""
    scores: dict[str, int] = {}
    for file_path in files_touched:
        if not isinstance(file_path, str):
            continue
        for area_pattern in AREA_PATTERNS:
            match = area_pattern.pattern.search(file_path)
            if not match:
                continue
            label = _area_label(match.group(1))
            if label:
                scores[label] = scores.get(label, 0) + area_pattern.weight
    return scores


def detect_area(files_touched: Iterable[str]) -> str | None:
    """Guess the project area a session works in from the paths it touched."""
    best_area: str | None = None
    best_score = 0
    for area, score in score_areas(files_touched).items():
        if score > best_score:
            best_area, best_score = area, score
    return best_area


# -------------------------------------------------------------------------- files

FILE_INPUT_FIELDS: tuple[str, ...] = (
    "file_path",
    "path",
    "filename",
    "source",
    "target",
    "destination",
    "notebook_path",
)

PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/(?:Users|home|var|tmp|etc)/[^\s'\"<>|]+"),
    re.compile(r"(?:\.{1,2}/)?[\w\-./]+\.[A-Za-z]\w{0,9}"),
)
_TRAILING_PUNCTUATION_RE = re.compile(r"[,;:'\")\]}>]+$")


def _plausible_path(candidate: str) -> bool:
    return MIN_PATH_LENGTH <= len(candidate) <= MAX_PATH_LENGTH


def extract_file_paths(text: str | None) -> list[str]:
    """Find path-shaped tokens in free text such as commands or tool output."""
    if not text or not isinstance(text, str):
        return []

    found: dict[str, None] = {}
    for pattern in PATH_PATTERNS:
        for match in pattern.findall(text):
            cleaned = _TRAILING_PUNCTUATION_RE.sub("", match)
            if _plausible_path(cleaned):
                found.setdefault(cleaned, None)
    return list(found)


def extract_files_from_tool_input(
    tool_name: str, tool_input: Mapping[str, Any] | None
) -> list[str]:
    """Paths a tool call refers to, read from its well-known input fields."""
    if not isinstance(tool_input, Mapping):
        return []

    found: dict[str, None] = {}
    for field in FILE_INPUT_FIELDS:
        value = tool_input.get(field)
        if isinstance(value, str) and _plausible_path(value):
            found.setdefault(value, None)

    lowered = tool_name.lower() if isinstance(tool_name, str) else ""
    if lowered == "glob":
        pattern = tool_input.get("pattern")
        if isinstance(pattern, str) and _plausible_path(pattern):
            found.setdefault(pattern, None)
    elif lowered == "bash":
        command = tool_input.get("command")
        if isinstance(command, str):
            for path in extract_file_paths(command):
                found.setdefault(path, None)

    return list(found)
