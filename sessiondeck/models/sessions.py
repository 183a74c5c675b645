from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class SessionStatus(StrEnum):
    """Lifecycle status of a session."""

    ACTIVE = "active"
    IDLE = "idle"
    COMPLETED = "completed"


class Liveness(StrEnum):
    """Whether an agent process is confirmed running in the session's pane."""

    ALIVE = "alive"
    DEAD = "dead"
    UNKNOWN = "unknown"

    @classmethod
    def from_flag(cls, flag: bool | None) -> "Liveness":
        if flag is None:
            return cls.UNKNOWN
        return cls.ALIVE if flag else cls.DEAD

    def to_flag(self) -> bool | None:
        if self is Liveness.UNKNOWN:
            return None
        return self is Liveness.ALIVE


class EventType(StrEnum):
    """Kinds of transcript records kept as session events."""

    USER = "user"
    ASSISTANT_TEXT = "assistant_text"
    TOOL_USE = "tool_use"


class Session(BaseModel):
    """A tracked Claude Code session backed by one transcript file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    slug: str
    project_path: str
    project_name: str | None = None
    working_directory: str | None = None
    git_branch: str | None = None
    permission_mode: str | None = None
    file_path: str
    file_size_bytes: int = 0

    started_at: datetime
    last_activity: datetime
    status: SessionStatus = SessionStatus.ACTIVE

    message_count: int = 0
    tool_call_count: int = 0

    detected_task: str | None = None
    detected_activity: str | None = None
    detected_area: str | None = None

    # User-owned, never written by the indexer
    name: str | None = None
    tags: str | None = None
    ledger_link: str | None = None

    tmux_session: str | None = None
    tmux_pane: str | None = None
    tmux_pane_pid: int | None = None
    tmux_alive: Liveness = Liveness.UNKNOWN

    indexed_at: datetime | None = None

    @property
    def pane_id(self) -> str | None:
        """Full tmux target of the mapped pane, e.g. ``claude:1.0``."""
        if not self.tmux_session or not self.tmux_pane:
            return None
        return f"{self.tmux_session}:{self.tmux_pane}"


class SessionPatch(BaseModel):
    """Partial session update produced by the indexer.

    Only fields explicitly set are applied; how each one is merged into the
    stored row is decided by ``MERGE_POLICIES`` in the repository.
    """

    session_id: str
    slug: str | None = None
    project_path: str | None = None
    project_name: str | None = None
    working_directory: str | None = None
    git_branch: str | None = None
    permission_mode: str | None = None
    file_path: str | None = None
    file_size_bytes: int | None = None
    started_at: datetime | None = None
    last_activity: datetime | None = None
    status: SessionStatus | None = None
    message_count: int | None = None
    tool_call_count: int | None = None
    detected_task: str | None = None
    detected_activity: str | None = None
    detected_area: str | None = None
    name: str | None = None
    tags: str | None = None
    ledger_link: str | None = None


class SessionEvent(BaseModel):
    """One user message, assistant text block, or tool call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int | None = None
    session_id: str
    timestamp: datetime
    event_type: EventType
    content: str | None = None
    tool_name: str | None = None
    tool_input: str | None = None
    tool_output: str | None = None
    files_touched: str | None = None


class SessionAnnotations(BaseModel):
    """User edits to a session; absent fields keep their stored value."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str | None = None
    tags: str | None = None
    ledger_link: str | None = None


class SessionFilters(BaseModel):
    """Options for listing sessions.

    Without ``status`` or ``show_all`` the smart default applies: every active
    session plus everything active within the last ``max_age_days``.
    """

    status: SessionStatus | None = None
    project_path: str | None = None
    show_all: bool = False
    max_age_days: int | None = None
    limit: int = 0
    offset: int = 0


class SessionStats(BaseModel):
    """Session counts by status."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int
    active: int
    idle: int
    completed: int
    indexed_today: int


class ProjectInfo(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    project_path: str
    project_name: str | None = None
