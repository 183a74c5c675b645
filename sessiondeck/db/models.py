from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sessiondeck.db.database import Base


class SessionRecord(Base):
    """Database model for indexed Claude Code sessions."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index("idx_sessions_status", "status"),
        Index("idx_sessions_project", "project_path"),
        Index("idx_sessions_last_activity", "last_activity"),
        Index("idx_sessions_working_directory", "working_directory"),
    )

    session_id: Mapped[str] = mapped_column(String, primary_key=True)
    slug: Mapped[str] = mapped_column(String)
    project_path: Mapped[str] = mapped_column(String)
    project_name: Mapped[str | None] = mapped_column(String, nullable=True)
    working_directory: Mapped[str | None] = mapped_column(String, nullable=True)
    git_branch: Mapped[str | None] = mapped_column(String, nullable=True)
    permission_mode: Mapped[str | None] = mapped_column(String, nullable=True)
    file_path: Mapped[str] = mapped_column(String)
    file_size_bytes: Mapped[int] = mapped_column(Integer, default=0)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_activity: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String, default="active")

    message_count: Mapped[int] = mapped_column(Integer, default=0)
    tool_call_count: Mapped[int] = mapped_column(Integer, default=0)

    detected_task: Mapped[str | None] = mapped_column(Text, nullable=True)
    detected_activity: Mapped[str | None] = mapped_column(String, nullable=True)
    detected_area: Mapped[str | None] = mapped_column(String, nullable=True)

    name: Mapped[str | None] = mapped_column(String, nullable=True)
    tags: Mapped[str | None] = mapped_column(String, nullable=True)
    ledger_link: Mapped[str | None] = mapped_column(String, nullable=True)

    tmux_session: Mapped[str | None] = mapped_column(String, nullable=True)
    tmux_pane: Mapped[str | None] = mapped_column(String, nullable=True)
    tmux_pane_pid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # NULL = unknown
    tmux_alive: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=None)

    indexed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    events: Mapped[list["EventRecord"]] = relationship(
        "EventRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class EventRecord(Base):
    """Database model for events within a session."""

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_session", "session_id", "timestamp"),
        # Ids are handed out to clients for incremental fetches, never reuse them
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String, ForeignKey("sessions.session_id", ondelete="CASCADE")
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    event_type: Mapped[str] = mapped_column(String)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    tool_name: Mapped[str | None] = mapped_column(String, nullable=True)
    tool_input: Mapped[str | None] = mapped_column(Text, nullable=True)
    tool_output: Mapped[str | None] = mapped_column(Text, nullable=True)
    files_touched: Mapped[str | None] = mapped_column(Text, nullable=True)

    session: Mapped[SessionRecord] = relationship("SessionRecord", back_populates="events")
