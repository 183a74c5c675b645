"""Session store access used by the indexer, the pane mapper and the API.

Ownership of session columns is split between writers:

- the indexer owns the transcript-derived fields and the event rows,
- the pane mapper owns ``tmux_*``,
- users own ``name``, ``tags`` and ``ledger_link``,
- ``status`` is written by both indexer and mapper, always through
  ``sessiondeck.core.state_machine``.

Multi-row writes run inside a single transaction so the event rows, the
session row and the full-text entry never disagree after a crash.
"""

import logging
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from sqlalchemy import case, delete, func, insert, or_, select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sessiondeck.config import get_settings
from sessiondeck.core.session_parser import ParsedSession
from sessiondeck.core.state_machine import (
    StatusThresholds,
    as_utc,
    derive_status,
    status_for_index,
)
from sessiondeck.db.database import FTS_TABLE, get_session_factory
from sessiondeck.db.models import EventRecord, SessionRecord
from sessiondeck.models.panes import TmuxPane
from sessiondeck.models.sessions import (
    EventType,
    Liveness,
    ProjectInfo,
    Session,
    SessionAnnotations,
    SessionEvent,
    SessionFilters,
    SessionPatch,
    SessionStats,
    SessionStatus,
)

logger = logging.getLogger(__name__)


class MergePolicy(StrEnum):
    """How a patch value is merged into a stored session column."""

    OVERWRITE = "overwrite"
    KEEP_IF_ABSENT = "keep_if_absent"  # None/"" never clears a stored value
    KEEP_LATEST = "keep_latest"  # never moves backwards


MERGE_POLICIES: dict[str, MergePolicy] = {
    "slug": MergePolicy.OVERWRITE,
    "project_path": MergePolicy.OVERWRITE,
    "project_name": MergePolicy.OVERWRITE,
    "working_directory": MergePolicy.KEEP_IF_ABSENT,
    "git_branch": MergePolicy.KEEP_IF_ABSENT,
    "permission_mode": MergePolicy.KEEP_IF_ABSENT,
    "file_path": MergePolicy.OVERWRITE,
    "file_size_bytes": MergePolicy.OVERWRITE,
    "started_at": MergePolicy.OVERWRITE,
    "last_activity": MergePolicy.KEEP_LATEST,
    "status": MergePolicy.OVERWRITE,
    "message_count": MergePolicy.OVERWRITE,
    "tool_call_count": MergePolicy.OVERWRITE,
    "detected_task": MergePolicy.KEEP_IF_ABSENT,
    "detected_activity": MergePolicy.OVERWRITE,
    "detected_area": MergePolicy.KEEP_IF_ABSENT,
    "name": MergePolicy.KEEP_IF_ABSENT,
    "tags": MergePolicy.KEEP_IF_ABSENT,
    "ledger_link": MergePolicy.KEEP_IF_ABSENT,
}

LIVE_STATUSES = (SessionStatus.ACTIVE.value, SessionStatus.IDLE.value)


def merge_patch(record: SessionRecord, patch: SessionPatch) -> None:
    """Apply the explicitly set fields of ``patch`` to ``record``."""
    for field in sorted(patch.model_fields_set - {"session_id"}):
        policy = MERGE_POLICIES[field]
        value = getattr(patch, field)
        current = getattr(record, field)

        if policy is MergePolicy.KEEP_IF_ABSENT and (value is None or value == ""):
            continue
        if policy is MergePolicy.KEEP_LATEST:
            if value is None:
                continue
            if current is not None and as_utc(current) >= as_utc(value):
                continue

        setattr(record, field, value)


def _to_session(record: SessionRecord) -> Session:
    return Session(
        session_id=record.session_id,
        slug=record.slug,
        project_path=record.project_path,
        project_name=record.project_name,
        working_directory=record.working_directory,
        git_branch=record.git_branch,
        permission_mode=record.permission_mode,
        file_path=record.file_path,
        file_size_bytes=record.file_size_bytes or 0,
        started_at=as_utc(record.started_at),
        last_activity=as_utc(record.last_activity),
        status=SessionStatus(record.status),
        message_count=record.message_count or 0,
        tool_call_count=record.tool_call_count or 0,
        detected_task=record.detected_task,
        detected_activity=record.detected_activity,
        detected_area=record.detected_area,
        name=record.name,
        tags=record.tags,
        ledger_link=record.ledger_link,
        tmux_session=record.tmux_session,
        tmux_pane=record.tmux_pane,
        tmux_pane_pid=record.tmux_pane_pid,
        tmux_alive=Liveness.from_flag(record.tmux_alive),
        indexed_at=as_utc(record.indexed_at) if record.indexed_at else None,
    )


def _to_event(record: EventRecord) -> SessionEvent:
    return SessionEvent(
        id=record.id,
        session_id=record.session_id,
        timestamp=as_utc(record.timestamp),
        event_type=EventType(record.event_type),
        content=record.content,
        tool_name=record.tool_name,
        tool_input=record.tool_input,
        tool_output=record.tool_output,
        files_touched=record.files_touched,
    )


def _event_row(event: SessionEvent) -> dict[str, Any]:
    return {
        "session_id": event.session_id,
        "timestamp": event.timestamp,
        "event_type": event.event_type.value,
        "content": event.content,
        "tool_name": event.tool_name,
        "tool_input": event.tool_input,
        "tool_output": event.tool_output,
        "files_touched": event.files_touched,
    }


class SessionRepository:
    """Reads and writes sessions, their events and the search index."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        thresholds: StatusThresholds | None = None,
        batch_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory or get_session_factory()
        self._thresholds = thresholds or StatusThresholds.from_settings()
        self._batch_size = batch_size or settings.EVENT_BATCH_SIZE
        self._search_limit = settings.SEARCH_LIMIT
        self._recent_days = settings.RECENT_DAYS

    # ------------------------------------------------------------------ reads

    async def get_session(self, session_id: str) -> Session | None:
        async with self._session_factory() as db:
            record = await db.get(SessionRecord, session_id)
            return _to_session(record) if record else None

    async def list_sessions(
        self, filters: SessionFilters | None = None, now: datetime | None = None
    ) -> list[Session]:
        """List sessions, newest activity first.

        Default (no status, not ``show_all``): every active session plus every
        session active within the last ``max_age_days``, active ones first.
        """
        filters = filters or SessionFilters()
        stmt = select(SessionRecord)

        if filters.project_path:
            stmt = stmt.where(SessionRecord.project_path == filters.project_path)

        if filters.status:
            stmt = stmt.where(SessionRecord.status == filters.status.value).order_by(
                SessionRecord.last_activity.desc()
            )
        elif filters.show_all:
            stmt = stmt.order_by(SessionRecord.last_activity.desc())
        else:
            max_age_days = filters.max_age_days or self._recent_days
            cutoff = as_utc(now or datetime.now(UTC)) - timedelta(days=max_age_days)
            stmt = stmt.where(
                or_(
                    SessionRecord.status == SessionStatus.ACTIVE.value,
                    SessionRecord.last_activity > cutoff,
                )
            ).order_by(
                case((SessionRecord.status == SessionStatus.ACTIVE.value, 0), else_=1),
                SessionRecord.last_activity.desc(),
            )

        if filters.limit > 0:
            stmt = stmt.limit(filters.limit).offset(max(0, filters.offset))

        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [_to_session(rec) for rec in result.scalars().all()]

    async def get_mapping_candidates(self) -> list[Session]:
        """Sessions the pane mapper may map or must re-check."""
        stmt = select(SessionRecord).where(
            or_(
                SessionRecord.status.in_(LIVE_STATUSES),
                SessionRecord.tmux_pane.is_not(None),
            )
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [_to_session(rec) for rec in result.scalars().all()]

    async def get_session_events(
        self, session_id: str, after_id: int | None = None
    ) -> list[SessionEvent]:
        """Events of a session in stream order, optionally only those after ``after_id``."""
        stmt = select(EventRecord).where(EventRecord.session_id == session_id)
        if after_id is not None and after_id > 0:
            stmt = stmt.where(EventRecord.id > after_id)
        stmt = stmt.order_by(EventRecord.timestamp.asc(), EventRecord.id.asc())

        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [_to_event(rec) for rec in result.scalars().all()]

    async def search_sessions(self, query: str, limit: int | None = None) -> list[Session]:
        """Full-text search ranked by relevance.

        Queries FTS5 cannot parse (unbalanced quotes, path separators,
        operators) fall back to a substring match over the same columns,
        newest first.
        """
        query = query.strip()
        if not query:
            return []
        limit = limit or self._search_limit

        async with self._session_factory() as db:
            try:
                result = await db.execute(
                    text(
                        f"SELECT session_id FROM {FTS_TABLE} "
                        f"WHERE {FTS_TABLE} MATCH :query "
                        f"ORDER BY bm25({FTS_TABLE}) LIMIT :limit"
                    ),
                    {"query": query, "limit": limit},
                )
                session_ids = [row[0] for row in result.all()]
            except OperationalError as e:
                logger.debug(f"FTS query {query!r} failed, falling back to LIKE: {e}")
                await db.rollback()
                pattern = f"%{query}%"
                result = await db.execute(
                    text(
                        f"SELECT ss.session_id FROM {FTS_TABLE} ss "
                        "JOIN sessions s ON s.session_id = ss.session_id "
                        "WHERE ss.content LIKE :pattern "
                        "OR ss.tool_name LIKE :pattern "
                        "OR ss.files_touched LIKE :pattern "
                        "ORDER BY s.last_activity DESC LIMIT :limit"
                    ),
                    {"pattern": pattern, "limit": limit},
                )
                session_ids = [row[0] for row in result.all()]

            if not session_ids:
                return []

            records = await db.execute(
                select(SessionRecord).where(SessionRecord.session_id.in_(session_ids))
            )
            by_id = {rec.session_id: rec for rec in records.scalars().all()}

        return [_to_session(by_id[sid]) for sid in dict.fromkeys(session_ids) if sid in by_id]

    async def get_distinct_projects(self) -> list[ProjectInfo]:
        stmt = (
            select(SessionRecord.project_path, SessionRecord.project_name)
            .where(SessionRecord.project_path != "")
            .distinct()
            .order_by(SessionRecord.project_name.asc())
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [
                ProjectInfo(project_path=path, project_name=name) for path, name in result.all()
            ]

    async def get_stats(self, now: datetime | None = None) -> SessionStats:
        current = as_utc(now or datetime.now(UTC))
        start_of_day = current.replace(hour=0, minute=0, second=0, microsecond=0)

        async with self._session_factory() as db:
            rows = await db.execute(
                select(SessionRecord.status, func.count()).group_by(SessionRecord.status)
            )
            counts: dict[str, int] = {status: count for status, count in rows.all()}
            indexed_today = await db.scalar(
                select(func.count()).where(SessionRecord.indexed_at >= start_of_day)
            )

        return SessionStats(
            total=sum(counts.values()),
            active=counts.get(SessionStatus.ACTIVE.value, 0),
            idle=counts.get(SessionStatus.IDLE.value, 0),
            completed=counts.get(SessionStatus.COMPLETED.value, 0),
            indexed_today=indexed_today or 0,
        )

    # ----------------------------------------------------------- indexer writes

    async def reindex_session(self, parsed: ParsedSession, now: datetime | None = None) -> Session:
        """Replace a session's row, events and search entry from a fresh parse."""
        patch = parsed.patch
        session_id = patch.session_id
        current = as_utc(now or datetime.now(UTC))

        async with self._session_factory() as db, db.begin():
            await db.execute(delete(EventRecord).where(EventRecord.session_id == session_id))

            record = await db.get(SessionRecord, session_id)
            if record is None:
                record = SessionRecord(session_id=session_id)
                db.add(record)

            merge_patch(record, patch)
            record.status = status_for_index(
                Liveness.from_flag(record.tmux_alive),
                record.last_activity,
                current,
                self._thresholds,
            ).value
            record.indexed_at = current
            await db.flush()

            rows = [_event_row(event) for event in parsed.events]
            for start in range(0, len(rows), self._batch_size):
                await db.execute(insert(EventRecord), rows[start : start + self._batch_size])

            await self._replace_search_entry(db, parsed)

        return _to_session(record)

    async def _replace_search_entry(self, db: AsyncSession, parsed: ParsedSession) -> None:
        session_id = parsed.patch.session_id
        await db.execute(
            text(f"DELETE FROM {FTS_TABLE} WHERE session_id = :session_id"),
            {"session_id": session_id},
        )
        await db.execute(
            text(
                f"INSERT INTO {FTS_TABLE} (session_id, content, tool_name, files_touched) "
                "VALUES (:session_id, :content, :tool_name, :files_touched)"
            ),
            {
                "session_id": session_id,
                "content": parsed.search_content,
                "tool_name": " ".join(parsed.tool_names),
                "files_touched": " ".join(parsed.files_touched),
            },
        )

    async def refresh_status(
        self, session_id: str, now: datetime | None = None
    ) -> tuple[Session | None, bool]:
        """Re-derive the indexer status of an unchanged transcript.

        Returns:
            The stored session (or None) and whether its status changed.
        """
        async with self._session_factory() as db, db.begin():
            record = await db.get(SessionRecord, session_id)
            if record is None:
                return None, False

            new_status = status_for_index(
                Liveness.from_flag(record.tmux_alive),
                record.last_activity,
                now,
                self._thresholds,
            ).value
            changed = new_status != record.status
            if changed:
                record.status = new_status

        return _to_session(record), changed

    # ------------------------------------------------------------ mapper writes

    async def update_live_state(
        self,
        session_id: str,
        liveness: Liveness,
        pane: TmuxPane | None = None,
        clear_pane: bool = False,
        now: datetime | None = None,
    ) -> tuple[Session | None, bool]:
        """Set liveness (and optionally the pane) of a session and re-derive status.

        Args:
            session_id: Session to update.
            liveness: New liveness.
            pane: Pane the session is now mapped to, if any.
            clear_pane: Drop the stored pane coordinates.
            now: Clock override for tests.

        Returns:
            The updated session (or None if it does not exist) and whether
            any stored field changed.
        """
        async with self._session_factory() as db, db.begin():
            record = await db.get(SessionRecord, session_id)
            if record is None:
                return None, False

            before = (
                record.tmux_session,
                record.tmux_pane,
                record.tmux_pane_pid,
                record.tmux_alive,
                record.status,
            )

            if pane is not None:
                record.tmux_session = pane.session
                record.tmux_pane = pane.window_pane
                record.tmux_pane_pid = pane.pid
            elif clear_pane:
                record.tmux_session = None
                record.tmux_pane = None
                record.tmux_pane_pid = None

            record.tmux_alive = liveness.to_flag()
            record.status = derive_status(
                SessionStatus(record.status),
                liveness,
                record.last_activity,
                now,
                self._thresholds,
            ).value

            after = (
                record.tmux_session,
                record.tmux_pane,
                record.tmux_pane_pid,
                record.tmux_alive,
                record.status,
            )

        return _to_session(record), before != after

    # -------------------------------------------------------------- user writes

    async def update_session_annotations(
        self, session_id: str, annotations: SessionAnnotations
    ) -> Session | None:
        """Apply user edits; fields left as None keep their stored value."""
        async with self._session_factory() as db, db.begin():
            record = await db.get(SessionRecord, session_id)
            if record is None:
                return None
            for field in ("name", "tags", "ledger_link"):
                value = getattr(annotations, field)
                if value is not None:
                    setattr(record, field, value)
        return _to_session(record)

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session with its events and search entry."""
        async with self._session_factory() as db, db.begin():
            record = await db.get(SessionRecord, session_id)
            if record is None:
                return False
            await db.execute(
                text(f"DELETE FROM {FTS_TABLE} WHERE session_id = :session_id"),
                {"session_id": session_id},
            )
            await db.execute(delete(EventRecord).where(EventRecord.session_id == session_id))
            await db.execute(delete(SessionRecord).where(SessionRecord.session_id == session_id))
        return True
