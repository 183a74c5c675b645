"""Tests for the session store: merge rules, events, search and queries."""

from datetime import UTC, datetime, timedelta

import pytest
from builders import (
    WriteTranscript,
    assistant_text,
    scenario_records,
    tool_use,
    user_record,
)

from sessiondeck.core.session_parser import ParsedSession, parse_session_file
from sessiondeck.db.repository import MERGE_POLICIES, MergePolicy, SessionRepository
from sessiondeck.models.panes import TmuxPane
from sessiondeck.models.sessions import (
    Liveness,
    SessionAnnotations,
    SessionFilters,
    SessionPatch,
    SessionStatus,
)

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
PANE = TmuxPane(session="claude", window=1, pane=0, pid=500, cwd="/home/dev/shop")


def iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse(write_transcript: WriteTranscript, session_id: str, **kwargs: object) -> ParsedSession:
    return parse_session_file(write_transcript(session_id, scenario_records(), **kwargs))


def with_patch(parsed: ParsedSession, **changes: object) -> ParsedSession:
    data = parsed.patch.model_dump(exclude_unset=True)
    data.update(changes)
    return ParsedSession(
        patch=SessionPatch(**data),
        events=parsed.events,
        search_content=parsed.search_content,
        tool_names=parsed.tool_names,
        files_touched=parsed.files_touched,
    )


class TestMergePolicies:
    """Tests for the merge policy table."""

    def test_every_patch_field_has_a_policy(self) -> None:
        assert set(SessionPatch.model_fields) - {"session_id"} == set(MERGE_POLICIES)

    def test_user_owned_fields_never_cleared(self) -> None:
        for field in ("name", "tags", "ledger_link", "detected_task", "detected_area"):
            assert MERGE_POLICIES[field] is MergePolicy.KEEP_IF_ABSENT
        assert MERGE_POLICIES["last_activity"] is MergePolicy.KEEP_LATEST


class TestReindexSession:
    """Tests for reindex_session."""

    @pytest.mark.asyncio
    async def test_creates_session_and_events(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        parsed = parse(write_transcript, "s-create")
        now = datetime(2026, 1, 15, 10, 3, tzinfo=UTC)

        session = await repository.reindex_session(parsed, now)

        assert session.status == SessionStatus.ACTIVE
        assert session.tool_call_count == 2
        assert session.detected_activity == "implementing"
        assert session.tmux_alive is Liveness.UNKNOWN
        assert session.indexed_at == now
        events = await repository.get_session_events("s-create")
        assert len(events) == len(parsed.events)
        assert all(e.id is not None for e in events)

    @pytest.mark.asyncio
    async def test_status_follows_age(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        session = await repository.reindex_session(parse(write_transcript, "s-old"), NOW)
        assert session.status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_reindex_replaces_events_with_new_ids(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        parsed = parse(write_transcript, "s-ids")
        await repository.reindex_session(parsed, NOW)
        first_ids = [e.id for e in await repository.get_session_events("s-ids")]

        await repository.reindex_session(parsed, NOW)
        second = await repository.get_session_events("s-ids")

        assert len(second) == len(first_ids)
        assert min(e.id or 0 for e in second) > max(i or 0 for i in first_ids)

    @pytest.mark.asyncio
    async def test_user_fields_preserved(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        parsed = parse(write_transcript, "s-user")
        await repository.reindex_session(parsed, NOW)
        await repository.update_session_annotations(
            "s-user", SessionAnnotations(name="Checkout", tags="billing,bug", ledger_link="L-1")
        )

        session = await repository.reindex_session(
            with_patch(parsed, name=None, tags="", ledger_link=None), NOW
        )

        assert session.name == "Checkout"
        assert session.tags == "billing,bug"
        assert session.ledger_link == "L-1"

    @pytest.mark.asyncio
    async def test_task_and_area_sticky(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        parsed = parse(write_transcript, "s-sticky")
        await repository.reindex_session(parsed, NOW)

        session = await repository.reindex_session(
            with_patch(parsed, detected_task=None, detected_area=None), NOW
        )

        assert session.detected_task == "Fix the checkout total rounding"
        assert session.detected_area == "foo"

    @pytest.mark.asyncio
    async def test_new_task_value_overwrites(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        parsed = parse(write_transcript, "s-task")
        await repository.reindex_session(parsed, NOW)

        session = await repository.reindex_session(
            with_patch(parsed, detected_task="Ship it"), NOW
        )

        assert session.detected_task == "Ship it"

    @pytest.mark.asyncio
    async def test_last_activity_monotonic(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        parsed = parse(write_transcript, "s-mono")
        before = await repository.reindex_session(parsed, NOW)

        after = await repository.reindex_session(
            with_patch(parsed, last_activity=before.last_activity - timedelta(hours=1)), NOW
        )

        assert after.last_activity == before.last_activity

    @pytest.mark.asyncio
    async def test_pane_fields_survive_reindex(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        parsed = parse(write_transcript, "s-pane")
        await repository.reindex_session(parsed, NOW)
        await repository.update_live_state("s-pane", Liveness.ALIVE, pane=PANE, now=NOW)

        session = await repository.reindex_session(parsed, NOW)

        assert session.pane_id == "claude:1.0"
        assert session.tmux_pane_pid == 500
        assert session.tmux_alive is Liveness.ALIVE
        assert session.status == SessionStatus.ACTIVE


class TestRefreshStatus:
    """Tests for refresh_status."""

    @pytest.mark.asyncio
    async def test_reports_change(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        parsed = parse(write_transcript, "s-refresh")
        await repository.reindex_session(parsed, datetime(2026, 1, 15, 10, 3, tzinfo=UTC))

        session, changed = await repository.refresh_status("s-refresh", NOW)
        assert changed
        assert session is not None
        assert session.status == SessionStatus.COMPLETED

        _session, changed_again = await repository.refresh_status("s-refresh", NOW)
        assert not changed_again

    @pytest.mark.asyncio
    async def test_unknown_session(self, repository: SessionRepository) -> None:
        assert await repository.refresh_status("nope", NOW) == (None, False)


class TestUpdateLiveState:
    """Tests for update_live_state."""

    @pytest.mark.asyncio
    async def test_dead_after_ninety_minutes_completes(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        last = NOW - timedelta(minutes=90)
        path = write_transcript("s-dead", [user_record("fix the bug", iso(last))])
        await repository.reindex_session(parse_session_file(path), NOW - timedelta(minutes=89))
        await repository.update_live_state("s-dead", Liveness.ALIVE, pane=PANE, now=NOW)

        session, changed = await repository.update_live_state("s-dead", Liveness.DEAD, now=NOW)

        assert changed
        assert session is not None
        assert session.tmux_alive is Liveness.DEAD
        assert session.status == SessionStatus.COMPLETED
        assert session.pane_id == "claude:1.0"

    @pytest.mark.asyncio
    async def test_clear_pane(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        await repository.reindex_session(parse(write_transcript, "s-clear"), NOW)
        await repository.update_live_state("s-clear", Liveness.ALIVE, pane=PANE, now=NOW)

        session, _changed = await repository.update_live_state(
            "s-clear", Liveness.DEAD, clear_pane=True, now=NOW
        )

        assert session is not None
        assert session.pane_id is None
        assert session.tmux_pane_pid is None

    @pytest.mark.asyncio
    async def test_no_change_reported(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        await repository.reindex_session(parse(write_transcript, "s-same"), NOW)
        await repository.update_live_state("s-same", Liveness.ALIVE, pane=PANE, now=NOW)

        _session, changed = await repository.update_live_state(
            "s-same", Liveness.ALIVE, pane=PANE, now=NOW
        )

        assert not changed


class TestQueries:
    """Tests for listing, events, stats and projects."""

    async def _seed(self, repository: SessionRepository, write_transcript: WriteTranscript) -> None:
        for session_id, age in (
            ("s-alive", timedelta(days=2)),
            ("s-recent", timedelta(hours=3)),
            ("s-stale", timedelta(days=3)),
        ):
            path = write_transcript(session_id, [user_record("add a feature", iso(NOW - age))])
            await repository.reindex_session(parse_session_file(path), NOW)
        await repository.update_live_state("s-alive", Liveness.ALIVE, pane=PANE, now=NOW)

    @pytest.mark.asyncio
    async def test_smart_default(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        await self._seed(repository, write_transcript)

        sessions = await repository.list_sessions(now=NOW)

        assert [s.session_id for s in sessions] == ["s-alive", "s-recent"]

    @pytest.mark.asyncio
    async def test_show_all_and_status(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        await self._seed(repository, write_transcript)

        everything = await repository.list_sessions(SessionFilters(show_all=True), NOW)
        completed = await repository.list_sessions(
            SessionFilters(status=SessionStatus.COMPLETED), NOW
        )
        page = await repository.list_sessions(SessionFilters(show_all=True, limit=1, offset=1))

        assert [s.session_id for s in everything] == ["s-recent", "s-alive", "s-stale"]
        assert [s.session_id for s in completed] == ["s-recent", "s-stale"]
        assert [s.session_id for s in page] == ["s-alive"]

    @pytest.mark.asyncio
    async def test_events_after_id(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        await repository.reindex_session(parse(write_transcript, "s-events"), NOW)
        events = await repository.get_session_events("s-events")

        later = await repository.get_session_events("s-events", after_id=events[2].id)

        assert [e.id for e in later] == [e.id for e in events[3:]]

    @pytest.mark.asyncio
    async def test_stats_and_projects(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        await self._seed(repository, write_transcript)
        other = write_transcript("s-other", scenario_records(), project_dir_name="-srv-api")
        await repository.reindex_session(parse_session_file(other), NOW)

        stats = await repository.get_stats(NOW)
        projects = await repository.get_distinct_projects()

        assert stats.total == 4
        assert stats.active == 1
        assert stats.completed == 3
        assert stats.indexed_today == 4
        assert [(p.project_path, p.project_name) for p in projects] == [
            ("/srv/api", "api"),
            ("/home/dev/shop", "shop"),
        ]


class TestSearch:
    """Tests for search_sessions."""

    @pytest.mark.asyncio
    async def test_full_text_match(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        await repository.reindex_session(parse(write_transcript, "s-fts"), NOW)

        results = await repository.search_sessions("rounding")

        assert [s.session_id for s in results] == ["s-fts"]

    @pytest.mark.asyncio
    async def test_syntax_error_falls_back_to_substring(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        older = write_transcript(
            "s-older",
            [
                user_record("touch it", "2026-01-14T09:00:00Z"),
                tool_use("Edit", {"file_path": "src/foo.ts"}, "t1", "2026-01-14T09:00:01Z"),
            ],
        )
        newer = write_transcript(
            "s-newer",
            [
                user_record("touch it again", "2026-01-15T09:00:00Z"),
                tool_use("Edit", {"file_path": "src/foo.ts"}, "t1", "2026-01-15T09:00:01Z"),
            ],
        )
        unrelated = write_transcript("s-none", [assistant_text("nothing here")])
        for path in (older, newer, unrelated):
            await repository.reindex_session(parse_session_file(path), NOW)

        results = await repository.search_sessions("src/foo.ts")

        assert [s.session_id for s in results] == ["s-newer", "s-older"]

    @pytest.mark.asyncio
    async def test_blank_query(self, repository: SessionRepository) -> None:
        assert await repository.search_sessions("   ") == []


class TestDeleteSession:
    """Tests for delete_session."""

    @pytest.mark.asyncio
    async def test_removes_everything(
        self, repository: SessionRepository, write_transcript: WriteTranscript
    ) -> None:
        await repository.reindex_session(parse(write_transcript, "s-del"), NOW)

        assert await repository.delete_session("s-del")

        assert await repository.get_session("s-del") is None
        assert await repository.get_session_events("s-del") == []
        assert await repository.search_sessions("rounding") == []
        assert not await repository.delete_session("s-del")
