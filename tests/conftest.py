"""Pytest fixtures for sessiondeck tests."""

import json
import tempfile
from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from builders import PROJECT_DIR_NAME, WriteTranscript
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from sessiondeck.db.database import create_engine, init_db
from sessiondeck.db.repository import SessionRepository


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def projects_dir(temp_dir: Path) -> Path:
    """An empty ``~/.claude/projects`` lookalike."""
    path = temp_dir / "projects"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def engine(temp_dir: Path) -> AsyncIterator[AsyncEngine]:
    """A file-backed SQLite database per test, with tables and the FTS index."""
    test_engine = create_engine(f"sqlite+aiosqlite:///{temp_dir / 'sessions.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def repository(session_factory: async_sessionmaker[AsyncSession]) -> SessionRepository:
    return SessionRepository(session_factory)


@pytest.fixture
def write_transcript(projects_dir: Path) -> WriteTranscript:
    """Write records as ``<projects_dir>/<project>/<session_id>.jsonl``."""

    def _write(
        session_id: str,
        records: list[dict[str, Any]],
        project_dir_name: str = PROJECT_DIR_NAME,
    ) -> Path:
        project_dir = projects_dir / project_dir_name
        project_dir.mkdir(exist_ok=True)
        path = project_dir / f"{session_id}.jsonl"
        path.write_text(
            "".join(json.dumps(record) + "\n" for record in records), encoding="utf-8"
        )
        return path

    return _write


@pytest.fixture
def sample_jsonl_file(temp_dir: Path) -> Path:
    """A small transcript outside any projects directory."""
    lines = [
        '{"type": "user", "message": {"role": "user", "content": "Hello"}}',
        '{"type": "assistant", "message": {"role": "assistant", '
        '"content": [{"type": "text", "text": "First response"}]}}',
        "{not valid json}",
        "[1, 2, 3]",
        "",
        '{"type": "assistant", "message": {"role": "assistant", '
        '"content": [{"type": "tool_use", "name": "Read"}]}}',
    ]
    jsonl_path = temp_dir / "test_transcript.jsonl"
    jsonl_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return jsonl_path
