from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_DATA_DIR = Path.home() / ".sessiondeck"
_DEFAULT_DB_PATH = _DATA_DIR / "sessions.db"


class Settings(BaseSettings):
    PROJECT_NAME: str = "sessiondeck"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"

    BACKEND_CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ]

    DATABASE_URL: str = f"sqlite+aiosqlite:///{_DEFAULT_DB_PATH}"

    # Claude Code writes one JSONL transcript per session under here
    PROJECTS_DIR: Path = Path.home() / ".claude" / "projects"
    WATCH_QUIET_PERIOD_MS: int = 2000
    EVENT_BATCH_SIZE: int = 100

    PANE_MAP_INTERVAL_SECONDS: float = 30.0
    PANE_CACHE_TTL_SECONDS: float = 10.0
    COMMAND_TIMEOUT_SECONDS: float = 5.0
    AGENT_PROCESS_NAME: str = "claude"
    DEFAULT_TMUX_SESSION: str = "claude"

    IDLE_AFTER_MINUTES: int = 5
    COMPLETED_AFTER_MINUTES: int = 60
    RECENT_DAYS: int = 1
    SEARCH_LIMIT: int = 50

    model_config = SettingsConfigDict(env_file=".env", env_prefix="SESSIONDECK_")

    def ensure_data_dir(self) -> None:
        """Create the parent directory of a file-backed SQLite database.

        In-memory URLs and non-SQLite URLs are left alone.
        """
        prefix = "sqlite+aiosqlite:///"
        if not self.DATABASE_URL.startswith(prefix):
            return
        db_path = self.DATABASE_URL[len(prefix) :]
        if not db_path or db_path == ":memory:":
            return
        Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    return Settings()
