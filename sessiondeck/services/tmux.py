"""tmux pane enumeration and pane actions."""

import logging
import shlex
import shutil
import subprocess
from typing import Protocol

from sessiondeck.config import get_settings
from sessiondeck.models.panes import SpawnResult, TmuxPane

logger = logging.getLogger(__name__)

PANE_FORMAT = "\t".join(
    [
        "#{session_name}",
        "#{window_index}",
        "#{pane_index}",
        "#{pane_pid}",
        "#{pane_current_path}",
    ]
)


class PaneSource(Protocol):
    """Anything that can list the live panes of a terminal multiplexer."""

    def list_panes(self) -> list[TmuxPane]: ...


class TmuxCommandError(RuntimeError):
    """A tmux command exited non-zero or could not be run."""


def parse_pane_line(line: str) -> TmuxPane | None:
    """Parse one ``list-panes`` line in ``PANE_FORMAT``."""
    parts = line.split("\t", 4)
    if len(parts) < 4:
        return None
    session, window, pane, pid = parts[:4]
    cwd = parts[4].strip() if len(parts) == 5 else ""
    try:
        return TmuxPane(
            session=session,
            window=int(window),
            pane=int(pane),
            pid=int(pid),
            cwd=cwd or None,
        )
    except ValueError:
        return None


class TmuxClient:
    """Runs tmux commands with a per-call timeout.

    Every method is blocking; async callers run them in an executor.
    """

    def __init__(self, binary: str = "tmux", timeout: float | None = None) -> None:
        self._binary = binary
        self._timeout = timeout or get_settings().COMMAND_TIMEOUT_SECONDS

    def _run(self, args: list[str]) -> str:
        """Run a tmux command and return stdout.

        Raises:
            TmuxCommandError: If tmux is missing, times out or exits non-zero.
        """
        try:
            result = subprocess.run(
                [self._binary, *args],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            raise TmuxCommandError(f"tmux {args[0]} failed: {e}") from e
        if result.returncode != 0:
            raise TmuxCommandError(
                f"tmux {args[0]} exited {result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout

    def is_available(self) -> bool:
        """Whether the tmux binary is on PATH."""
        return shutil.which(self._binary) is not None

    def list_panes(self) -> list[TmuxPane]:
        """All panes of all tmux sessions; empty when tmux is absent or not running."""
        try:
            output = self._run(["list-panes", "-a", "-F", PANE_FORMAT])
        except TmuxCommandError as e:
            logger.debug(f"No tmux panes: {e}")
            return []

        panes: list[TmuxPane] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            pane = parse_pane_line(line)
            if pane is None:
                logger.debug(f"Skipping unparseable tmux pane line: {line!r}")
                continue
            panes.append(pane)
        return panes

    def has_session(self, name: str) -> bool:
        try:
            self._run(["has-session", "-t", name])
        except TmuxCommandError:
            return False
        return True

    def focus_pane(self, pane: TmuxPane) -> bool:
        try:
            self._run(["select-window", "-t", f"{pane.session}:{pane.window}"])
            self._run(["select-pane", "-t", pane.pane_id])
        except TmuxCommandError as e:
            logger.warning(f"Failed to focus pane {pane.pane_id}: {e}")
            return False
        return True

    def send_to_pane(self, pane: TmuxPane, text: str) -> bool:
        """Type ``text`` into a pane and press Enter."""
        try:
            self._run(["send-keys", "-t", pane.pane_id, "-l", text])
            self._run(["send-keys", "-t", pane.pane_id, "Enter"])
        except TmuxCommandError as e:
            logger.warning(f"Failed to send to pane {pane.pane_id}: {e}")
            return False
        return True

    def spawn_agent_session(
        self,
        project_path: str,
        task: str | None = None,
        resume: str | None = None,
        tmux_session: str | None = None,
        agent_command: str | None = None,
    ) -> SpawnResult:
        """Open a new tmux window in ``project_path`` and start the agent in it.

        The tmux session is created first if it does not exist yet.
        """
        settings = get_settings()
        session_name = tmux_session or settings.DEFAULT_TMUX_SESSION
        argv = [agent_command or settings.AGENT_PROCESS_NAME]
        if resume:
            argv += ["--resume", resume]
        if task:
            argv.append(task)

        try:
            if not self.has_session(session_name):
                self._run(["new-session", "-d", "-s", session_name, "-c", project_path])
            window = self._run(
                [
                    "new-window",
                    "-t",
                    session_name,
                    "-c",
                    project_path,
                    "-P",
                    "-F",
                    "#{window_index}\t#{pane_index}\t#{pane_pid}",
                ]
            ).strip()
            window_index, pane_index, pane_pid = window.split("\t")
            pane = TmuxPane(
                session=session_name,
                window=int(window_index),
                pane=int(pane_index),
                pid=int(pane_pid),
                cwd=project_path,
            )
        except (TmuxCommandError, ValueError) as e:
            logger.error(f"Failed to spawn agent session in {project_path}: {e}")
            return SpawnResult(success=False, error=str(e))

        if not self.send_to_pane(pane, shlex.join(argv)):
            return SpawnResult(success=False, error="failed to start agent", pane=pane)

        logger.info(f"Spawned agent in {pane.pane_id} ({project_path})")
        return SpawnResult(success=True, pane=pane)
