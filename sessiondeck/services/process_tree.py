"""Find the agent process running under a pane and its working directory."""

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Protocol

from sessiondeck.config import get_settings

logger = logging.getLogger(__name__)


class ProcessInspector(Protocol):
    """OS process queries the pane mapper depends on."""

    def resolve_agent_process(self, root_pid: int) -> int | None: ...

    def resolve_cwd(self, pid: int) -> str | None: ...


def _parse_pids(output: str) -> list[int]:
    pids: list[int] = []
    for line in output.split():
        try:
            pids.append(int(line))
        except ValueError:
            continue
    return pids


class PgrepProcessInspector:
    """Process queries via ``pgrep``, ``/proc`` and ``lsof``.

    An agent counts as running in a pane when a direct child of the pane's
    root process, or failing that a grandchild, has the agent name in its
    command line. Shells and wrapper scripts commonly sit in between.
    """

    def __init__(
        self,
        agent_name: str | None = None,
        timeout: float | None = None,
        proc_root: Path = Path("/proc"),
    ) -> None:
        settings = get_settings()
        self._agent_name = agent_name or settings.AGENT_PROCESS_NAME
        self._timeout = timeout or settings.COMMAND_TIMEOUT_SECONDS
        self._proc_root = proc_root

    def _run(self, args: list[str]) -> str:
        """Run a command and return stdout; empty on failure or no match."""
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"{args[0]} failed: {e}")
            return ""
        # pgrep exits 1 when nothing matched
        if result.returncode != 0:
            return ""
        return result.stdout

    def _children(self, pid: int, pattern: str | None = None) -> list[int]:
        args = ["pgrep", "-P", str(pid)]
        if pattern:
            args += ["-f", pattern]
        return _parse_pids(self._run(args))

    def resolve_agent_process(self, root_pid: int) -> int | None:
        matches = self._children(root_pid, self._agent_name)
        if matches:
            return matches[0]

        for child in self._children(root_pid):
            grandchildren = self._children(child, self._agent_name)
            if grandchildren:
                return grandchildren[0]
        return None

    def resolve_cwd(self, pid: int) -> str | None:
        if sys.platform.startswith("linux"):
            try:
                return os.readlink(self._proc_root / str(pid) / "cwd")
            except OSError as e:
                logger.debug(f"Cannot read cwd of {pid}: {e}")
                return None
        return self._lsof_cwd(pid)

    def _lsof_cwd(self, pid: int) -> str | None:
        output = self._run(["lsof", "-a", "-p", str(pid), "-d", "cwd", "-Fn"])
        for line in output.splitlines():
            if line.startswith("n") and len(line) > 1:
                return line[1:]
        return None
