from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class TmuxPane(BaseModel):
    """A live tmux pane and the process rooted in it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session: str
    window: int
    pane: int
    pid: int
    cwd: str | None = None

    @property
    def pane_id(self) -> str:
        return f"{self.session}:{self.window}.{self.pane}"

    @property
    def window_pane(self) -> str:
        """The ``<window>.<pane>`` part stored on the session record."""
        return f"{self.window}.{self.pane}"


class PaneSnapshot(BaseModel):
    """One pane as seen by a mapping cycle: the agent pid and its cwd, if any."""

    pane: TmuxPane
    agent_pid: int | None = None
    agent_cwd: str | None = None


class SpawnRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    project_path: str
    task: str | None = None
    resume: str | None = None
    tmux_session: str | None = None


class SpawnResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    error: str | None = None
    pane: TmuxPane | None = None


class PaneMapping(BaseModel):
    """A live pane and the session currently mapped to it, if any."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    pane_id: str
    pane: TmuxPane
    session_id: str | None = None


class SendKeysRequest(BaseModel):
    text: str
