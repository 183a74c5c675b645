"""Session status derivation.

Status is written by both the indexer and the pane mapper, always through the
functions in this module, so whichever writes last produces the same answer
for the same inputs.

    liveness   elapsed since last_activity    status
    --------   ---------------------------    ----------------
    alive      any                            active
    dead       > completed_after              completed
    dead       > idle_after                   idle
    dead       otherwise                      unchanged
    unknown    any                            unchanged

The indexer's own check (``status_for_index``) ignores liveness except that a
live agent keeps the session active; otherwise it is purely time based.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sessiondeck.config import get_settings
from sessiondeck.models.sessions import Liveness, SessionStatus


@dataclass(frozen=True)
class StatusThresholds:
    idle_after: timedelta = timedelta(minutes=5)
    completed_after: timedelta = timedelta(minutes=60)

    @classmethod
    def from_settings(cls) -> "StatusThresholds":
        settings = get_settings()
        return cls(
            idle_after=timedelta(minutes=settings.IDLE_AFTER_MINUTES),
            completed_after=timedelta(minutes=settings.COMPLETED_AFTER_MINUTES),
        )


DEFAULT_THRESHOLDS = StatusThresholds()


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _elapsed(last_activity: datetime, now: datetime | None) -> timedelta:
    current = as_utc(now) if now else datetime.now(UTC)
    return current - as_utc(last_activity)


def status_for_age(
    last_activity: datetime,
    now: datetime | None = None,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
) -> SessionStatus:
    """Purely time-based status."""
    elapsed = _elapsed(last_activity, now)
    if elapsed < thresholds.idle_after:
        return SessionStatus.ACTIVE
    if elapsed < thresholds.completed_after:
        return SessionStatus.IDLE
    return SessionStatus.COMPLETED


def derive_status(
    current: SessionStatus,
    liveness: Liveness,
    last_activity: datetime,
    now: datetime | None = None,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
) -> SessionStatus:
    """Status after the mapper sets ``liveness`` on a session."""
    if liveness is Liveness.ALIVE:
        return SessionStatus.ACTIVE
    if liveness is Liveness.UNKNOWN:
        return current

    elapsed = _elapsed(last_activity, now)
    if elapsed > thresholds.completed_after:
        return SessionStatus.COMPLETED
    if elapsed > thresholds.idle_after:
        return SessionStatus.IDLE
    return current


def status_for_index(
    liveness: Liveness,
    last_activity: datetime,
    now: datetime | None = None,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
) -> SessionStatus:
    """Status the indexer assigns when it (re)visits a transcript."""
    if liveness is Liveness.ALIVE:
        return SessionStatus.ACTIVE
    return status_for_age(last_activity, now, thresholds)
