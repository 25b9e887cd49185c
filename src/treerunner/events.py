from dataclasses import dataclass
from typing import Any, Literal

from .errors import LoadError
from .item import Location


@dataclass(frozen=True)
class Ok:
    pass


@dataclass(frozen=True)
class Failed:
    exception: BaseException


@dataclass(frozen=True)
class Skipped:
    reason: LoadError


@dataclass(frozen=True)
class Aborted:
    payload: Any = None


@dataclass(frozen=True)
class TimedOut:
    pass


@dataclass(frozen=True)
class Exited:
    payload: BaseException


Outcome = Ok | Failed | Skipped | Aborted
CancelReason = Aborted | TimedOut | Exited


@dataclass(frozen=True)
class Begin:
    kind: Literal["test", "group"]
    description: str | None = None


@dataclass(frozen=True)
class End:
    elapsed_ms: int
    outcome: Outcome | None = None


@dataclass(frozen=True)
class Cancel:
    reason: CancelReason


Event = Begin | End | Cancel


@dataclass(frozen=True)
class StatusMessage:
    location: Location
    event: Event
