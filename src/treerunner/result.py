from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto

from .events import Aborted, CancelReason, Exited, Failed, Ok, Outcome, Skipped, TimedOut
from .item import Location


class ResultStatus(Enum):
    PASS = auto()
    FAIL = auto()
    SKIP = auto()
    ERROR = auto()


@dataclass
class ItemResult:
    status: ResultStatus
    location: Location
    name: str
    duration: float
    timestamp: datetime
    summary: str | None

    @staticmethod
    def from_outcome(
        location: Location, name: str, outcome: Outcome, elapsed_ms: int
    ) -> "ItemResult":
        match outcome:
            case Ok():
                status, summary = ResultStatus.PASS, None
            case Failed(exception=exception):
                status, summary = ResultStatus.FAIL, _describe(exception)
            case Skipped(reason=reason):
                status, summary = ResultStatus.SKIP, _describe(reason)
            case Aborted(payload=payload):
                status = ResultStatus.ERROR
                summary = "aborted" if payload is None else f"aborted: {_describe(payload)}"
        return ItemResult(
            status, location, name, elapsed_ms / 1000, datetime.now(), summary
        )

    @staticmethod
    def from_cancel(
        location: Location, name: str, reason: CancelReason, duration: float
    ) -> "ItemResult":
        match reason:
            case Aborted(payload=payload):
                summary = "aborted" if payload is None else f"aborted: {_describe(payload)}"
            case TimedOut():
                summary = "timed out"
            case Exited(payload=payload):
                summary = f"terminated unexpectedly: {_describe(payload)}"
        return ItemResult(
            ResultStatus.ERROR, location, name, duration, datetime.now(), summary
        )


def _describe(value: object) -> str:
    if isinstance(value, BaseException):
        args = ", ".join(str(a) for a in value.args)
        return f"{type(value).__name__}({args})"
    return repr(value)


def format_location(location: Location) -> str:
    return ".".join(str(i) for i in location) or "root"
