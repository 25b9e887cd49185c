from .errors import (
    Abort,
    BadTest,
    CleanupFailed,
    FunctionNotFound,
    GeneratorFailed,
    InstantiationFailed,
    ModuleNotFound,
    SetupFailed,
)
from .events import (
    Aborted,
    Begin,
    Cancel,
    End,
    Exited,
    Failed,
    Ok,
    Skipped,
    StatusMessage,
    TimedOut,
)
from .item import Context, FunctionRef, Generator, Group, Order, Test
from .scheduler import run, start
from .supervisor import Recorder, Supervisor

__all__ = [
    "start",
    "run",
    "Test",
    "Group",
    "Context",
    "FunctionRef",
    "Generator",
    "Order",
    "Supervisor",
    "Recorder",
    "StatusMessage",
    "Begin",
    "End",
    "Cancel",
    "Ok",
    "Failed",
    "Skipped",
    "Aborted",
    "TimedOut",
    "Exited",
    "Abort",
    "BadTest",
    "GeneratorFailed",
    "SetupFailed",
    "CleanupFailed",
    "InstantiationFailed",
    "ModuleNotFound",
    "FunctionNotFound",
]
