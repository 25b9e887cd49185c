from typing import Any

from .item import Location


class Abort(Exception):
    """
    Expected, structural failure of a task.

    Raised to stop the task running the current part of the tree. The
    insulator reports it as a cancellation of `location` instead of an
    unexpected termination.
    """

    def __init__(self, reason: Any, location: Location | None = None):
        super().__init__(reason)
        self.reason: Any = reason
        self.location: Location | None = location


class TreeError(Exception):
    pass


class BadTest(TreeError):
    def __init__(self, descriptor: Any):
        super().__init__("bad test descriptor", descriptor)
        self.descriptor: Any = descriptor


class GeneratorFailed(TreeError):
    def __init__(self, exception: Exception):
        super().__init__("generator failed", exception)
        self.exception: Exception = exception


class ContextError(TreeError):
    message: str = "context failed"

    def __init__(self, exception: Exception):
        super().__init__(self.message, exception)
        self.exception: Exception = exception


class SetupFailed(ContextError):
    message = "setup failed"


class CleanupFailed(ContextError):
    message = "cleanup failed"


class InstantiationFailed(ContextError):
    message = "instantiation failed"


class LoadError(TreeError):
    pass


class ModuleNotFound(LoadError):
    def __init__(self, module: str):
        super().__init__("module not found", module)
        self.module: str = module


class FunctionNotFound(LoadError):
    def __init__(self, module: str, function: str, arity: int = 0):
        super().__init__("function not found", f"{module}:{function}/{arity}")
        self.module: str = module
        self.function: str = function
        self.arity: int = arity
