import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

Location = tuple[int, ...]
"""position of an item in the tree, children extend their parent by one index"""

DEFAULT_TEST_TIMEOUT: float = 5.0
DEFAULT_GROUP_TIMEOUT: float = math.inf


class Order(Enum):
    SEQUENTIAL = auto()
    CONCURRENT = auto()


def _check_timeout(timeout: float | None):
    if timeout is not None and not timeout >= 0:
        raise ValueError("timeout must be >= 0", timeout)


@dataclass(frozen=True)
class FunctionRef:
    """A test function named by module and attribute, resolved when it runs."""

    module: str
    function: str

    @staticmethod
    def parse(ref: str) -> "FunctionRef":
        module, sep, function = ref.partition(":")
        if not sep or not module or not function:
            raise ValueError("expected a reference of the form module:function", ref)
        return FunctionRef(module, function)

    def __str__(self):
        return f"{self.module}:{self.function}"


@dataclass(frozen=True)
class Generator:
    """Produces a test descriptor lazily, when the iterator reaches it."""

    function: Callable[[], Any] | FunctionRef


@dataclass
class Test:
    __test__ = False

    body: Callable[[], Any] | FunctionRef
    timeout: float | None = None
    name: str | None = None

    def __post_init__(self):
        _check_timeout(self.timeout)

    @property
    def description(self) -> str:
        if self.name is not None:
            return self.name
        match self.body:
            case FunctionRef():
                return str(self.body)
            case _:
                return getattr(self.body, "__qualname__", repr(self.body))


@dataclass
class Context:
    """
    Setup and cleanup wrapped around a group's children.

    The value returned by setup is handed to the group's instantiator and
    then to cleanup, once the children have finished.
    """

    setup: Callable[[], Any]
    cleanup: Callable[[Any], Any] | None = None


@dataclass
class Group:
    __test__ = False

    tests: Iterable[Any] | Callable[[Any], Any]
    order: Order | None = None
    timeout: float | None = None
    spawn: bool = False
    context: Context | None = None
    name: str | None = None

    def __post_init__(self):
        _check_timeout(self.timeout)

    @property
    def description(self) -> str | None:
        return self.name


Item = Test | Group
