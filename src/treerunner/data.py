import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator
from typing import Any, NoReturn, TypeVar

from .errors import (
    BadTest,
    CleanupFailed,
    GeneratorFailed,
    InstantiationFailed,
    LoadError,
    SetupFailed,
)
from .item import Context, FunctionRef, Generator, Group, Item, Location, Test
from .runner import invoke, resolve

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnAbort = Callable[[Any], NoReturn]


class TreeIterator:
    """
    Walks the direct children of a test descriptor.

    Children are pulled lazily from the underlying iterable and normalised
    into items as they are reached, so a malformed descriptor is only
    reported once the iteration gets to it.
    """

    def __init__(self, tests: Any, base: Location, generate: bool = False):
        self.base: Location = base
        self._tests: Any = tests
        self._expand: bool = generate
        self._children: Iterator[Any] | None = None
        self._index: int = 0

    def next(self, on_abort: OnAbort) -> tuple[Location, Item] | None:
        if self._children is None:
            self._children = _children(self._tests, on_abort, self._expand)

        try:
            descriptor = next(self._children)
        except StopIteration:
            return None
        except Exception as e:
            on_abort(GeneratorFailed(e))

        self._index += 1
        return self.base + (self._index,), normalize(descriptor, on_abort)


def iter_init(tests: Any, base: Location, generate: bool = False) -> TreeIterator:
    return TreeIterator(tests, base, generate)


def _children(tests: Any, on_abort: OnAbort, generate: bool = False) -> Iterator[Any]:
    # with `generate`, a bare callable produces the children instead of
    # being the only child
    match tests:
        case Test() | Group() | Generator() | FunctionRef() | str():
            return iter([tests])
        case list() | tuple():
            return iter(tests)
        case Iterable():
            return iter(tests)
        case _ if callable(tests) and generate:
            return _children(_generate(tests, on_abort), on_abort)
        case _ if callable(tests):
            return iter([tests])
        case _:
            on_abort(BadTest(tests))


def normalize(descriptor: Any, on_abort: OnAbort) -> Item:
    match descriptor:
        case Test() | Group():
            return descriptor
        case Generator(function=function):
            return normalize(_generate(function, on_abort), on_abort)
        case FunctionRef():
            return Test(descriptor)
        case str():
            try:
                return Test(FunctionRef.parse(descriptor))
            except ValueError:
                on_abort(BadTest(descriptor))
        case list() | tuple():
            return Group(descriptor)
        case _ if callable(descriptor):
            return Test(descriptor)
        case _:
            on_abort(BadTest(descriptor))


def _generate(function: Callable[[], Any] | FunctionRef, on_abort: OnAbort) -> Any:
    if isinstance(function, FunctionRef):
        try:
            function = resolve(function)
        except LoadError as e:
            on_abort(e)

    try:
        return function()
    except Exception as e:
        logger.debug("generator %r failed", function, exc_info=True)
        on_abort(GeneratorFailed(e))


async def enter_context(
    context: Context,
    instantiate: Callable[[Any], Any] | Any,
    continuation: Callable[[Any], Awaitable[T]],
) -> T:
    """
    Run setup, build the children from its result, run them through
    `continuation` and finally run cleanup.

    Raises SetupFailed, InstantiationFailed or CleanupFailed when the
    corresponding stage raises.
    """
    try:
        fixture = await invoke(context.setup)
    except Exception as e:
        raise SetupFailed(e) from e

    unwinding = True
    try:
        try:
            tests = instantiate(fixture) if callable(instantiate) else instantiate
        except Exception as e:
            raise InstantiationFailed(e) from e
        result = await continuation(tests)
        unwinding = False
        return result
    finally:
        if context.cleanup is not None:
            try:
                _ = await invoke(context.cleanup, fixture)
            except Exception as e:
                # an exception already on its way out takes precedence
                if not unwinding:
                    raise CleanupFailed(e) from e
                logger.warning("cleanup failed while unwinding: %r", e)
