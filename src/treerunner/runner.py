import asyncio
import importlib
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import FunctionNotFound, LoadError, ModuleNotFound
from .item import FunctionRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    value: Any


@dataclass(frozen=True)
class Failure:
    exception: BaseException


async def invoke(function: Callable[..., Any], *args: Any) -> Any:
    """
    Call a test function from the event loop.

    Coroutine functions are awaited in the calling task. Plain functions run
    in a worker thread so that timers keep firing while they block; an
    awaitable they return is awaited as well.
    """
    if inspect.iscoroutinefunction(function):
        return await function(*args)

    result = await asyncio.to_thread(function, *args)
    if inspect.isawaitable(result):
        return await result
    return result


def resolve(ref: FunctionRef) -> Callable[..., Any]:
    try:
        module = importlib.import_module(ref.module)
    except ModuleNotFoundError as e:
        # only the referenced module itself counts as missing
        if e.name is not None and (
            ref.module == e.name or ref.module.startswith(e.name + ".")
        ):
            raise ModuleNotFound(ref.module) from e
        raise

    target: Any = module
    try:
        for attr in ref.function.split("."):
            target = getattr(target, attr)
    except AttributeError as e:
        raise FunctionNotFound(ref.module, ref.function) from e
    return target


async def run_testfun(body: Callable[[], Any] | FunctionRef) -> Success | Failure:
    """
    Run a test body, capturing any exception it raises.

    Raises ModuleNotFound or FunctionNotFound when `body` references a
    module or function that does not exist.
    """
    if isinstance(body, FunctionRef):
        try:
            body = resolve(body)
        except LoadError:
            raise
        except Exception as e:
            return Failure(e)

    try:
        return Success(await invoke(body))
    except asyncio.CancelledError:
        raise
    except BaseException as e:
        # SystemExit and KeyboardInterrupt from a body are failures too
        logger.debug("test body raised %r", e)
        return Failure(e)
