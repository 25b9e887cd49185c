import asyncio
import math
import time
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from .insulator import ProcState, TimeoutSignal

T = TypeVar("T")


@contextmanager
def armed_timer(seconds: float, st: ProcState) -> Iterator[asyncio.TimerHandle]:
    """Send a timeout for the current location to the insulator unless released first."""
    assert st.insulator is not None and st.owner is not None
    handle = asyncio.get_running_loop().call_later(
        seconds, st.insulator.send, TimeoutSignal(st.owner, st.id)
    )
    try:
        yield handle
    finally:
        handle.cancel()


async def with_timeout(
    timeout: float | None,
    default: float,
    work: Callable[[], Awaitable[T]],
    st: ProcState,
) -> tuple[T, int]:
    """Run `work`, returning its value and the elapsed wall-clock milliseconds."""
    if timeout is None:
        timeout = default

    if math.isinf(timeout):
        # no timer needed
        start = time.monotonic()
        value = await work()
        return value, _elapsed_ms(start)

    with armed_timer(timeout, st):
        start = time.monotonic()
        value = await work()
        return value, _elapsed_ms(start)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
