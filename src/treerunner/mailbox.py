import asyncio
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from typing import Any, Generic, Self, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Mailbox(Generic[T]):
    """
    Messages delivered to one process.

    `receive` takes the oldest message accepted by a predicate and leaves
    all other messages where they are, in arrival order.
    """

    def __init__(self):
        self._messages: deque[T] = deque()
        self._arrived: asyncio.Event = asyncio.Event()

    def put(self, message: T):
        self._messages.append(message)
        self._arrived.set()

    async def receive(self, match: Callable[[T], bool]) -> T:
        while True:
            for i, message in enumerate(self._messages):
                if match(message):
                    del self._messages[i]
                    return message
            self._arrived.clear()
            _ = await self._arrived.wait()

    def __len__(self) -> int:
        return len(self._messages)


class Process:
    """An asyncio task together with the mailbox used to reach it."""

    # entries are dropped when their task finishes
    _registry: "dict[asyncio.Task[Any], Process]" = {}

    def __init__(self, name: str, task: asyncio.Task[Any] | None = None):
        self.name: str = name
        self.task: asyncio.Task[Any] | None = task
        self.mailbox: Mailbox[Any] = Mailbox()

    @staticmethod
    def current() -> "Process":
        """Return the process of the running task, the same one on every call."""
        task = asyncio.current_task()
        if task is None:
            return Process("main")
        process = Process._registry.get(task)
        if process is None:
            process = Process(task.get_name(), task)
            process._register()
        return process

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> Self:
        self.task = asyncio.create_task(coro, name=self.name)
        self._register()
        return self

    def _register(self):
        assert self.task is not None
        Process._registry[self.task] = self
        self.task.add_done_callback(Process._forget)

    @staticmethod
    def _forget(task: asyncio.Task[Any]):
        _ = Process._registry.pop(task, None)

    def send(self, message: Any):
        self.mailbox.put(message)

    def kill(self):
        if self.task is not None and not self.task.done():
            logger.debug("killing %s", self.name)
            _ = self.task.cancel()

    def link(self, callback: Callable[[asyncio.Task[Any]], None]):
        if self.task is not None:
            self.task.add_done_callback(callback)

    def unlink(self, callback: Callable[[asyncio.Task[Any]], None]):
        if self.task is not None:
            _ = self.task.remove_done_callback(callback)

    @property
    def alive(self) -> bool:
        return self.task is not None and not self.task.done()

    def __repr__(self):
        return f"<Process {self.name}>"
