import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass, replace
from typing import Any, NoReturn
from uuid import UUID

from .errors import Abort
from .events import Aborted, Cancel, CancelReason, Event, Exited, StatusMessage, TimedOut
from .item import Location, Order
from .mailbox import Process
from .supervisor import Supervisor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcState:
    """
    Scheduling context of the process running part of a tree.

    `owner` is the process executing with this state, `insulator` the
    process supervising it and `parent` the process that started the
    task. States are never changed in place; descending into the tree
    makes a modified copy.
    """

    ref: UUID
    supervisor: Supervisor
    order: Order
    test_timeout: float
    group_timeout: float
    id: Location = ()
    owner: Process | None = None
    insulator: Process | None = None
    parent: Process | None = None


@dataclass(frozen=True)
class Progress:
    source: Process
    location: Location
    event: Event


@dataclass(frozen=True)
class AbortRequest:
    source: Process
    location: Location
    reason: Any


@dataclass(frozen=True)
class TimeoutSignal:
    source: Process
    location: Location


@dataclass(frozen=True)
class ChildExit:
    source: Process
    reason: BaseException | None


@dataclass(frozen=True)
class ParentExit:
    source: Process


@dataclass(frozen=True)
class Done:
    ref: UUID
    source: Process


Work = Callable[[ProcState], Coroutine[Any, Any, Any]]


# A task is an insulator process plus the child process doing the actual
# work. Whatever happens to the child, the insulator sends exactly one
# Done(ref, insulator) to the process that started the task.


def start_task(work: Work, st0: ProcState) -> Process:
    st = replace(st0, parent=st0.owner)
    insulator = Process(f"insulator{_label(st.id)}")
    return insulator.spawn(insulator_process(work, st, insulator))


async def insulator_process(work: Work, st0: ProcState, insulator: Process):
    st = replace(st0, insulator=insulator)
    parent = st.parent
    assert parent is not None, "task started without a parent process"
    child = Process(f"task{_label(st.id)}")

    def on_parent_exit(_: asyncio.Task[Any]):
        insulator.send(ParentExit(parent))

    def on_child_exit(task: asyncio.Task[Any]):
        insulator.send(ChildExit(child, _exit_reason(task)))

    parent.link(on_parent_exit)
    try:
        child.spawn(child_process(work, replace(st, owner=child)))
        child.link(on_child_exit)
        logger.debug("spawned %s under %s", child.name, insulator.name)
        await insulator_wait(child, parent, st)
    finally:
        child.kill()
        parent.unlink(on_parent_exit)
        parent.send(Done(st.ref, insulator))


# The child normally finishes without raising even when tests fail, since
# tests run inside a try-block. It can terminate abnormally through an
# abort (a malformed descriptor or a failing setup, cleanup, instantiation
# or generator), an internal error in the runner, or an exception escaping
# test code. Only the first is expected; the others are reported as
# unexpected termination. The insulator kills the child outright on a
# timeout or when the process that started the task goes away.


async def insulator_wait(child: Process, parent: Process, st: ProcState):
    assert st.insulator is not None
    while True:
        message = await st.insulator.mailbox.receive(
            lambda m: m.source is child or m.source is parent
        )
        match message:
            case Progress(location=location, event=event):
                status_message(location, event, st)
            case AbortRequest(location=location, reason=reason):
                logger.debug("%s aborted: %r", child.name, reason)
                exit_message(location, Aborted(reason), st)
                return
            case TimeoutSignal(location=location):
                logger.debug("%s timed out at %s", child.name, _label(location))
                exit_message(location, TimedOut(), st)
                child.kill()
                return
            case ChildExit(reason=None):
                return
            case ChildExit(reason=reason):
                logger.warning("%s terminated unexpectedly: %r", child.name, reason)
                exit_message(st.id, Exited(reason), st)
                return
            case ParentExit():
                logger.debug("parent of %s exited", child.name)
                child.kill()
                return


async def child_process(work: Work, st: ProcState):
    try:
        await work(st)
    except Abort as abort:
        location = abort.location if abort.location is not None else st.id
        abort_message(abort.reason, location, st)


def _exit_reason(task: asyncio.Task[Any]) -> BaseException | None:
    if task.cancelled():
        return asyncio.CancelledError()
    return task.exception()


def status_message(location: Location, event: Event, st: ProcState):
    st.supervisor.status(StatusMessage(location, event))


def exit_message(location: Location, reason: CancelReason, st: ProcState):
    # the most specific location goes first
    status_message(location, Cancel(reason), st)
    if location != st.id:
        status_message(st.id, Cancel(reason), st)


# The child sends everything through its insulator, so progress is
# sequenced with timeouts and exits.


def progress_message(event: Event, st: ProcState):
    assert st.insulator is not None and st.owner is not None
    st.insulator.send(Progress(st.owner, st.id, event))


def abort_message(reason: Any, location: Location, st: ProcState):
    assert st.insulator is not None and st.owner is not None
    st.insulator.send(AbortRequest(st.owner, location, reason))


def abort_task(reason: Any, location: Location | None = None) -> NoReturn:
    raise Abort(reason, location)


async def wait_for_done(owner: Process, ref: UUID, tasks: Iterable[Process]):
    """
    Block until every task in `tasks` has signalled completion to `owner`.

    Only Done messages for `ref` are taken from the mailbox. Once a task
    has signalled, its insulator has already reported any anomaly to the
    supervisor.
    """
    pending = set(tasks)
    while pending:
        done: Done = await owner.mailbox.receive(
            lambda m: isinstance(m, Done) and m.ref == ref
        )
        pending.discard(done.source)


async def wait_for_tasks(tasks: Iterable[Process], st: ProcState):
    assert st.owner is not None
    await wait_for_done(st.owner, st.ref, tasks)


async def wait_for_task(task: Process, st: ProcState):
    await wait_for_tasks([task], st)


def _label(location: Location) -> str:
    return "[" + ".".join(str(i) for i in location) + "]"
