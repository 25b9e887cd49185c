import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import replace
from functools import partial
from typing import Any, TypeVar, assert_never
from uuid import UUID

from .data import TreeIterator, enter_context, iter_init
from .errors import ContextError, LoadError
from .events import Begin, End, Failed, Ok, Outcome, Skipped
from .insulator import (
    ProcState,
    abort_task,
    progress_message,
    start_task,
    wait_for_done,
    wait_for_task,
    wait_for_tasks,
)
from .item import (
    DEFAULT_GROUP_TIMEOUT,
    DEFAULT_TEST_TIMEOUT,
    Group,
    Item,
    Location,
    Order,
    Test,
)
from .mailbox import Process
from .runner import Failure, Success, run_testfun
from .supervisor import Supervisor
from .timeout import with_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


def start(
    tests: Any,
    reference: UUID,
    supervisor: Supervisor,
    order: Order,
    *,
    test_timeout: float = DEFAULT_TEST_TIMEOUT,
    group_timeout: float = DEFAULT_GROUP_TIMEOUT,
    parent: Process | None = None,
) -> Process:
    """
    Start running `tests` in a new task and return the task's insulator.

    The task sends Done(reference, insulator) to `parent` (by default the
    calling task) when it is finished, whatever the cause. Must be called
    with a running event loop.
    """
    st = ProcState(
        ref=reference,
        supervisor=supervisor,
        order=order,
        test_timeout=test_timeout,
        group_timeout=group_timeout,
        owner=parent if parent is not None else Process.current(),
    )
    return start_task(partial(run_tests, tests), st)


async def run(
    tests: Any,
    supervisor: Supervisor,
    order: Order = Order.SEQUENTIAL,
    *,
    test_timeout: float = DEFAULT_TEST_TIMEOUT,
    group_timeout: float = DEFAULT_GROUP_TIMEOUT,
):
    """Run `tests` to completion, reporting to `supervisor`."""
    reference = uuid.uuid4()
    parent = Process.current()
    task = start(
        tests,
        reference,
        supervisor,
        order,
        test_timeout=test_timeout,
        group_timeout=group_timeout,
        parent=parent,
    )
    logger.debug("started run %s", reference)
    await wait_for_done(parent, reference, [task])


async def run_tests(tests: Any, st: ProcState, generate: bool = False):
    iterator = iter_init(tests, st.id, generate)
    match st.order:
        case Order.SEQUENTIAL:
            await tests_inorder(iterator, st)
        case Order.CONCURRENT:
            await tests_inparallel(iterator, st)


def get_next_item(iterator: TreeIterator) -> tuple[Location, Item] | None:
    return iterator.next(partial(abort_task, location=iterator.base))


async def tests_inorder(iterator: TreeIterator, st: ProcState):
    while (entry := get_next_item(iterator)) is not None:
        location, item = entry
        await handle_item(item, replace(st, id=location))


async def tests_inparallel(iterator: TreeIterator, st: ProcState):
    children: set[Process] = set()
    while (entry := get_next_item(iterator)) is not None:
        location, item = entry
        children.add(spawn_item(item, replace(st, id=location)))
    await wait_for_tasks(children, st)


def spawn_item(item: Item, st: ProcState) -> Process:
    return start_task(partial(handle_item, item), st)


async def handle_item(item: Item, st: ProcState):
    match item:
        case Test():
            await handle_test(item, st)
        case Group():
            await handle_group(item, st)
        case _:
            assert_never(item)


async def handle_test(test: Test, st: ProcState):
    progress_message(Begin("test", test.description), st)
    outcome, elapsed_ms = await with_timeout(
        test.timeout, st.test_timeout, partial(run_test, test), st
    )
    progress_message(End(elapsed_ms, outcome), st)


async def run_test(test: Test) -> Outcome:
    try:
        result = await run_testfun(test.body)
    except LoadError as reason:
        return Skipped(reason)

    match result:
        case Success():
            # the return value is thrown away
            return Ok()
        case Failure(exception=exception):
            return Failed(exception)


def set_group_order(group: Group, st: ProcState) -> ProcState:
    if group.order is None:
        return st
    return replace(st, order=group.order)


async def handle_group(group: Group, st0: ProcState):
    st = set_group_order(group, st0)
    if group.spawn:
        child = spawn_group(group, st)
        await wait_for_task(child, st)
    else:
        await subtests(group, partial(run_group, group, st=st), st)


def spawn_group(group: Group, st0: ProcState) -> Process:
    async def work(st: ProcState):
        await subtests(group, partial(run_group, group, st=st), st)

    return start_task(work, st0)


async def run_group(group: Group, tests: Any, st: ProcState):
    progress_message(Begin("group", group.description), st)
    # without a context a callable `tests` generates the children
    generate = group.context is None
    _, elapsed_ms = await with_timeout(
        group.timeout, st.group_timeout, partial(run_tests, tests, st, generate), st
    )
    progress_message(End(elapsed_ms), st)


async def subtests(
    group: Group, continuation: Callable[[Any], Awaitable[T]], st: ProcState
) -> T:
    if group.context is None:
        return await continuation(group.tests)

    try:
        return await enter_context(group.context, group.tests, continuation)
    except ContextError as reason:
        abort_task(reason, st.id)
