import asyncio
import importlib
import math
import sys
import time
import uuid

import pytest

from treerunner.errors import (
    BadTest,
    CleanupFailed,
    FunctionNotFound,
    GeneratorFailed,
    InstantiationFailed,
    ModuleNotFound,
    SetupFailed,
)
from treerunner.events import (
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
from treerunner.insulator import wait_for_done
from treerunner.item import Context, FunctionRef, Generator, Group, Order, Test
from treerunner.mailbox import Process
from treerunner.scheduler import run, start
from treerunner.supervisor import Recorder


def sleeper(seconds: float, log: list[str] | None = None, name: str = ""):
    async def body():
        await asyncio.sleep(seconds)
        if log is not None:
            log.append(name)

    return body


def ends(recorder: Recorder) -> list[StatusMessage]:
    return [m for m in recorder.messages if isinstance(m.event, End)]


def leftover_tasks() -> list[asyncio.Task[object]]:
    current = asyncio.current_task()
    return [t for t in asyncio.all_tasks() if t is not current and not t.done()]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


def test_sequential_tests_finish_in_order(recorder: Recorder):
    tests = [Test(sleeper(0.05)), Test(sleeper(0.01)), Test(sleeper(0))]

    asyncio.run(run(tests, recorder, Order.SEQUENTIAL))

    assert [m.location for m in ends(recorder)] == [(1,), (2,), (3,)]


def test_sequential_test_starts_after_predecessor_ends(recorder: Recorder):
    tests = [Test(sleeper(0.02)), Group([Test(sleeper(0.02))]), Test(sleeper(0))]

    asyncio.run(run(tests, recorder, Order.SEQUENTIAL))

    sequence = [(type(m.event).__name__, m.location) for m in recorder.messages]
    assert sequence == [
        ("Begin", (1,)),
        ("End", (1,)),
        ("Begin", (2,)),
        ("Begin", (2, 1)),
        ("End", (2, 1)),
        ("End", (2,)),
        ("Begin", (3,)),
        ("End", (3,)),
    ]


def test_concurrent_group_ends_after_all_children(recorder: Recorder):
    group = Group(
        [Test(sleeper(0.2)), Test(sleeper(0.2)), Test(sleeper(0.2))],
        order=Order.CONCURRENT,
    )

    start_time = time.monotonic()
    asyncio.run(run(group, recorder, Order.SEQUENTIAL))
    elapsed = time.monotonic() - start_time

    locations = [m.location for m in ends(recorder)]
    assert sorted(locations[:3]) == [(1, 1), (1, 2), (1, 3)]
    assert locations[3] == (1,)
    assert elapsed < 0.5


def test_concurrent_completion_order_unconstrained(recorder: Recorder):
    log: list[str] = []
    tests = [
        Test(sleeper(0.15, log, "a")),
        Test(sleeper(0.1, log, "b")),
        Test(sleeper(0.05, log, "c")),
    ]

    asyncio.run(run(tests, recorder, Order.CONCURRENT))

    assert log == ["c", "b", "a"]
    assert [m.location for m in ends(recorder)] == [(3,), (2,), (1,)]


def test_group_order_overrides_and_is_inherited(recorder: Recorder):
    log: list[str] = []
    tree = Group(
        [
            Group([Test(sleeper(0.1, log, "slow")), Test(sleeper(0.02, log, "fast"))]),
            Group(
                [Test(sleeper(0.1, log, "first")), Test(sleeper(0.02, log, "second"))],
                order=Order.SEQUENTIAL,
            ),
        ],
        order=Order.CONCURRENT,
    )

    asyncio.run(run(tree, recorder, Order.SEQUENTIAL))

    assert log.index("fast") < log.index("slow")
    assert log.index("first") < log.index("second")


def test_passing_and_failing_tests(recorder: Recorder):
    error = ValueError("wrong answer")

    def failing():
        raise error

    tests = [Test(lambda: None), Test(failing), Test(lambda: 42)]

    asyncio.run(run(tests, recorder))

    outcomes = [m.event.outcome for m in ends(recorder)]  # pyright: ignore[reportAttributeAccessIssue]
    assert outcomes == [Ok(), Failed(error), Ok()]


def test_missing_function_skipped(recorder: Recorder):
    asyncio.run(run([Test(FunctionRef("math", "no_such_function"))], recorder))

    [end] = ends(recorder)
    assert isinstance(end.event, End)
    match end.event.outcome:
        case Skipped(reason=FunctionNotFound() as reason):
            assert reason.module == "math"
            assert reason.function == "no_such_function"
        case outcome:
            pytest.fail(f"expected function not found, got {outcome}")


def test_missing_module_skipped(recorder: Recorder):
    asyncio.run(run(["treerunner_no_such_module:test"], recorder))

    [end] = ends(recorder)
    assert isinstance(end.event, End)
    match end.event.outcome:
        case Skipped(reason=ModuleNotFound() as reason):
            assert reason.module == "treerunner_no_such_module"
        case outcome:
            pytest.fail(f"expected module not found, got {outcome}")


def test_import_error_inside_body_is_failure(recorder: Recorder):
    def body():
        _ = importlib.import_module("treerunner_no_such_module")

    asyncio.run(run([Test(body)], recorder))

    [end] = ends(recorder)
    assert isinstance(end.event, End)
    assert isinstance(end.event.outcome, Failed)
    assert isinstance(end.event.outcome.exception, ModuleNotFoundError)


def test_group_timeout_cancels_group(recorder: Recorder):
    async def main():
        group = Group([Test(sleeper(10), timeout=math.inf)], timeout=0.2)
        start_time = time.monotonic()
        await run(group, recorder)
        elapsed = time.monotonic() - start_time

        await asyncio.sleep(0.05)
        assert leftover_tasks() == []
        return elapsed

    elapsed = asyncio.run(main())

    assert 0.2 <= elapsed < 1.0
    cancels = [m for m in recorder.messages if isinstance(m.event, Cancel)]
    assert cancels == [
        StatusMessage((1,), Cancel(TimedOut())),
        StatusMessage((), Cancel(TimedOut())),
    ]


def test_spawned_group_isolates_timeout(recorder: Recorder):
    tests = [
        Group([Test(sleeper(10), timeout=0.05)], spawn=True),
        Test(lambda: None),
    ]

    asyncio.run(run(tests, recorder))

    assert StatusMessage((1, 1), Cancel(TimedOut())) in recorder.messages
    assert StatusMessage((1,), Cancel(TimedOut())) in recorder.messages
    [end] = [m for m in ends(recorder) if m.location == (2,)]
    assert isinstance(end.event, End) and end.event.outcome == Ok()


def test_concurrent_timeout_spares_siblings(recorder: Recorder):
    tests = [
        Test(sleeper(10), timeout=0.05),
        Test(sleeper(0.1)),
        Test(lambda: None),
    ]

    asyncio.run(run(tests, recorder, Order.CONCURRENT))

    cancels = [m for m in recorder.messages if isinstance(m.event, Cancel)]
    assert cancels == [StatusMessage((1,), Cancel(TimedOut()))]
    assert sorted(m.location for m in ends(recorder)) == [(2,), (3,)]


def test_default_test_timeout_applies(recorder: Recorder):
    asyncio.run(run([Test(sleeper(10))], recorder, test_timeout=0.05))

    assert StatusMessage((1,), Cancel(TimedOut())) in recorder.messages


def test_bad_descriptor_aborts(recorder: Recorder):
    asyncio.run(run([Test(lambda: None), 42], recorder))

    [end] = ends(recorder)
    assert end.location == (1,)
    [cancel] = [m for m in recorder.messages if isinstance(m.event, Cancel)]
    assert cancel.location == ()
    match cancel.event:
        case Cancel(reason=Aborted(payload=BadTest(descriptor=42))):
            pass
        case event:
            pytest.fail(f"expected bad test abort, got {event}")


def test_bad_descriptor_in_group_reported_for_group_and_task(recorder: Recorder):
    asyncio.run(run([Group([42])], recorder))

    cancels = [m for m in recorder.messages if isinstance(m.event, Cancel)]
    assert [m.location for m in cancels] == [(1,), ()]
    assert all(
        isinstance(m.event, Cancel)
        and isinstance(m.event.reason, Aborted)
        and isinstance(m.event.reason.payload, BadTest)
        for m in cancels
    )


def test_unexpected_termination_reported(recorder: Recorder):
    async def body():
        task = asyncio.current_task()
        assert task is not None
        _ = task.cancel()
        await asyncio.sleep(1)

    asyncio.run(run([Test(body)], recorder))

    [cancel] = [m for m in recorder.messages if isinstance(m.event, Cancel)]
    assert cancel.location == ()
    assert isinstance(cancel.event, Cancel)
    assert isinstance(cancel.event.reason, Exited)
    assert isinstance(cancel.event.reason.payload, asyncio.CancelledError)


def test_context_setup_instantiate_cleanup(recorder: Recorder):
    calls: list[tuple[str, object]] = []

    def setup():
        calls.append(("setup", None))
        return "fixture"

    def cleanup(fixture: object):
        calls.append(("cleanup", fixture))

    def instantiate(fixture: object):
        return [Test(lambda: calls.append(("test", fixture)))]

    group = Group(instantiate, context=Context(setup, cleanup))

    asyncio.run(run([group], recorder))

    assert calls == [("setup", None), ("test", "fixture"), ("cleanup", "fixture")]
    [end] = [m for m in ends(recorder) if m.location == (1, 1)]
    assert isinstance(end.event, End) and end.event.outcome == Ok()


def test_async_context(recorder: Recorder):
    calls: list[str] = []

    async def setup():
        calls.append("setup")
        return 3

    async def cleanup(fixture: int):
        calls.append(f"cleanup {fixture}")

    group = Group(
        lambda n: [Test(lambda: calls.append("test")) for _ in range(n)],
        context=Context(setup, cleanup),
    )

    asyncio.run(run([group], recorder))

    assert calls == ["setup", "test", "test", "test", "cleanup 3"]


@pytest.mark.parametrize(
    "stage,error",
    [
        ("setup", SetupFailed),
        ("instantiate", InstantiationFailed),
        ("cleanup", CleanupFailed),
    ],
)
def test_context_failure_aborts(recorder: Recorder, stage: str, error: type):
    def fail(name: str):
        def function(*_: object):
            if name == stage:
                raise RuntimeError(f"{name} broke")
            return [Test(lambda: None)]

        return function

    group = Group(fail("instantiate"), context=Context(fail("setup"), fail("cleanup")))

    asyncio.run(run([group, Test(lambda: None)], recorder))

    cancels = [m for m in recorder.messages if isinstance(m.event, Cancel)]
    assert [m.location for m in cancels] == [(1,), ()]
    for cancel in cancels:
        assert isinstance(cancel.event, Cancel)
        assert isinstance(cancel.event.reason, Aborted)
        assert isinstance(cancel.event.reason.payload, error)
    # the abort stops the rest of the sequential task
    assert all(m.location != (2,) for m in recorder.messages)


def test_cleanup_runs_after_instantiation_failure(recorder: Recorder):
    cleaned: list[object] = []

    def instantiate(_: object):
        raise RuntimeError("no tests")

    group = Group(
        instantiate, context=Context(lambda: "fixture", cleaned.append), spawn=True
    )

    asyncio.run(run([group], recorder))

    assert cleaned == ["fixture"]


def test_generator_produces_tests(recorder: Recorder):
    tree = Generator(lambda: [Test(lambda: None), Test(lambda: None)])

    asyncio.run(run([tree], recorder))

    assert [m.location for m in ends(recorder)] == [(1, 1), (1, 2), (1,)]


def test_failing_generator_aborts(recorder: Recorder):
    def generator():
        raise RuntimeError("cannot generate")

    asyncio.run(run([Generator(generator)], recorder))

    [cancel] = [m for m in recorder.messages if isinstance(m.event, Cancel)]
    assert isinstance(cancel.event, Cancel)
    assert isinstance(cancel.event.reason, Aborted)
    assert isinstance(cancel.event.reason.payload, GeneratorFailed)


def test_missing_generator_module_aborts(recorder: Recorder):
    tree = Generator(FunctionRef("treerunner_no_such_module", "tests"))

    asyncio.run(run([tree], recorder))

    [cancel] = [m for m in recorder.messages if isinstance(m.event, Cancel)]
    assert isinstance(cancel.event, Cancel)
    assert isinstance(cancel.event.reason, Aborted)
    assert isinstance(cancel.event.reason.payload, ModuleNotFound)


def test_start_signals_done_exactly_once():
    async def main():
        recorder = Recorder()
        reference = uuid.uuid4()
        parent = Process.current()

        def failing():
            raise ValueError()

        tests = [
            Test(failing),
            Group([Test(sleeper(10), timeout=0.05)], spawn=True),
            Group([42], spawn=True),
        ]
        task = start(tests, reference, recorder, Order.CONCURRENT, parent=parent)

        await asyncio.wait_for(wait_for_done(parent, reference, [task]), 2)
        await asyncio.sleep(0.05)

        assert len(parent.mailbox) == 0
        assert leftover_tasks() == []

    asyncio.run(main())


def test_killing_caller_leaves_no_tasks():
    async def main():
        recorder = Recorder()
        tree = Group(
            [
                Group(
                    [Test(sleeper(10)) for _ in range(3)],
                    order=Order.CONCURRENT,
                    spawn=True,
                )
                for _ in range(3)
            ],
            order=Order.CONCURRENT,
        )

        caller = asyncio.create_task(run(tree, recorder, test_timeout=math.inf))
        await asyncio.sleep(0.1)
        assert len(leftover_tasks()) > 10

        _ = caller.cancel()
        await asyncio.sleep(0.1)

        assert leftover_tasks() == []

    asyncio.run(main())


def test_sync_body_runs_in_thread(recorder: Recorder):
    tests = [Test(lambda: time.sleep(0.01)), Test(lambda: asyncio.sleep(0))]

    asyncio.run(run(tests, recorder))

    outcomes = [m.event.outcome for m in ends(recorder)]  # pyright: ignore[reportAttributeAccessIssue]
    assert outcomes == [Ok(), Ok()]


def test_system_exit_in_body_is_failure(recorder: Recorder):
    def exits():
        sys.exit(3)

    asyncio.run(run([Test(exits), Test(lambda: None)], recorder))

    [first, second] = ends(recorder)
    assert first.location == (1,)
    assert isinstance(first.event, End)
    assert isinstance(first.event.outcome, Failed)
    assert isinstance(first.event.outcome.exception, SystemExit)
    assert first.event.outcome.exception.code == 3
    assert second.location == (2,)
    assert isinstance(second.event, End) and second.event.outcome == Ok()


def test_keyboard_interrupt_in_async_body_is_failure(recorder: Recorder):
    async def interrupts():
        raise KeyboardInterrupt

    asyncio.run(run([Test(interrupts), Test(lambda: None)], recorder))

    outcomes = [m.event.outcome for m in ends(recorder)]  # pyright: ignore[reportAttributeAccessIssue]
    assert isinstance(outcomes[0], Failed)
    assert isinstance(outcomes[0].exception, KeyboardInterrupt)
    assert outcomes[1] == Ok()


def test_group_callable_generates_children(recorder: Recorder):
    calls: list[str] = []

    def generate():
        return [Test(lambda: calls.append("a")), Test(lambda: calls.append("b"))]

    asyncio.run(run([Group(generate)], recorder))

    assert sorted(calls) == ["a", "b"]
    assert [m.location for m in ends(recorder)] == [(1, 1), (1, 2), (1,)]


def test_failing_group_callable_aborts(recorder: Recorder):
    def generate():
        raise RuntimeError("cannot generate")

    asyncio.run(run([Group(generate)], recorder))

    cancels = [m for m in recorder.messages if isinstance(m.event, Cancel)]
    assert [m.location for m in cancels] == [(1,), ()]
    for cancel in cancels:
        assert isinstance(cancel.event, Cancel)
        assert isinstance(cancel.event.reason, Aborted)
        assert isinstance(cancel.event.reason.payload, GeneratorFailed)


def test_start_signals_calling_task_by_default():
    async def main():
        recorder = Recorder()
        reference = uuid.uuid4()

        task = start([Test(lambda: None)], reference, recorder, Order.SEQUENTIAL)

        await asyncio.wait_for(wait_for_done(Process.current(), reference, [task]), 2)
        assert [m.location for m in ends(recorder)] == [(1,)]

    asyncio.run(main())
