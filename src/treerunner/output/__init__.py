import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, override

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.rule import Rule

from treerunner.events import Aborted, Begin, Cancel, End, StatusMessage
from treerunner.item import Location
from treerunner.result import ItemResult, ResultStatus, format_location
from treerunner.supervisor import Supervisor

logger = logging.getLogger(__name__)


@dataclass
class _Running:
    kind: Literal["test", "group"]
    name: str
    task_id: TaskID
    started: float


class Output(Supervisor):
    def __init__(
        self,
        print_failure_details: bool = True,
        print_n_slowest: int = 0,
    ):
        self.console: Console = Console(highlight=False)

        self._print_failure_details: bool = print_failure_details
        self._print_n_slowest: int = print_n_slowest

        self._results: list[ItemResult] = []
        self._running: dict[Location, _Running] = {}
        self._duration: int = 0

        self._overall_test_progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]Running tests..."),
            TextColumn("({task.completed} finished)"),
            TimeElapsedColumn(),
            console=self.console,
        )
        self._overall_test_task_id: TaskID = self._overall_test_progress.add_task(
            "overall"
        )
        self._test_progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            TimeElapsedColumn(),
            console=self.console,
        )

        group = Group(self._test_progress, self._overall_test_progress)
        self._live: Live = Live(group, console=self.console)

    @contextmanager
    def running_tests(self):
        self.console.print()
        self.console.print(Rule(title=" Testing", align="left"))

        start_time = datetime.now()
        try:
            with self._live:
                yield self
        finally:
            end_time = datetime.now()
            self._duration = (end_time - start_time).seconds
            self.abandon_running()

    @override
    def status(self, message: StatusMessage):
        location = message.location
        match message.event:
            case Begin(kind=kind, description=description):
                name = description or f"{kind} {format_location(location)}"
                task_id = self._test_progress.add_task(name)
                self._running[location] = _Running(kind, name, task_id, time.monotonic())
            case End(outcome=None):
                _ = self._finish(location)
            case End(elapsed_ms=elapsed_ms, outcome=outcome):
                running = self._finish(location)
                name = running.name if running else format_location(location)
                self._test_done(
                    ItemResult.from_outcome(location, name, outcome, elapsed_ms)
                )
            case Cancel(reason=reason):
                running = self._finish(location)
                if running is None:
                    name, duration = format_location(location), 0.0
                else:
                    name, duration = running.name, time.monotonic() - running.started
                self._test_done(ItemResult.from_cancel(location, name, reason, duration))

    def abandon_running(self):
        """Record tests that began but neither ended nor were cancelled."""
        for location, running in list(self._running.items()):
            _ = self._finish(location)
            if running.kind != "test":
                continue
            duration = time.monotonic() - running.started
            self._test_done(
                ItemResult.from_outcome(
                    location, running.name, Aborted(), int(duration * 1000)
                )
            )

    def _finish(self, location: Location) -> _Running | None:
        running = self._running.pop(location, None)
        if running is not None:
            self._test_progress.remove_task(running.task_id)
        return running

    def _test_done(self, result: ItemResult):
        self._overall_test_progress.advance(self._overall_test_task_id)
        self._results.append(result)

        match result.status:
            case ResultStatus.PASS:
                self._test_passed(result)
            case ResultStatus.FAIL:
                self._test_failed(result)
            case ResultStatus.SKIP:
                self._test_skipped(result)
            case ResultStatus.ERROR:
                self._test_errored(result)

    def _test_passed(self, result: ItemResult):
        self.console.print(
            "  [bold green]pass[/bold green]",
            result.name,
            f"[yellow]{str(timedelta(seconds=int(result.duration)))}",
        )

    def _test_failed(self, result: ItemResult):
        self.console.print(
            "  [bold red]fail[/bold red]",
            result.name,
            f"[yellow]{str(timedelta(seconds=int(result.duration)))}",
        )

    def _test_skipped(self, result: ItemResult):
        self.console.print(
            "  [bold yellow]skip[/bold yellow]",
            result.name,
            f"[yellow]{str(timedelta(seconds=int(result.duration)))}",
            f"[dim]{result.summary}",
        )

    def _test_errored(self, result: ItemResult):
        self.console.print(
            "  [bold medium_purple3]error[/bold medium_purple3]",
            result.name,
            f"[yellow]{str(timedelta(seconds=int(result.duration)))}",
            f"[dim]{result.summary}",
        )

    @property
    def results(self) -> list[ItemResult]:
        return list(self._results)

    @property
    def succeeded(self) -> bool:
        return not any(
            r.status in (ResultStatus.FAIL, ResultStatus.SKIP, ResultStatus.ERROR)
            for r in self._results
        )

    def _print_failed_details(self):
        for result in self._results:
            if result.status == ResultStatus.FAIL:
                status = "Failed"
            elif result.status == ResultStatus.ERROR:
                status = "Error"
            else:
                continue

            self.console.print()
            self.console.print(
                Rule(
                    f" {status} {result.name} @ {format_location(result.location)}",
                    align="left",
                    style="red",
                ),
            )
            if result.summary:
                self.console.print(
                    Panel.fit(result.summary, title="reason", title_align="left")
                )

    def _print_result_counts(self):
        self.console.print()
        self.console.print(Rule(" Summary", align="left"))

        if passed := [r for r in self._results if r.status == ResultStatus.PASS]:
            self.console.print(f"  [bold green]Passed[/bold green] {len(passed)}")
        if skipped := [r for r in self._results if r.status == ResultStatus.SKIP]:
            self.console.print(f"  [bold yellow]Skipped[/bold yellow] {len(skipped)}")
        if failed := [r for r in self._results if r.status == ResultStatus.FAIL]:
            self.console.print(f"  [bold red]Failed[/bold red] {len(failed)}")
        if errored := [r for r in self._results if r.status == ResultStatus.ERROR]:
            self.console.print(
                f"  [bold medium_purple3]Errored[/bold medium_purple3] {len(errored)}",
            )

        self.console.print(f"  [bold blue]Total Time[/bold blue] {self._duration}s")

    def _print_slowest(self):
        slowest = sorted(self._results, key=lambda x: x.duration, reverse=True)
        slowest = slowest[: self._print_n_slowest]
        if not slowest:
            return
        self.console.print()
        self.console.rule(f" {len(slowest)} Slowest Tests", align="left")
        for result in slowest:
            self.console.print(f"  [bold]{result.name}[/bold] {result.duration:.3f}s")

    def print_summary(self):
        if self._print_failure_details:
            self._print_failed_details()

        if self._print_n_slowest:
            self._print_slowest()

        self._print_result_counts()

        self.console.print()

    def __render_exception_arg(self, arg: object) -> RenderableType:
        match arg:
            case tuple():
                return Group(*(f"• {a}" for a in arg))
            case _:
                return str(arg)

    def __print_exception(self, exc: BaseException) -> RenderableType:
        match exc:
            case ExceptionGroup():
                return Panel.fit(
                    Group(*(self.__print_exception(e) for e in exc.exceptions)),
                    title=type(exc).__name__,
                    border_style="yellow",
                )
            case _:
                notes: list[str] = getattr(exc, "__notes__", [])
                return Panel.fit(
                    Group(
                        *(self.__render_exception_arg(a) for a in exc.args),
                        *(f"[dim]{note}" for note in notes),
                    ),
                    title=type(exc).__name__,
                    border_style="red",
                )

    def print_exception(self, exc: BaseException):
        self.console.print(self.__print_exception(exc))
