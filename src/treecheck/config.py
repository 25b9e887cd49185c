import logging
import math
from dataclasses import dataclass, field
from typing import Annotated, Literal

import tyro
from tyro.conf import OmitArgPrefixes, Positional, arg

from treerunner.item import DEFAULT_TEST_TIMEOUT, Order

logger = logging.getLogger(__name__)


def hbh(hint: str) -> str:
    if hint == "''" or hint == "None" or hint == "":
        return ""
    return f"(default: {hint})"


@dataclass
class TimeoutOptions:
    test_timeout: Annotated[
        float, arg(metavar="SECONDS", help_behavior_hint=hbh)
    ] = DEFAULT_TEST_TIMEOUT
    """seconds a test may run unless it sets its own timeout"""

    group_timeout: Annotated[
        float | None, arg(metavar="SECONDS", help_behavior_hint=hbh)
    ] = None
    """seconds a group may run unless it sets its own timeout (no limit by default)"""

    def __post_init__(self):
        if not self.test_timeout >= 0:
            raise ValueError("--test-timeout must be >= 0")
        if self.group_timeout is not None and not self.group_timeout >= 0:
            raise ValueError("--group-timeout must be >= 0")

    @property
    def group_timeout_seconds(self) -> float:
        return math.inf if self.group_timeout is None else self.group_timeout


@dataclass
class OutputOptions:
    print_failure_details: Annotated[bool, arg(help_behavior_hint=hbh)] = True
    """print the reason of every failed or errored test after the run"""

    print_n_slowest: Annotated[
        int, arg(metavar="N", help_behavior_hint=hbh)
    ] = 0
    """print the n slowest tests"""

    log_level: Annotated[
        Literal["DEBUG", "INFO", "WARNING", "ERROR"], arg(help_behavior_hint=hbh)
    ] = "WARNING"
    """log level of the runner itself"""

    def __post_init__(self):
        if self.print_n_slowest < 0:
            raise ValueError("--print-n-slowest must be >= 0")


@dataclass
class Config:
    """
    treecheck runs a tree of tests, each test and spawned group in its own
    supervised task
    """

    tests: Annotated[
        Positional[list[str]],
        arg(metavar="MODULE:ATTR [MODULE:ATTR...]", help_behavior_hint=hbh),
    ] = field(default_factory=list)
    """space separated list of test trees to run, as module:attribute references"""

    order: Annotated[
        Literal["sequential", "concurrent"],
        arg(aliases=["-o"], help_behavior_hint=hbh),
    ] = "sequential"
    """order of items in groups that do not set their own"""

    timeouts: OmitArgPrefixes[TimeoutOptions] = field(default_factory=TimeoutOptions)
    output: OmitArgPrefixes[OutputOptions] = field(default_factory=OutputOptions)

    @property
    def run_order(self) -> Order:
        match self.order:
            case "sequential":
                return Order.SEQUENTIAL
            case "concurrent":
                return Order.CONCURRENT
