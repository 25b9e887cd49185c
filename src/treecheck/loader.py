import importlib
import logging
from typing import Any

from treerunner.item import FunctionRef, Group

logger = logging.getLogger(__name__)


def load_tests(reference: str) -> Any:
    """Import the test tree named by a module:attribute reference."""
    ref = FunctionRef.parse(reference)
    module = importlib.import_module(ref.module)

    tests: Any = module
    for attr in ref.function.split("."):
        assert hasattr(tests, attr), (
            "test tree not found",
            f"module {ref.module} has no attribute {ref.function}",
        )
        tests = getattr(tests, attr)

    logger.debug("loaded %s", reference)
    return tests


def load_all(references: list[str]) -> Group:
    return Group([load_tests(reference) for reference in references], name="treecheck")
