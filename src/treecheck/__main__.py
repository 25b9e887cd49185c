import asyncio
import logging
import os
import sys
import tomllib

import tyro
from mashumaro.codecs.toml import toml_decode

from treerunner.output import Output
from treerunner.scheduler import run

from .config import Config
from .loader import load_all

logger = logging.getLogger(__name__)


def main():
    logging.basicConfig(level=logging.WARNING)

    config_path = os.getenv("TREECHECK_CONFIG_PATH") or "treecheck.toml"
    default_config = None
    try:
        with open(config_path, "r") as f:
            default_config = toml_decode(f.read(), Config)
    except FileNotFoundError:
        logger.debug("no configuration file at %s", config_path)
    except tomllib.TOMLDecodeError:
        logger.exception("unable to parse configuration file %s", config_path)

    config = tyro.cli(Config, default=default_config, prog="treecheck")
    logging.getLogger().setLevel(config.output.log_level)

    output = Output(
        print_failure_details=config.output.print_failure_details,
        print_n_slowest=config.output.print_n_slowest,
    )

    try:
        assert len(config.tests) > 0, "no tests to run"
        tests = load_all(config.tests)

        with output.running_tests():
            asyncio.run(
                run(
                    tests,
                    output,
                    config.run_order,
                    test_timeout=config.timeouts.test_timeout,
                    group_timeout=config.timeouts.group_timeout_seconds,
                )
            )
        output.print_summary()
    except KeyboardInterrupt:
        return
    except Exception as e:
        output.print_exception(e)
        sys.exit(1)

    if not output.succeeded:
        sys.exit(1)


if __name__ == "__main__":
    main()
