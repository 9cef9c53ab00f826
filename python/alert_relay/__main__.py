"""
Command-line entry point.

    python -m alert_relay [--config PATH] [--interval SECONDS]

Without ``--interval`` a single pass runs and the exit code reports
whether every task succeeded, for use under cron or a job scheduler.
"""

from __future__ import annotations

import argparse
import sys

from alert_relay.config import Config, set_config
from alert_relay.exceptions import ConfigurationError
from alert_relay.logging import get_logger, setup_logging
from alert_relay.runner import RelayRunner

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alert-relay",
        description="Relay ELK alert records to Slack.",
    )
    parser.add_argument("--config", help="Path to a YAML or JSON config file")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Repeat a pass every N seconds instead of exiting after one",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = Config.load(args.config)
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        return 2

    set_config(config)
    setup_logging(config.logging)

    try:
        runner = RelayRunner.from_config(config)
    except (ConfigurationError, ValueError) as e:
        logger.error("relay_startup_failed", error=str(e))
        return 2

    if args.interval is not None:
        try:
            runner.run_forever(args.interval)
        except KeyboardInterrupt:
            logger.info("relay_stopped")
        return 0

    report = runner.run_once()
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
