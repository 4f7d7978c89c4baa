"""Command line entry point.

    python -m changelog_bot run       # one notification pass
    python -m changelog_bot metrics   # print the metrics record
    python -m changelog_bot status    # print version state and queue sizes
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from .config import ConfigurationError, load_config, validate_for_run
from .logging_setup import configure_logging
from .workers.context import AppContext
from .workers.orchestrator import RunOutcome

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


async def run_pass(context: AppContext) -> int:
    orchestrator = context.build_orchestrator()
    report = await orchestrator.run_notification_pass()
    print(
        json.dumps(
            {
                "run_id": report.run_id,
                "outcome": report.outcome.value if report.outcome else None,
                "version": report.version,
                "previous_version": report.previous_version,
                "languages": report.languages,
                "delivered": report.success_count,
                "failed": report.fail_count,
                "retried": report.retry.attempted,
                "error": report.error,
            },
            indent=2,
        )
    )
    return EXIT_RUN_FAILED if report.outcome is RunOutcome.FAILED else EXIT_OK


async def show_metrics(context: AppContext) -> int:
    metrics = await context.metrics.get_metrics()
    print(json.dumps(metrics.to_dict(), indent=2))
    return EXIT_OK


async def show_status(context: AppContext) -> int:
    state = context.state
    last_notification = await state.get_last_notification_time()
    status: dict[str, Any] = {
        "store_reachable": await context.store.ping(),
        "last_checked_version": await state.get_last_checked_version(),
        "last_notification_time": last_notification.isoformat() if last_notification else None,
        "active_recipients": await context.registry.count_active(),
        "pending_failures": [f.to_dict() for f in await context.failures.list_all()],
    }
    print(json.dumps(status, indent=2))
    return EXIT_OK


COMMANDS = {"run": run_pass, "metrics": show_metrics, "status": show_status}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="changelog_bot", description="Claude Code changelog notification bot"
    )
    parser.add_argument("command", choices=sorted(COMMANDS), help="Action to perform")
    parser.add_argument("--config", help="Configuration file path")
    parser.add_argument("--log-level", help="Override the configured log level")
    return parser


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        if args.command == "run":
            validate_for_run(config)
    except ConfigurationError as e:
        configure_logging(args.log_level or "INFO")
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    configure_logging(args.log_level or config.system.log_level.value)

    context = AppContext(config)
    try:
        return await COMMANDS[args.command](context)
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}")
        return EXIT_RUN_FAILED
    finally:
        await context.close()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
