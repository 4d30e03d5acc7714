"""
Command line entry point.

Usage:
    flowpilot run <id|file.json> [--var name=value ...] [--headed]
    flowpilot list
    flowpilot validate <id|file.json>
    flowpilot history [<id>] [--limit N] [--json]

Environment:
    CONFIG_PATH  config file (default ./config/flowpilot.yaml, optional)
    DATA_DIR     root for automations, credentials, history and screenshots
    LOG_FORMAT   "json" for JSON log lines, console otherwise
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Optional

import structlog
from dotenv import load_dotenv

from .core.config import ConfigLoader, FlowConfig
from .core.errors import FlowError, StorageError
from .graph.model import Automation
from .storage.credentials import CredentialStore
from .storage.history import RunHistory
from .storage.store import AutomationStore, load_document_file

logger = structlog.get_logger()


def configure_logging(config: FlowConfig) -> None:
    """Configure structlog once for the process."""
    log_format = os.getenv("LOG_FORMAT") or config.logging.format
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config() -> FlowConfig:
    config_path = os.getenv("CONFIG_PATH", "./config/flowpilot.yaml")
    if os.path.exists(config_path):
        config = ConfigLoader().load_config(config_path)
    else:
        config = FlowConfig()

    data_dir = os.getenv("DATA_DIR")
    if data_dir:
        config = config.with_data_dir(data_dir)
    return config


def parse_vars(pairs: Optional[list[str]]) -> dict[str, str]:
    """Turn ["a=1", "b=x=y"] into {"a": "1", "b": "x=y"}."""
    variables = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"Expected name=value, got: {pair}")
        variables[name.strip()] = value
    return variables


def resolve_automation(target: str, store: AutomationStore) -> Automation:
    """A path to a JSON document, otherwise a stored automation id."""
    if target.endswith(".json") or os.sep in target:
        return load_document_file(target)
    automation = store.load(target)
    if automation is None:
        raise StorageError(f"Automation not found: {target}", path=str(store.path_for(target)))
    return automation


async def cmd_run(args: argparse.Namespace, config: FlowConfig) -> int:
    from .browser.actions import PlaywrightDriver
    from .engine.runner import AutomationRunner

    if args.headed:
        config = config.model_copy(update={
            "browser": config.browser.model_copy(update={"headless": False}),
        })

    store = AutomationStore(config.storage.automations_dir)
    automation = resolve_automation(args.target, store)
    credentials = CredentialStore(config.storage.credentials_path)

    async with RunHistory(config.storage.history_db) as history:
        runner = AutomationRunner(
            store=store,
            history=history,
            credentials=credentials,
            config=config,
        )

        loop = asyncio.get_running_loop()

        def signal_handler():
            logger.info("shutdown_signal_received")
            runner.stop_all()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

        driver = PlaywrightDriver(config=config.browser)
        try:
            log = await runner.run(automation, driver, variables=parse_vars(args.var))
        finally:
            await driver.close()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)

    print(json.dumps(log.to_dict(), indent=2))
    return 0 if log.success else 1


def cmd_list(args: argparse.Namespace, config: FlowConfig) -> int:
    store = AutomationStore(config.storage.automations_dir)
    for automation in store.list():
        last = automation.last_run
        last_text = "never" if last is None else (
            f"{last.timestamp.isoformat(timespec='seconds')} "
            f"{'ok' if last.success else 'failed'}"
        )
        print(f"{automation.id}\t{automation.name}\t{len(automation.nodes)} nodes\t{last_text}")
    return 0


def cmd_validate(args: argparse.Namespace, config: FlowConfig) -> int:
    store = AutomationStore(config.storage.automations_dir)
    automation = resolve_automation(args.target, store)
    print(f"{automation.id}: ok ({len(automation.nodes)} nodes, {len(automation.edges)} edges)")
    return 0


async def cmd_history(args: argparse.Namespace, config: FlowConfig) -> int:
    async with RunHistory(config.storage.history_db) as history:
        runs = await history.list_runs(args.automation_id, limit=args.limit)
        stats = await history.statistics(args.automation_id)

    if args.json:
        print(json.dumps({"runs": [run.to_dict() for run in runs], "statistics": stats}, indent=2))
        return 0

    for run in runs:
        outcome = "ok" if run.success else (run.error or run.status)
        print(f"{run.timestamp}\t{run.automation_id}\t{run.status}\t{run.duration:.2f}s\t{outcome}")
    print(
        f"{stats['total']} runs, {stats['succeeded']} succeeded "
        f"({stats['success_rate']:.0%}), avg {stats['avg_duration']:.2f}s"
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flowpilot", description="Run browser automation graphs")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run an automation")
    run.add_argument("target", help="Automation id or path to a JSON document")
    run.add_argument("--var", action="append", metavar="NAME=VALUE", help="Initial variable")
    run.add_argument("--headed", action="store_true", help="Show the browser window")

    sub.add_parser("list", help="List stored automations")

    validate = sub.add_parser("validate", help="Check an automation document")
    validate.add_argument("target", help="Automation id or path to a JSON document")

    history = sub.add_parser("history", help="Show recent runs")
    history.add_argument("automation_id", nargs="?", default=None)
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--json", action="store_true", help="Print runs as JSON")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
        configure_logging(config)

        if args.command == "run":
            return asyncio.run(cmd_run(args, config))
        if args.command == "list":
            return cmd_list(args, config)
        if args.command == "validate":
            return cmd_validate(args, config)
        return asyncio.run(cmd_history(args, config))

    except argparse.ArgumentTypeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except FlowError as e:
        logger.error("command_failed", command=args.command, error=e.to_dict())
        print(f"error: {e.message}", file=sys.stderr)
        return 1


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
