from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

from .config import DEFAULT_DAEMON_UPDATE_FREQUENCY, Config, Params, load_config
from .errors import SyncError
from .pagerduty_client import PagerDutyClient
from .reporting import print_report
from .slack_client import SlackAPI
from .syncer import RunReport, Syncer, prepare_jobs

logger = logging.getLogger("pdsync")


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    handler = RichHandler(console=console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.setLevel(level)
    logger.addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pdsync",
        description="Sync PagerDuty on-call schedules to Slack user groups and channel topics",
    )
    parser.add_argument("--config", help="YAML file defining one or more Slack syncs")
    parser.add_argument(
        "--schedule",
        dest="schedules",
        action="append",
        default=[],
        help='schedule to sync, e.g. "id=P123ABC;userGroup=handle=team-oncall" (repeatable)',
    )
    parser.add_argument("--channel-id", default="", help="Slack channel ID whose topic should be updated")
    parser.add_argument("--channel-name", default="", help="Slack channel name whose topic should be updated")
    parser.add_argument("--template", default="", help="topic template, e.g. 'On call: <@{Primary}>'")
    parser.add_argument("--template-file", default="", help="file containing the topic template")
    parser.add_argument(
        "--dry-run",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="compute and log changes without applying them (overrides per-sync setting)",
    )
    parser.add_argument(
        "--pretend-users",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="render user IDs in topics without mentioning them (overrides per-sync setting)",
    )
    parser.add_argument("--fail-fast", action="store_true", help="abort the run on the first failing Slack sync")
    parser.add_argument("--daemon", action="store_true", help="run continuously")
    parser.add_argument(
        "--daemon-update-frequency",
        type=int,
        default=DEFAULT_DAEMON_UPDATE_FREQUENCY,
        help="seconds between runs in daemon mode",
    )
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def params_from_args(args: argparse.Namespace) -> Params:
    return Params(
        config=args.config,
        schedules=list(args.schedules),
        channel_id=args.channel_id,
        channel_name=args.channel_name,
        template=args.template,
        template_file=args.template_file,
        dry_run=args.dry_run,
        pretend_users=args.pretend_users,
        fail_fast=args.fail_fast,
        daemon=args.daemon,
        daemon_update_frequency=args.daemon_update_frequency,
    )


def run_once(
    cfg: Config,
    pagerduty: PagerDutyClient,
    slack: SlackAPI,
    cancel_event: threading.Event,
) -> RunReport:
    prepared, users = prepare_jobs(cfg.jobs, pagerduty, slack, log=logger)
    syncer = Syncer(pagerduty, slack, users, log=logger, cancel_event=cancel_event)
    return syncer.run(prepared, fail_fast=cfg.fail_fast)


def run_daemon(
    cfg: Config,
    pagerduty: PagerDutyClient,
    slack: SlackAPI,
    cancel_event: threading.Event,
    console: Console,
) -> None:
    logger.info("Running in daemon mode, updating every %d second(s)", cfg.daemon_update_frequency)
    while not cancel_event.is_set():
        try:
            print_report(run_once(cfg, pagerduty, slack, cancel_event), console)
        except SyncError as e:
            if cfg.fail_fast or cancel_event.is_set():
                raise
            logger.error("Run failed: %s", e)

        if cancel_event.wait(cfg.daemon_update_frequency):
            break
    logger.info("Shutting down")


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    console = Console()
    setup_logging(verbose=args.verbose, console=console)

    cancel_event = threading.Event()

    def _cancel(signum, _frame) -> None:
        logger.info("Received signal %d, cancelling run", signum)
        cancel_event.set()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)

    try:
        cfg = load_config(params_from_args(args))
        pagerduty = PagerDutyClient(token=cfg.pagerduty_token)
        slack = SlackAPI(token=cfg.slack_token)

        if cfg.daemon:
            run_daemon(cfg, pagerduty, slack, cancel_event, console)
        else:
            print_report(run_once(cfg, pagerduty, slack, cancel_event), console)
    except SyncError as e:
        Console(stderr=True).print(Text(f"Error: {e}", style="bold red"))
        sys.exit(1)


if __name__ == "__main__":
    main()
