#!/usr/bin/env python3
"""
Device Group Reconciliation

Reconciles Active Directory security group membership against the devices
matching each configured domain entry, then writes a CSV/HTML report and a
JSON-lines audit log of every per-device outcome.

Exit codes:
  0 = run completed without failures
  1 = fatal error (configuration file unusable, report could not be written)
  2 = run completed, but some domain entries or devices failed
"""

import argparse
import functools
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from directory.facade.directory_facade import DirectoryFacade
from reconciler.config import ReconcilerConfig, load_domain_configs
from reconciler.exceptions import ConfigurationError, ReportWriteError
from reconciler.reporting import ReportWriter
from reconciler.services import ReconciliationService, RunContext

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_FAILURES = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def handle_keyboard_interrupt(exit_message="Reconciliation interrupted by user"):
    """Decorator to handle KeyboardInterrupt and exit gracefully."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except KeyboardInterrupt:
                logger.info(f"\n{exit_message}")
                sys.exit(EXIT_FATAL)

        return wrapper

    return decorator


def build_parser(run_config):
    parser = argparse.ArgumentParser(
        description="Reconcile AD security group membership against matching devices"
    )
    parser.add_argument(
        "--config",
        default=run_config["config_path"],
        help=f"Domain configuration JSON file (default: {run_config['config_path']})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without modifying any group",
    )
    parser.add_argument(
        "--report-dir",
        default=run_config["report_dir"],
        help=f"Directory for CSV/HTML reports and the audit log (default: {run_config['report_dir']})",
    )
    parser.add_argument(
        "--log",
        nargs="?",
        const=os.path.join(run_config["log_dir"], "reconcile_device_groups.log"),
        help="Enable rotating log file (default: <log dir>/reconcile_device_groups.log)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    return parser


def configure_logging(log_level, log_path=None):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=10)
        )

    logging.basicConfig(
        level=getattr(logging, log_level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def print_summary(summary, paths, dry_run):
    print("\n" + "=" * 80)
    print("DEVICE GROUP RECONCILIATION SUMMARY")
    print("=" * 80)
    print(f"Domain entries:      {summary['domains']:>6,}")
    print(f"Devices:             {summary['total']:>6,}")
    print(f"  Added:             {summary['Added']:>6,}")
    print(f"  Present:           {summary['Present']:>6,}")
    print(f"  Removed:           {summary['Removed']:>6,}")
    print(f"  Skipped:           {summary['Skipped']:>6,}")
    print(f"  AddFailed:         {summary['AddFailed']:>6,}")
    print(f"  RemoveFailed:      {summary['RemoveFailed']:>6,}")
    print(f"Removed total:       {summary['removed_total']:>6,}  (Removed + Skipped)")
    if summary["failed_domains"]:
        print(f"Failed entries:      {', '.join(summary['failed_domains'])}")
    print(f"Report:              {paths['html']}")
    print("=" * 80)
    if dry_run:
        print("\nDRY RUN MODE - No group memberships were changed")


@handle_keyboard_interrupt()
def main(argv=None):
    """Main entry point for device group reconciliation."""
    run_config = ReconcilerConfig.get_run_config()
    args = build_parser(run_config).parse_args(argv)

    configure_logging(args.log_level, args.log)
    if args.log:
        logger.info(f"Logging to file: {args.log}")
    if args.dry_run:
        logger.info("*** DRY RUN MODE - No changes will be made ***")

    try:
        loaded = load_domain_configs(args.config)
        connection_config = ReconcilerConfig.get_connection_config()
    except ConfigurationError as e:
        logger.error(f"Cannot start reconciliation: {e}")
        return EXIT_FATAL

    if not connection_config["user"]:
        logger.error("Missing required environment variable: AD_USER")
        return EXIT_FATAL

    context = RunContext(dry_run=args.dry_run)
    with DirectoryFacade(connection_config) as directory:
        service = ReconciliationService(directory, dry_run=args.dry_run)
        aggregator = service.run(loaded.configs, loaded.rejected, context, loaded.order)

    summary = aggregator.summary()
    try:
        paths = ReportWriter(args.report_dir).write(
            aggregator.records,
            summary,
            context.started_at,
            domain_rows=aggregator.domain_rows(),
            dry_run=args.dry_run,
        )
    except ReportWriteError as e:
        logger.critical(f"Reconciliation ran but the report could not be written: {e}")
        return EXIT_FATAL

    print_summary(summary, paths, args.dry_run)
    return EXIT_FAILURES if aggregator.has_failures else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
