"""
Main orchestrator for LDAP SQL Sync application.

This module contains the sync pass that resolves the LDAP attributes of every
LDAP managed database user, detects changes and writes them back in one
transaction, plus the command line entry point.
"""

import sys
import json
import time
import logging
import argparse
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ldap_sql_sync.attribute_mapping import (
    MappingTable, build_attribute_mapping, requested_attributes,
)
from ldap_sql_sync.change_detector import ID_COLUMN, diff_user
from ldap_sql_sync.config import ConfigurationError, load_config, parse_interval, redacted
from ldap_sql_sync.database import StoreCommitError, StoreConnectionError, UserStore
from ldap_sql_sync.ldap_client import LDAPClient, LDAPConnectionError, LDAPQueryError
from ldap_sql_sync.logging_setup import setup_logging
from ldap_sql_sync.resolver import resolve_attributes
from ldap_sql_sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 3
EXIT_COMMIT_ERROR = 4
EXIT_UNEXPECTED_ERROR = 5


class SyncError(Exception):
    """Raised when a sync pass is aborted."""

    def __init__(self, message: str, exit_code: int = EXIT_UNEXPECTED_ERROR,
                 report: Optional['SyncReport'] = None):
        super().__init__(message)
        self.exit_code = exit_code
        self.report = report


@dataclass
class SyncReport:
    """Outcome of one sync pass."""

    checked: int = 0
    changed: int = 0
    failed: int = 0
    updated: int = 0
    elapsed: float = 0.0
    committed: bool = False
    degraded: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class SyncOrchestrator:
    """
    Runs LDAP to SQL sync passes.

    A pass opens one database connection and one LDAP connection, looks up
    every LDAP managed user once, and submits at most one batched update.
    A user that cannot be looked up is skipped; failing to connect, fetch or
    commit aborts the pass without writing anything.
    """

    def __init__(self, config: Dict[str, Any],
                 ldap_client_factory: Callable[[Dict[str, Any]], LDAPClient] = LDAPClient,
                 store_factory: Callable[[Dict[str, Any]], UserStore] = UserStore,
                 reporter: Optional[logging.Logger] = None):
        """
        Initialize sync orchestrator.

        Args:
            config: Loaded configuration, see :func:`ldap_sql_sync.config.load_config`
            ldap_client_factory: Creates the LDAP client from the ldap section
            store_factory: Creates the user store from the database section
            reporter: Logger-like sink for per-attribute debug messages
        """
        self.config = config
        self.ldap_config = config['ldap']
        self.db_config = config['database']
        self.compare_stored = self.db_config.get('compare_stored', True)
        self.ldap_client_factory = ldap_client_factory
        self.store_factory = store_factory
        self.reporter = reporter or logger
        self.last_report = None

    def run_pass(self) -> SyncReport:
        """
        Perform a single LDAP to SQL sync.

        Returns:
            Report of the pass

        Raises:
            SyncError: If the pass was aborted; its ``report`` holds the counts
        """
        report = SyncReport(degraded=not self.compare_stored)
        self.last_report = report
        start_time = time.monotonic()
        logger.info("Starting LDAP sync")

        try:
            self._sync(report)
        except ConfigurationError as e:
            self._abort(report, f"Configuration error: {e}", EXIT_CONFIG_ERROR, e)
        except (LDAPConnectionError, StoreConnectionError) as e:
            self._abort(report, f"Connection error: {e}", EXIT_CONNECTION_ERROR, e)
        except StoreCommitError as e:
            self._abort(report, f"Failed to perform SQL update: {e}", EXIT_COMMIT_ERROR, e)
        except Exception as e:
            self._abort(report, f"Unexpected error: {e}", EXIT_UNEXPECTED_ERROR, e, exc_info=True)
        finally:
            report.elapsed = time.monotonic() - start_time
            self._log_sync_summary(report)

        return report

    def _abort(self, report: SyncReport, message: str, exit_code: int, cause: Exception,
               exc_info: bool = False):
        report.error = message
        report.updated = 0
        report.committed = False
        logger.error(message, exc_info=exc_info)
        raise SyncError(message, exit_code, report) from cause

    def _sync(self, report: SyncReport):
        table = build_attribute_mapping(self.ldap_config.get('attribute_mapping'))
        attributes = requested_attributes(table)

        store = self.store_factory(self.db_config)
        try:
            store.connect()

            if self.compare_stored:
                stored_users = store.fetch_managed_users()
                identifiers = list(stored_users)
            else:
                logger.warning("Stored users are not compared, every user will be rewritten")
                stored_users = None
                identifiers = store.fetch_managed_identifiers()
            logger.debug(f"Fetched {len(identifiers)} users from SQL")

            ldap_client = self.ldap_client_factory(self.ldap_config)
            ldap_client.connect()
            try:
                batch = self._collect_changes(ldap_client, table, attributes,
                                              identifiers, stored_users, report)
            finally:
                ldap_client.disconnect()

            if not batch:
                logger.info("No user attributes changed")
                return

            report.updated = store.apply_batch(batch)
            report.committed = True
            logger.info(f"Updated {report.updated} SQL users")
        finally:
            store.close()

    def _collect_changes(self, ldap_client: LDAPClient, table: MappingTable,
                         attributes: List[str], identifiers: List[str],
                         stored_users: Optional[Dict[str, Dict[str, str]]],
                         report: SyncReport) -> List[Dict[str, str]]:
        """Look up every user and return the update batch."""
        batch = []

        for identifier in identifiers:
            report.checked += 1

            try:
                raw = ldap_client.search_user(identifier, attributes)
            except LDAPQueryError as e:
                report.failed += 1
                logger.error(f"Failed to query LDAP user {identifier}: {e}")
                continue

            resolved = resolve_attributes(table, raw, reporter=self.reporter)

            if stored_users is None:
                record = dict(resolved)
                record[ID_COLUMN] = identifier
                batch.append(record)
                report.changed += 1
                continue

            changed, record = diff_user(stored_users[identifier], resolved,
                                        identifier=identifier, reporter=self.reporter)
            if changed:
                batch.append(record)
                report.changed += 1
                logger.info(f"User {identifier} has changed")

        return batch

    def _log_sync_summary(self, report: SyncReport):
        """Log final synchronization statistics."""
        logger.info(f"Finished LDAP sync in {report.elapsed:.2f} seconds: "
                    f"{report.checked} checked, {report.changed} changed, "
                    f"{report.failed} failed, {report.updated} updated")

    def run(self) -> int:
        """
        Run a single sync pass.

        Returns:
            Exit code (0 for success, non-zero if the pass was aborted)
        """
        try:
            self.run_pass()
        except SyncError as e:
            return e.exit_code
        return EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Sync user attributes from LDAP into a SQL database')
    parser.add_argument('--config', '-c', help='Path to YAML configuration file')
    parser.add_argument('--env-file', help='Path to .env file (default: .env)')
    parser.add_argument('--once', action='store_true',
                        help='Run a single sync pass even if an interval is configured')
    parser.add_argument('--interval', help='Sync interval, e.g. 90s, 15m or 1h30m (overrides INTERVAL)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    parser.add_argument('--check-config', action='store_true',
                        help='Validate configuration and attribute mapping, then exit')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, args.env_file)
        if args.interval is not None:
            config['sync']['interval_seconds'] = parse_interval(args.interval)
    except ConfigurationError as e:
        setup_logging({}, verbose=args.verbose)
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    setup_logging(config['logging'], verbose=args.verbose)

    if args.check_config:
        try:
            table = build_attribute_mapping(config['ldap'].get('attribute_mapping'))
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        output = redacted(config)
        output['attribute_mapping'] = {key: list(sources) for key, sources in table.items()}
        print(json.dumps(output, indent=2, default=str))
        return EXIT_SUCCESS

    orchestrator = SyncOrchestrator(config)
    exit_code = orchestrator.run()

    interval = config['sync']['interval_seconds']
    if args.once or interval <= 0 or exit_code == EXIT_CONFIG_ERROR:
        return exit_code

    scheduler = SyncScheduler(orchestrator.run_pass, interval)
    scheduler.install_signal_handlers()
    scheduler.run_forever()
    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
