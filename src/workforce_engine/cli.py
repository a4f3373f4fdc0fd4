"""Workforce Engine command line interface.

Operational tools for:
- Schema creation
- Importing and deduplicating personal records
- Locking, unlocking and clearing payroll periods
- Period summaries

Usage:
    workforce-engine init-db
    workforce-engine import-records --actor hr --file records.json
    workforce-engine dedupe-records --actor admin --dry-run
    workforce-engine lock-period --actor hr --period 2024-03 --employees alice,bob
    workforce-engine unlock-period --actor admin --period 2024-03 --employee alice --reason "late claim"
    workforce-engine clear-period --actor admin --period 2024-03 --employee alice --confirm DELETE
    workforce-engine summary --period 2024-03 --employee alice
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Callable

from sqlalchemy.orm import Session, sessionmaker

from workforce_engine.collaborators import InMemoryUserDirectory, UserDirectory
from workforce_engine.config import get_settings
from workforce_engine.database import create_schema, init_db
from workforce_engine.engine import WorkforceEngine
from workforce_engine.exceptions import WorkforceError
from workforce_engine.logging_config import configure_logging
from workforce_engine.periods import parse_period

logger = logging.getLogger(__name__)


def parse_csv(s: str) -> list[str]:
    """Parse a comma-separated list, dropping blanks."""
    return [part.strip() for part in s.split(",") if part.strip()]


def period_arg(s: str) -> str:
    try:
        parse_period(s)
    except WorkforceError as e:
        raise argparse.ArgumentTypeError(e.message) from e
    return s


class WorkforceCli:
    """Workforce Engine command line interface."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        directory: UserDirectory | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="workforce-engine",
            description="Workforce engine operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: DATABASE_URL from the environment)",
        )
        parser.add_argument(
            "--users-file",
            type=str,
            help="JSON user directory (default: USERS_FILE from the environment)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # init-db command
        subparsers.add_parser("init-db", help="Create all tables")

        # import-records command
        import_records = subparsers.add_parser(
            "import-records",
            help="Import personal records from a JSON file",
        )
        import_records.add_argument("--actor", required=True, help="Acting user ID")
        import_records.add_argument(
            "--file",
            required=True,
            help="JSON array of records (name, email, phone, external_id, source)",
        )

        # dedupe-records command
        dedupe = subparsers.add_parser(
            "dedupe-records",
            help="Remove duplicate imported records, keeping the newest",
        )
        dedupe.add_argument("--actor", required=True, help="Acting user ID")
        dedupe.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would be deleted without deleting",
        )

        # lock-period command
        lock = subparsers.add_parser("lock-period", help="Lock a payroll period")
        lock.add_argument("--actor", required=True, help="Acting user ID")
        lock.add_argument("--period", type=period_arg, required=True, help="Period (YYYY-MM)")
        lock.add_argument(
            "--employees",
            type=parse_csv,
            required=True,
            help="Comma-separated employee IDs",
        )

        # unlock-period command
        unlock = subparsers.add_parser("unlock-period", help="Unlock a payroll period")
        unlock.add_argument("--actor", required=True, help="Acting user ID")
        unlock.add_argument("--period", type=period_arg, required=True, help="Period (YYYY-MM)")
        unlock.add_argument("--employee", required=True, help="Employee ID")
        unlock.add_argument("--reason", required=True, help="Why the period is reopened")

        # clear-period command
        clear = subparsers.add_parser(
            "clear-period",
            help="Delete an employee's attendance and salary data for a period",
        )
        clear.add_argument("--actor", required=True, help="Acting user ID")
        clear.add_argument("--period", type=period_arg, required=True, help="Period (YYYY-MM)")
        clear.add_argument("--employee", required=True, help="Employee ID")
        clear.add_argument(
            "--confirm",
            required=True,
            help="Confirmation token; must be DELETE",
        )

        # summary command
        summary = subparsers.add_parser("summary", help="Show an employee's period summary")
        summary.add_argument("--period", type=period_arg, required=True, help="Period (YYYY-MM)")
        summary.add_argument("--employee", required=True, help="Employee ID")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "init-db": self._cmd_init_db,
            "import-records": self._cmd_import_records,
            "dedupe-records": self._cmd_dedupe_records,
            "lock-period": self._cmd_lock_period,
            "unlock-period": self._cmd_unlock_period,
            "clear-period": self._cmd_clear_period,
            "summary": self._cmd_summary,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except WorkforceError as e:
            print(f"ERROR [{e.code}]: {e.message}", file=sys.stderr)
            return 2

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _factory(self, args: argparse.Namespace) -> sessionmaker[Session]:
        if self._session_factory is None:
            _, self._session_factory = init_db(args.database_url)
        return self._session_factory

    def _load_directory(self, args: argparse.Namespace) -> UserDirectory:
        if self._directory is None:
            path = args.users_file or get_settings().users_file
            if path:
                self._directory = InMemoryUserDirectory.from_json_file(path)
            else:
                logger.warning("No user directory configured; every actor will be rejected")
                self._directory = InMemoryUserDirectory()
        return self._directory

    @contextmanager
    def _engine(self, args: argparse.Namespace) -> Iterator[WorkforceEngine]:
        """Engine bound to a session that commits on success.

        Events raised by the command are dispatched after the commit.
        """
        factory = self._factory(args)
        with factory() as session:
            engine = WorkforceEngine(session, self._load_directory(args))
            with engine.deferred_events():
                try:
                    yield engine
                    session.commit()
                except Exception:
                    session.rollback()
                    raise

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        factory = self._factory(args)
        engine = factory.kw["bind"]
        create_schema(engine)
        print(f"Schema created on {engine.url.render_as_string(hide_password=True)}")
        return 0

    def _cmd_import_records(self, args: argparse.Namespace) -> int:
        with open(args.file, encoding="utf-8") as f:
            rows: list[dict[str, Any]] = json.load(f)
        with self._engine(args) as engine:
            engine.authorizer.resolve(args.actor)
            records = engine.records.import_records(rows, args.actor)
            print(f"Imported {len(records)} record(s)")
        return 0

    def _cmd_dedupe_records(self, args: argparse.Namespace) -> int:
        with self._engine(args) as engine:
            report = engine.deduplicate_records(args.actor, dry_run=args.dry_run)

        prefix = "[DRY RUN] Would delete" if report.dry_run else "Deleted"
        print(f"{prefix} {report.total_deleted} duplicate record(s)")
        print(f"  By external ID:   {report.strict_deleted}")
        print(f"  By email + phone: {report.legacy_deleted}")
        return 0

    def _cmd_lock_period(self, args: argparse.Namespace) -> int:
        with self._engine(args) as engine:
            result = engine.lock_period(args.employees, args.period, args.actor)

        print(f"Period {result.period}")
        print(f"  Locked:         {result.locked}")
        print(f"  Already locked: {result.already_locked}")
        print(f"  Failed:         {result.failed}")
        for item in result.results:
            if not item.ok:
                print(f"    - {item.key}: {item.error_code} {item.error}")
        return 0 if result.failed == 0 else 3

    def _cmd_unlock_period(self, args: argparse.Namespace) -> int:
        with self._engine(args) as engine:
            engine.unlock_period(args.employee, args.period, args.actor, args.reason)
        print(f"Unlocked {args.employee} for {args.period}")
        return 0

    def _cmd_clear_period(self, args: argparse.Namespace) -> int:
        with self._engine(args) as engine:
            result = engine.clear_period_data(args.employee, args.period, args.confirm, args.actor)
        print(f"Cleared {result.employee_id} for {result.period}")
        print(f"  Attendance rows: {result.attendance_deleted}")
        print(f"  Salary rows:     {result.salary_deleted}")
        return 0

    def _cmd_summary(self, args: argparse.Namespace) -> int:
        with self._engine(args) as engine:
            summary = engine.period_summary(args.employee, args.period)
        print(json.dumps(summary, indent=2, default=str))
        return 0


def main() -> int:
    """CLI entry point."""
    cli = WorkforceCli()
    settings = get_settings()
    configure_logging(settings.log_level)
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
