"""Commission engine command line interface.

Provides operational tools for:
- Schema creation
- Commission reprocessing
- Replay of stored events that never finished processing
- Balance queries

Usage:
    python -m commission_engine.cli init-db
    python -m commission_engine.cli reprocess --all --limit 100
    python -m commission_engine.cli reprocess --payment-id X --payment-id Y
    python -m commission_engine.cli replay-events --limit 100
    python -m commission_engine.cli balance --affiliate-id X
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from commission_engine.config import Settings, get_settings
from commission_engine.database import init_db, init_schema
from commission_engine.ingestion.gateway import WebhookGateway
from commission_engine.services.commission_status import CommissionQueryService
from commission_engine.services.environment import EnvironmentResolver
from commission_engine.services.reconciliation import ReconciliationService
from commission_engine.services.settlement import SettlementEngine

logger = logging.getLogger(__name__)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


class CommissionCli:
    """Commission engine command line interface."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.parser = self._build_parser()
        self._session_factory = session_factory
        self._settings = settings

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._session_factory is None:
            _, self._session_factory = init_db()
        return self._session_factory

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m commission_engine.cli",
            description="Commission engine operational tools",
        )
        parser.add_argument(
            "--log-level",
            default=None,
            help="Logging level (default: LOG_LEVEL setting)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # init-db command
        subparsers.add_parser("init-db", help="Create database tables")

        # reprocess command
        reprocess = subparsers.add_parser(
            "reprocess",
            help="Reprocess payments with incomplete commission settlement",
        )
        target = reprocess.add_mutually_exclusive_group(required=True)
        target.add_argument(
            "--all",
            action="store_true",
            help="Reprocess every pending payment",
        )
        target.add_argument(
            "--payment-id",
            type=parse_uuid,
            action="append",
            dest="payment_ids",
            help="Payment ID to reprocess (repeatable)",
        )
        reprocess.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum payments to reprocess with --all (default: REPROCESS_BATCH_LIMIT)",
        )

        # replay-events command
        replay = subparsers.add_parser(
            "replay-events",
            help="Process stored events that never finished processing",
        )
        replay.add_argument(
            "--limit",
            type=int,
            default=100,
            help="Maximum events to replay (default: 100)",
        )

        # balance command
        balance = subparsers.add_parser("balance", help="Show an affiliate's commission balance")
        balance.add_argument(
            "--affiliate-id",
            type=parse_uuid,
            required=True,
            help="Affiliate ID",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        logging.basicConfig(
            level=(parsed.log_level or self.settings.log_level).upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "init-db": self._cmd_init_db,
            "reprocess": self._cmd_reprocess,
            "replay-events": self._cmd_replay_events,
            "balance": self._cmd_balance,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create all tables."""
        engine = self.session_factory.kw["bind"]
        init_schema(engine)
        print("Database schema created.")
        return 0

    def _cmd_reprocess(self, args: argparse.Namespace) -> int:
        """Reprocess payments and print the outcome of each."""
        with self.session_factory() as session:
            engine = SettlementEngine(
                session,
                EnvironmentResolver(session, self.settings),
                max_depth=self.settings.max_commission_depth,
            )
            service = ReconciliationService(session, engine)
            if args.all:
                report = service.reprocess_all(
                    limit=args.limit or self.settings.reprocess_batch_limit
                )
            else:
                report = service.reprocess_many(args.payment_ids)
            session.commit()

        print(json.dumps(report.to_dict(), indent=2))
        return 0 if report.success else 1

    def _cmd_replay_events(self, args: argparse.Namespace) -> int:
        """Replay unprocessed stored events."""
        with self.session_factory() as session:
            counts = WebhookGateway(session, self.settings).replay_unprocessed(args.limit)
            session.commit()

        print(f"Replayed events: {counts['processed']} processed, {counts['failed']} failed")
        return 0 if counts["failed"] == 0 else 1

    def _cmd_balance(self, args: argparse.Namespace) -> int:
        """Show affiliate balance."""
        with self.session_factory() as session:
            balance = CommissionQueryService(session).balance(args.affiliate_id)

        print(f"Balance for affiliate: {args.affiliate_id}")
        print(f"\n  Pending:      {balance.pending:>15,.2f}")
        print(f"  Available:    {balance.available:>15,.2f}")
        print(f"  Reserved:     {balance.reserved:>15,.2f}")
        print(f"  Withdrawable: {balance.withdrawable:>15,.2f}")
        print(f"  Withdrawn:    {balance.withdrawn:>15,.2f}")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = CommissionCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
