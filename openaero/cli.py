import argparse
import json
import logging
import sys

from openaero.db import session_factory
from openaero.services.bom.repository import BomRepository
from openaero.services.payment.status_sync import PaymentStatusSyncService
from openaero.settings import settings

# 로그 설정
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("openaero.cli")


def _print(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def run_sync_payments(args) -> None:
    """PENDING/PROCESSING 거래 결제사 조회 동기화"""
    with session_factory() as session:
        with session.begin():
            summary = PaymentStatusSyncService(session).sync_pending(limit=args.limit)
    _print(summary)
    if summary["failed"]:
        sys.exit(2)


def run_bom_check(args) -> None:
    with session_factory() as session:
        _print(BomRepository(session).migration_status())


def run_bom_verify(args) -> None:
    """행과 Solution.bom 투영본 비교"""
    with session_factory() as session:
        report = BomRepository(session).verify_consistency()
    _print(report)
    if report["mismatches"]:
        sys.exit(2)


def run_bom_migrate(args) -> None:
    """레거시 Solution.bom JSON 을 solution_bom_items 로 이관"""
    with session_factory() as session:
        with session.begin():
            report = BomRepository(session).migrate_legacy(dry_run=args.dry_run)
    _print(report)
    if report.get("errors"):
        sys.exit(2)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="OpenAero Operations CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser("sync-payments", help="Reconcile pending payments with providers")
    sync_parser.add_argument("--limit", type=int, default=None)

    subparsers.add_parser("bom-check", help="Report BOM storage migration status")
    subparsers.add_parser("bom-verify", help="Compare BOM rows with the JSON projection")

    migrate_parser = subparsers.add_parser("bom-migrate", help="Migrate legacy BOM JSON into rows")
    migrate_parser.add_argument("--dry-run", action="store_true")

    args = parser.parse_args(argv)

    commands = {
        "sync-payments": run_sync_payments,
        "bom-check": run_bom_check,
        "bom-verify": run_bom_verify,
        "bom-migrate": run_bom_migrate,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return

    try:
        handler(args)
    except Exception as e:
        logger.exception(f"[CLI] Critical error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
