"""
Mark Pending installments past their due date as Overdue.

Idempotent: rows already Overdue or Paid are never touched, so it is safe to run from cron.
Usage: python -m app.scripts.sweep_overdue [--days N]
"""

import argparse
import asyncio
import sys

from app.core.ledger.collaborators import DbAuditSink
from app.core.ledger.store import LedgerStore
from app.core.ledger.sweeper import OverdueSweeper
from app.core.log_config import configure_logging
from app.db.session import AsyncSessionLocal, engine


async def sweep_overdue(days=None) -> int:
    sweeper = OverdueSweeper(LedgerStore(AsyncSessionLocal), DbAuditSink(AsyncSessionLocal))
    try:
        return await sweeper.sweep(days)
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--days", type=int, default=None, help="Only installments overdue by more than N days")
    args = parser.parse_args(argv)
    if args.days is not None and args.days < 0:
        parser.error("--days must not be negative")

    configure_logging()
    promoted = asyncio.run(sweep_overdue(args.days))
    print(f"Marked {promoted} installment(s) overdue.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
