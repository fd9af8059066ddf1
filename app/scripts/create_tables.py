"""
Create the ledger tables (payment_plans, installments, gateway_payments, students, receipts, audit_logs).

Only creates missing tables; existing tables are left as they are.
Usage: python -m app.scripts.create_tables
"""

import asyncio

from app.db.session import create_tables, engine


async def main() -> None:
    try:
        await create_tables(engine)
    finally:
        await engine.dispose()
    print("Ledger tables are in place.")


if __name__ == "__main__":
    asyncio.run(main())
