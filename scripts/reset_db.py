import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.db.session import AsyncSessionLocal  # type: ignore
from sqlalchemy import text


TABLES = [
    ("affiliate_payouts", "Affiliate Payouts"),
    ("affiliate_referrals", "Affiliate Referrals"),
    ("affiliate_payout_accounts", "Payout Accounts"),
    ("affiliates", "Affiliates"),
    ("affiliate_settings", "Affiliate Settings"),
    ("job_runs", "Job Runs"),
    ("audit_logs", "Audit Logs"),
]


async def reset_database():
    """Resets the database completely.

    Performs the following operations:
        1. Truncates all affiliate ledger tables
        2. Resets identity sequences of audit logs and job runs
        3. Clears audit and job history

    Returns:
        bool: True if reset was successful, False otherwise.
    """
    print("Starting database reset...")
    print("-" * 60)

    async with AsyncSessionLocal() as session:
        try:
            await session.execute(text("SET session_replication_role = 'replica';"))

            for table_name, display_name in TABLES:
                await session.execute(
                    text(f"TRUNCATE TABLE {table_name} RESTART IDENTITY CASCADE;")
                )
                print(f"Truncated table: {display_name}")

            await session.execute(text("SET session_replication_role = 'origin';"))

            await session.commit()
            print("-" * 60)
            print("Database reset successful")
            print("\nCurrent state:")

            for table_name, display_name in TABLES:
                result = await session.execute(
                    text(f"SELECT COUNT(*) FROM {table_name}")
                )
                print(f"  {display_name}: {result.scalar()} records")

            return True

        except Exception as e:
            await session.rollback()
            print(f"\nError during reset: {e}")
            return False


async def confirm_reset() -> bool:
    """Prompts user for confirmation before resetting database."""
    print("\nWARNING: This operation will delete ALL affiliate data")
    print("Only use in development/testing environments")
    print("\nDo you want to continue? (yes/no): ", end="")

    response = input().strip().lower()
    return response in ["yes", "y"]


async def main():
    print("\n" + "=" * 60)
    print("DATABASE RESET")
    print("=" * 60)

    if not await confirm_reset():
        print("\nOperation cancelled by user")
        sys.exit(0)

    if await reset_database():
        print("\nReset complete. Database is clean.")
        sys.exit(0)

    print("\nReset failed. Check logs for details.")
    sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
