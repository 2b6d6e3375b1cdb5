"""
Script to create the webhook_events table.

Handy for local development; production schemas are managed by Alembic.
"""
import asyncio
import sys

from app.database import engine
from app.models.base import Base
from app.models.webhook import WebhookEvent  # noqa: F401  registers the table


async def create_all_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("All tables dropped!")


async def main():
    if "--drop" in sys.argv:
        await drop_all_tables()
    print("Creating database tables...")
    await create_all_tables()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
