#!/usr/bin/env python3
"""Recreate the SpotCheck schema from the models (DESTRUCTIVE). Drops every table then creates them."""
import argparse
import asyncio
import sys

from spotcheck import database, models


async def run(database_url=None):
    engine = database.init_engine(database_url)
    try:
        async with engine.begin() as conn:
            print("Dropping all tables...")
            await conn.run_sync(models.Base.metadata.drop_all)
            print("Creating all tables...")
            await conn.run_sync(models.Base.metadata.create_all)
        print("Schema recreated successfully.")
    except Exception as e:
        print("Error recreating schema:", e, file=sys.stderr)
        raise
    finally:
        await database.dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    args = parser.parse_args()
    if not args.yes and input("This deletes all SpotCheck data. Type 'yes' to continue: ").strip() != "yes":
        sys.exit("Aborted.")
    asyncio.run(run(args.database_url))
