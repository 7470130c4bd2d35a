#!/usr/bin/env python3
"""Create (or reuse) a parent for an identity subject and print a session token for it."""
import argparse
import asyncio

from spotcheck import crud, database
from spotcheck.auth import mint_session_jwt


async def run(subject, email=None, days=None):
    database.init_engine()
    await database.create_schema()
    try:
        async with database.AsyncSessionLocal() as db:
            parent = await crud.ensure_parent(db, subject, email)
        print(f"parent_id: {parent.id}")
        print(f"token:     {mint_session_jwt(parent.id, parent.apple_sub, days)}")
    finally:
        await database.dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("subject", help="Identity subject (Sign in with Apple 'sub')")
    parser.add_argument("--email")
    parser.add_argument("--days", type=int, help="Token lifetime in days")
    args = parser.parse_args()
    asyncio.run(run(args.subject, args.email, args.days))
