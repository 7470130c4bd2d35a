#!/usr/bin/env python3
"""Enroll a device and print its credentials (and optionally a pairing code)."""
import argparse
import asyncio

from spotcheck import crud, database
from spotcheck.clock import now_ms


async def run(name, parent_id=None, pairing_ttl=None):
    database.init_engine()
    await database.create_schema()
    try:
        async with database.AsyncSessionLocal() as db:
            if parent_id and await crud.get_parent(db, parent_id) is None:
                raise SystemExit(f"Unknown parent {parent_id}")
            device = await crud.create_device(db, name, parent_id)
            print(f"device_id:     {device.id}")
            print(f"device_token:  {device.device_token}")
            print(f"device_secret: {device.device_secret}")
            if pairing_ttl:
                code = await crud.create_pairing_code(db, device.id, pairing_ttl, now_ms())
                print(f"pairing_code:  {code.code} (valid {pairing_ttl} min)")
    finally:
        await database.dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("name")
    parser.add_argument("--parent-id")
    parser.add_argument("--pairing-code", type=int, metavar="TTL_MINUTES", choices=range(1, 61))
    args = parser.parse_args()
    asyncio.run(run(args.name, args.parent_id, args.pairing_code))
