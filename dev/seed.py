#!/usr/bin/env python3
"""
Seed script: a demo parent with two devices, schedules, a few events and a
pending extra-time request, for poking at the dashboard.
Run with: python dev/seed.py
"""
import asyncio
import os
import sys

# Add parent directory to path so we can import spotcheck modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from spotcheck import crud, database, extra_time
from spotcheck.auth import mint_session_jwt
from spotcheck.clock import now_ms
from spotcheck.errors import ServiceMisconfigured
from spotcheck.schemas import PolicyPatch

DEMO_SUBJECT = "demo-parent-subject"
SCHOOL_NIGHTS = {day: {"start": "21:30", "end": "07:00"} for day in ("sun", "mon", "tue", "wed", "thu")}
WEEKEND = {day: {"start": "23:00", "end": "08:30"} for day in ("fri", "sat")}


async def create_seed_data():
    database.init_engine()
    await database.create_schema()

    async with database.AsyncSessionLocal() as db:
        parent = await crud.ensure_parent(db, DEMO_SUBJECT, "parent@example.com")
        existing = await crud.list_devices(db, parent.id)
        if existing:
            print(f"Found {len(existing)} demo devices. Skipping device creation.")
            return parent

        print("Creating seed data...")
        now = now_ms()

        phone = await crud.create_device(db, "Sam's iPhone", parent.id)
        await crud.apply_policy_patch(
            db,
            phone.id,
            PolicyPatch(quietDays={**SCHOOL_NIGHTS, **WEEKEND}, tz="Europe/Paris", setWifiOff=True),
        )
        for minutes_ago in (90, 45, 5):
            crud.add_device_event(db, phone.id, "policy_fetch", now - minutes_ago * 60_000, ["fetch_policy"])
        crud.add_device_event(
            db,
            phone.id,
            "automation",
            now - 30 * 60_000,
            ["set_hotspot_off", "rotate_password"],
            result_ok=False,
            result_errors=["hotspot toggle timed out"],
            shortcut_version="2.3",
        )
        await db.commit()
        await extra_time.request_extra_time(db, phone.id, 20, "Finishing homework", now)

        tablet = await crud.create_device(db, "Family iPad", parent.id)
        await crud.apply_policy_patch(
            db,
            tablet.id,
            PolicyPatch(quietStart="22:00", quietEnd="06:30", rotatePassword=False),
        )
        await extra_time.grant_direct(db, tablet.id, 30, "movie night", parent.id, now)

        print(f"Created devices {phone.id} and {tablet.id}")
        return parent


async def main():
    try:
        parent = await create_seed_data()
        print(f"parent_id: {parent.id}")
        try:
            print(f"session token: {mint_session_jwt(parent.id, parent.apple_sub)}")
        except ServiceMisconfigured:
            print("(set SESSION_JWT_SECRET to print a session token)")
    finally:
        await database.dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
