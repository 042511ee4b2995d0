#!/usr/bin/env python3
"""
Driver CLI — provision carpool groups.

Usage (from project root):
    python scripts/create_group.py new NAME DRIVER_NAME DRIVER_PHONE semanal 120
    python scripts/create_group.py new NAME DRIVER_NAME DRIVER_PHONE por_trajeto 12.50 [07:00] [18:00]
    python scripts/create_group.py week GROUP_ID [YYYY-MM-DD]     # trips for another week
    python scripts/create_group.py invite GROUP_ID                # renew the invite link
"""

import asyncio
import os
import sys
from datetime import date
from decimal import InvalidOperation

# Allow running as `python scripts/create_group.py` from project root.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cajurona.config import ConfigError, load_settings
from cajurona.factory import create_gateway, create_store
from cajurona.domain.store import ZERO, to_money
from cajurona.groups import GroupProvisioner


async def new_group(provisioner: GroupProvisioner, args: list[str]) -> None:
    name, driver_name, driver_phone, pricing_model, price = args[:5]
    if pricing_model not in ("semanal", "por_trajeto"):
        print(f"Unknown pricing model {pricing_model!r} (semanal or por_trajeto).")
        return
    try:
        amount = to_money(price.replace(",", "."))
    except InvalidOperation:
        print(f"Invalid price {price!r}.")
        return

    group = await provisioner.create_group(
        name,
        driver_name,
        driver_phone,
        outbound_time=args[5] if len(args) > 5 else "07:00",
        return_time=args[6] if len(args) > 6 else "18:00",
        pricing_model=pricing_model,
        weekly_price=amount if pricing_model == "semanal" else ZERO,
        per_trip_price=amount if pricing_model == "por_trajeto" else ZERO,
    )
    print(f"\nGroup {group.name!r} created.")
    print(f"  ID:        {group.group_id}")
    print(f"  WhatsApp:  {group.whatsapp_group_id}")
    print(f"  Invite:    {group.invite_link or '(not available yet)'}")
    print(f"  Schedule:  ida {group.outbound_time}  volta {group.return_time}\n")


async def add_week(provisioner: GroupProvisioner, store, group_id: str, week_of: date) -> None:
    group = await store.get_group(group_id)
    if not group:
        print(f"Group {group_id} not found.")
        return
    trips = await provisioner.create_week_trips(group, week_of)
    print(f"{len(trips)} trip(s) created for the week of {week_of:%d/%m}.")


async def renew_invite(provisioner: GroupProvisioner, store, group_id: str) -> None:
    group = await store.get_group(group_id)
    if not group:
        print(f"Group {group_id} not found.")
        return
    link = await provisioner.renew_invite_link(group)
    print(f"New invite link: {link}" if link else "Group has no WhatsApp group.")


async def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    store = create_store(settings)
    provisioner = GroupProvisioner(store, create_gateway(settings))

    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    args = sys.argv[2:]

    if cmd == "new" and len(args) >= 5:
        await new_group(provisioner, args)
    elif cmd == "week" and len(args) >= 1:
        week_of = date.fromisoformat(args[1]) if len(args) > 1 else date.today()
        await add_week(provisioner, store, args[0], week_of)
    elif cmd == "invite" and len(args) >= 1:
        await renew_invite(provisioner, store, args[0])
    else:
        print(__doc__)


if __name__ == "__main__":
    asyncio.run(main())
