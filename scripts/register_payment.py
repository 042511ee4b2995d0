#!/usr/bin/env python3
"""
Driver CLI — record a rider's payment and show what is still pending.

Usage (from project root):
    python scripts/register_payment.py PHONE AMOUNT [DESCRIPTION]
    python scripts/register_payment.py balance PHONE
"""

import asyncio
import os
import sys
from decimal import InvalidOperation

# Allow running as `python scripts/register_payment.py` from project root.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cajurona.config import ConfigError, load_settings
from cajurona.domain.store import to_money
from cajurona.factory import create_store
from cajurona.ledger import PresenceLedger
from cajurona.onboarding import MemberDirectory


async def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    store = create_store(settings)
    directory = MemberDirectory(store)
    ledger = PresenceLedger(store)

    if len(sys.argv) >= 3 and sys.argv[1] == "balance":
        member = await directory.resolve_member(sys.argv[2])
        if not member:
            print(f"No active member with phone {sys.argv[2]}.")
            return
        print(await ledger.balance_message(member))
        return

    if len(sys.argv) < 3:
        print(__doc__)
        return

    phone = sys.argv[1]
    try:
        amount = to_money(sys.argv[2].replace(",", "."))
    except InvalidOperation:
        print(f"Invalid amount {sys.argv[2]!r}.")
        return
    description = " ".join(sys.argv[3:]) or "Pagamento"

    member = await directory.resolve_member(phone)
    if not member:
        print(f"No active member with phone {phone}.")
        return

    print(await ledger.register_payment(member.group_id, member.member_id, amount, description))


if __name__ == "__main__":
    asyncio.run(main())
