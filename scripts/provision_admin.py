#!/usr/bin/env python3
"""Provision an admin identity in the chatrelay store.

Admins cannot register over the WebSocket; they must exist in the
identity directory before they send ``admin-info``.

Usage:
    python scripts/provision_admin.py "Support Desk" support@example.com
    python scripts/provision_admin.py "Support Desk" support@example.com --db /var/lib/chatrelay.db
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from chatrelay.history import HistoryService  # noqa: E402


async def provision(db_path: str, name: str, email: str) -> bool:
    history = HistoryService(db_path)
    await history.open()
    try:
        return await history.upsert_identity(name, email)
    finally:
        await history.close()


def main():
    parser = argparse.ArgumentParser(description="Provision an admin identity")
    parser.add_argument("name", help="Display name")
    parser.add_argument("email", help="Admin email (the login identifier)")
    parser.add_argument(
        "--db",
        default=os.environ.get("CHATRELAY_DB_PATH", str(PROJECT_ROOT / "chatrelay.db")),
        help="Path to the SQLite store",
    )
    args = parser.parse_args()

    name = args.name.strip()
    email = args.email.strip()
    if not name or not email:
        parser.error("name and email must be non-empty")

    if not asyncio.run(provision(args.db, name, email)):
        print(f"Failed to provision {email}", file=sys.stderr)
        sys.exit(1)
    print(f"Provisioned admin {name} <{email}> in {args.db}")


if __name__ == "__main__":
    main()
