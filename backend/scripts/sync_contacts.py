#!/usr/bin/env python3
"""
Run a HubSpot -> Postgres contact sync from the command line.

Usage:
    python scripts/sync_contacts.py [--mode sync|insert|incremental|customers] [--user-id UUID]

Examples:
    python scripts/sync_contacts.py --mode incremental
    python scripts/sync_contacts.py --mode insert --user-id dbe0b687-6967-4874-a26d-10f6289ae350

Run from backend/ or project root. Reads .env from project root; --user-id
defaults to SYNC_USER_ID.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv

_env_path: Path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(_env_path)

from config import settings
from models.database import close_db
from services.contact_sync import SyncMode, sync_all_contacts


async def main(mode: str, user_id: str) -> int:
    try:
        result = await sync_all_contacts(user_id, mode=mode, trigger="cli")
    finally:
        await close_db()

    print(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.success:
        print(f"Sync failed: {result.error_message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync HubSpot contacts into Postgres")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in SyncMode],
        default=SyncMode.SYNC.value,
        help="Sync mode (default: sync)",
    )
    parser.add_argument("--user-id", default=None, help="Owner of the synced rows")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")

    owner = args.user_id or settings.SYNC_USER_ID
    if not owner:
        print("ERROR: pass --user-id or set SYNC_USER_ID", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(main(args.mode, owner)))
