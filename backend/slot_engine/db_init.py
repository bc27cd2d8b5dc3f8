"""
Slot Engine Database Initialization Script

Rules:
1. Environment Guard - requires SLOT_DB_INIT_CONFIRM=YES when APP_ENV=production
2. Idempotent - running multiple times must not duplicate anything
3. No destructive operations - no dropping, deleting, truncation
4. Safe index creation - handles "index already exists" gracefully
5. Dry-run mode - --dry-run prints what it would do
6. Version stamp - tracks init version

The partial unique index on slots.holder_id (active == true) is what makes
"at most one active slot per holder" hold across processes. Do not skip it.

Usage:
    CLI one-off: python -m slot_engine.db_init
    With dry-run: python -m slot_engine.db_init --dry-run
    In production: APP_ENV=production SLOT_DB_INIT_CONFIRM=YES python -m slot_engine.db_init
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pymongo.errors import CollectionInvalid, OperationFailure

from .config import TIER_CATALOG_VERSION
from .mongo_store import HOLDERS, PING_EVENTS, SLOTS

logger = logging.getLogger(__name__)

INIT_VERSION = "v1.0.0"
META = "slot_engine_meta"

REQUIRED_COLLECTIONS = [HOLDERS, SLOTS, PING_EVENTS, META]

# Index definitions: (collection, keys, options)
REQUIRED_INDEXES = [
    (HOLDERS, [("holder_id", 1)], {"unique": True, "name": "idx_holder_id_unique"}),

    (SLOTS, [("id", 1)], {"unique": True, "name": "idx_slot_id_unique"}),
    (SLOTS, [("holder_id", 1)], {
        "unique": True,
        "partialFilterExpression": {"active": True},
        "name": "idx_active_holder_unique",
    }),
    (SLOTS, [("active", 1), ("expires_at", 1)], {"name": "idx_active_expires"}),

    (PING_EVENTS, [("slot_id", 1), ("used_at", -1)], {"name": "idx_slot_used_at"}),
    (PING_EVENTS, [("used_at", -1)], {"name": "idx_used_at"}),
]


def production_guard() -> Optional[str]:
    """Reason init must not run here, or None when it may."""
    if os.environ.get("APP_ENV", "development").lower() != "production":
        return None

    confirm = os.environ.get("SLOT_DB_INIT_CONFIRM", "")
    if confirm == "YES":
        return None
    return (
        "Refusing to initialize the production database.\n"
        f"Set SLOT_DB_INIT_CONFIRM=YES to proceed (current value: '{confirm}')"
    )


async def init_database(db, dry_run: bool = False) -> List[str]:
    """Create missing collections and indexes, then stamp the version. Returns the log lines."""
    action = "DRY-RUN" if dry_run else "CREATE"
    lines = ["=== Collections ==="]

    existing = set(await db.list_collection_names())
    for name in REQUIRED_COLLECTIONS:
        if name in existing:
            lines.append(f"  [SKIP] collection {name}")
            continue
        if not dry_run:
            try:
                await db.create_collection(name)
            except CollectionInvalid:
                # Created concurrently
                lines.append(f"  [SKIP] collection {name}")
                continue
        lines.append(f"  [{action}] collection {name}")

    lines.append("=== Indexes ===")
    index_names: Dict[str, set] = {}
    for name, keys, options in REQUIRED_INDEXES:
        if name not in index_names:
            index_names[name] = set(await db[name].index_information())

        index_name = options["name"]
        if index_name in index_names[name]:
            lines.append(f"  [SKIP] index {name}.{index_name}")
            continue
        if not dry_run:
            try:
                await db[name].create_index(keys, **options)
            except OperationFailure as e:
                if "already exists" not in str(e).lower():
                    raise
                lines.append(f"  [SKIP] index {name}.{index_name}")
                continue
        lines.append(f"  [{action}] index {name}.{index_name}")

    lines.append("=== Version Stamp ===")
    if dry_run:
        lines.append(f"  [DRY-RUN] version stamp {INIT_VERSION}")
    else:
        await db[META].update_one(
            {"_id": "slot_engine_init"},
            {"$set": {
                "version": INIT_VERSION,
                "tier_catalog_version": TIER_CATALOG_VERSION,
                "applied_at": datetime.now(timezone.utc),
            }},
            upsert=True,
        )
        lines.append(f"  [UPDATE] version stamp {INIT_VERSION}")
    return lines


async def run_init(dry_run: bool = False):
    from database import check_db_connection, create_client, get_database, validate_required_env_vars

    load_dotenv(Path(__file__).parent.parent / ".env")

    blocked = production_guard()
    if blocked:
        logger.error(blocked)
        sys.exit(1)
    logger.info(f"Environment: {os.environ.get('APP_ENV', 'development')}")

    try:
        validate_required_env_vars()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    client = create_client()
    db = get_database(client)

    logger.info(f"Database: {db.name}")
    logger.info(f"Dry Run: {dry_run}")
    logger.info("-" * 50)

    ok, error = await check_db_connection(client, db)
    if not ok:
        logger.error(error)
        sys.exit(1)

    for line in await init_database(db, dry_run):
        logger.info(line)

    client.close()

    logger.info("=" * 50)
    logger.info("SUCCESS: Slot Engine DB init completed")
    logger.info("=" * 50)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description="Slot Engine Database Initialization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Development (default)
    python -m slot_engine.db_init

    # Dry run (no changes)
    python -m slot_engine.db_init --dry-run

    # Production
    APP_ENV=production SLOT_DB_INIT_CONFIRM=YES python -m slot_engine.db_init
        """
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print what would be done without making changes'
    )

    args = parser.parse_args()

    asyncio.run(run_init(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
