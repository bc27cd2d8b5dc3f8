"""
Slot Engine worker

Wires the process together at startup:
    env -> store -> authorization reconciler -> lifecycle engine -> sweep

The chat-platform gateway imports build_runtime() to get the engine and the
command surface; run as a module to host the expiration sweep on its own:

    python worker.py
"""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
# Before slot_engine imports: slot_engine.config reads the environment at import
load_dotenv(ROOT_DIR / ".env")

from database import create_client, get_database, validate_required_env_vars
from slot_engine.commands import SlotCommands
from slot_engine.config import AUTH_TIMEOUT_SECONDS, SWEEP_INTERVAL_SECONDS, TIER_CATALOG_VERSION
from slot_engine.discord_backend import DiscordAuthorizationBackend
from slot_engine.errors import StoreUnavailableError
from slot_engine.lifecycle import SlotLifecycleEngine
from slot_engine.memory_store import MemorySlotStore
from slot_engine.mongo_store import MongoSlotStore
from slot_engine.reconciler import AuthorizationReconciler
from slot_engine.store import EntitlementStore
from slot_engine.sweep import ExpirationSweep

logger = logging.getLogger(__name__)

AUTHORIZATION_VARS = {
    "GUILD_ID": "Discord guild (server) id",
    "SLOT_ROLE_ID": "Shared role granted to every slot holder",
}


@dataclass
class SlotRuntime:
    store: EntitlementStore
    backend: DiscordAuthorizationBackend
    engine: SlotLifecycleEngine
    commands: SlotCommands
    sweep: ExpirationSweep
    mongo_client: Optional[object] = None

    async def close(self):
        self.sweep.stop()
        await self.backend.aclose()
        if self.mongo_client is not None:
            self.mongo_client.close()


def build_store():
    """Memory store when SLOT_STORE=memory, MongoDB otherwise. Returns (store, client)."""
    if os.environ.get("SLOT_STORE", "mongo").lower() == "memory":
        logger.warning("Using in-memory slot store; slots are lost on restart")
        return MemorySlotStore(), None

    validate_required_env_vars()
    client = create_client()
    return MongoSlotStore(get_database(client)), client


def build_runtime() -> SlotRuntime:
    token = os.environ.get("DISCORD_BOT_TOKEN") or os.environ.get("DISCORD_TOKEN")
    if not token:
        raise ValueError("DISCORD_BOT_TOKEN environment variable is required")
    validate_required_env_vars(AUTHORIZATION_VARS)

    store, client = build_store()
    backend = DiscordAuthorizationBackend(token, os.environ["GUILD_ID"])
    reconciler = AuthorizationReconciler(
        backend,
        grant_ref=os.environ["SLOT_ROLE_ID"],
        timeout_seconds=AUTH_TIMEOUT_SECONDS,
    )
    engine = SlotLifecycleEngine(store, reconciler)

    return SlotRuntime(
        store=store,
        backend=backend,
        engine=engine,
        commands=SlotCommands(engine),
        sweep=ExpirationSweep(engine, store, SWEEP_INTERVAL_SECONDS),
        mongo_client=client,
    )


async def run():
    runtime = build_runtime()
    logger.info(f"Slot worker starting (tier catalog {TIER_CATALOG_VERSION})")
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    runtime.sweep.start()
    # Catch up on anything that expired while the worker was down
    try:
        await runtime.sweep.run_once()
    except StoreUnavailableError as e:
        logger.error(f"Startup sweep failed, next scheduled run will retry: {e}")

    await stop.wait()
    logger.info("Shutting down slot worker")
    await runtime.close()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
