"""
Shared fixtures for slot engine tests.

The authorization backend is an AsyncMock so tests can count reconciliation
calls; the store is the in-memory implementation.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from slot_engine.lifecycle import SlotLifecycleEngine
from slot_engine.memory_store import MemorySlotStore
from slot_engine.reconciler import AuthorizationBackend, AuthorizationReconciler

T0 = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)
ROLE_ID = "role-slot"
CHANNEL_ID = "chan-1"


@pytest.fixture
def backend():
    backend = AsyncMock(spec=AuthorizationBackend)
    backend.get_resource_label.return_value = "general"
    return backend


@pytest.fixture
def reconciler(backend):
    return AuthorizationReconciler(backend, grant_ref=ROLE_ID, timeout_seconds=0.05)


@pytest.fixture
def store():
    return MemorySlotStore()


@pytest.fixture
def engine(store, reconciler):
    return SlotLifecycleEngine(store, reconciler)
