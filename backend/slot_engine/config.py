"""
Slot Engine Configuration and Constants

Tier catalog, user-facing error messages and runtime settings are defined here.
Durations and windows are in hours unless the key says otherwise.
"""

import os

# ==================== TIER CATALOG ====================
# Changing this table is a deployment-time change. Bump the version with it.
TIER_CATALOG_VERSION = "2025.1"

TIER_CATALOG = {
    "tier1": {
        "name": "Tier 1",
        "duration_days": 7,
        "ping_window_hours": 72,
        "pings_per_window": 1,
    },
    "tier2": {
        "name": "Tier 2",
        "duration_days": 14,
        "ping_window_hours": 48,
        "pings_per_window": 1,
    },
    "tier3": {
        "name": "Tier 3",
        "duration_days": 30,
        "ping_window_hours": 24,
        "pings_per_window": 1,
    },
    "tier4": {
        "name": "Tier 4",
        "duration_days": None,  # lifetime
        "ping_window_hours": 24,
        "pings_per_window": 1,
    },
    "partnered": {
        "name": "Partnered",
        "duration_days": None,  # lifetime
        "ping_window_hours": 24,
        "pings_per_window": 2,
    },
}

# ==================== RESOURCE LABELS ====================
# Applied to the slot channel on grant, original name restored on revoke
SLOT_LABEL_TEMPLATE = "🛒│{name}-slot"

# ==================== ERROR CODES ====================
ERROR_CODES = {
    "DUPLICATE_SLOT": "{name} already has an active slot.",
    "NO_ACTIVE_SLOT": "{name} doesn't have an active slot.",
    "UNKNOWN_TIER": "Unknown slot tier '{tier}'. Valid tiers: {valid}.",
    "AUTHORIZATION_UNAVAILABLE": "Could not update permissions right now. Please check bot permissions and try again.",
    "STORE_UNAVAILABLE": "Slot storage is unavailable. Please try again later.",
}

# ==================== DISCORD CONFIGURATION ====================
DISCORD_CONFIG = {
    "api_base": "https://discord.com/api/v10",
    # VIEW_CHANNEL (1 << 10) | SEND_MESSAGES (1 << 11)
    "slot_channel_allow": (1 << 10) | (1 << 11),
    "user_agent": "DiscordBot (slot-engine, 1.0.0)",
}

# ==================== RUNTIME SETTINGS ====================
SWEEP_INTERVAL_SECONDS = int(os.environ.get("SLOT_SWEEP_INTERVAL_SECONDS", "300"))
AUTH_TIMEOUT_SECONDS = float(os.environ.get("SLOT_AUTH_TIMEOUT_SECONDS", "10"))
EXPIRING_SOON_HOURS = int(os.environ.get("SLOT_EXPIRING_SOON_HOURS", "24"))
