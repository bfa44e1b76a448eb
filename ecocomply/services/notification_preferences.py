"""
Per-user notification preferences.

Stored on ``users.settings["notification_preferences"]`` as a list of::

    {"notification_type": "DEADLINE_REMINDER",
     "channel_preference": "EMAIL_ONLY",
     "frequency_preference": "IMMEDIATE",
     "enabled": true}

Lookup falls back from the exact type to the ``ALL`` entry, then to the
system default (all channels, immediate, enabled).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.models.database_models import User

logger = logging.getLogger(__name__)

ALL_TYPES = "ALL"
DIGEST_FREQUENCIES = frozenset({"DAILY_DIGEST", "WEEKLY_DIGEST"})

# channel_preference → the only channel it allows
_EXCLUSIVE_CHANNELS = {
    "EMAIL_ONLY": "EMAIL",
    "SMS_ONLY": "SMS",
    "IN_APP_ONLY": "IN_APP",
}


def default_preference(notification_type: str) -> Dict[str, Any]:
    return {
        "notification_type": notification_type,
        "channel_preference": "ALL_CHANNELS",
        "frequency_preference": "IMMEDIATE",
        "enabled": True,
    }


def _stored_preferences(user: Optional[User]) -> List[Dict[str, Any]]:
    if user is None or not user.settings:
        return []
    return list(user.settings.get("notification_preferences") or [])


def resolve_preference(
    preferences: Iterable[Dict[str, Any]], notification_type: str
) -> Dict[str, Any]:
    preferences = list(preferences)
    match = next(
        (p for p in preferences if p.get("notification_type") == notification_type), None
    ) or next((p for p in preferences if p.get("notification_type") == ALL_TYPES), None)
    if match is None:
        return default_preference(notification_type)
    return {
        "notification_type": notification_type,
        "channel_preference": match.get("channel_preference") or "ALL_CHANNELS",
        "frequency_preference": match.get("frequency_preference") or "IMMEDIATE",
        "enabled": match.get("enabled") is not False,
    }


async def get_user_preferences(
    user_id: Optional[str], notification_type: str, db: AsyncSession
) -> Dict[str, Any]:
    user = await db.get(User, user_id) if user_id else None
    return resolve_preference(_stored_preferences(user), notification_type)


def allows(preference: Dict[str, Any], channel: str) -> bool:
    """True when *preference* permits sending on *channel* right now."""
    if not preference["enabled"]:
        return False
    only = _EXCLUSIVE_CHANNELS.get(preference["channel_preference"])
    if only is not None and only != channel:
        return False
    if preference["frequency_preference"] == "NEVER":
        return False
    # Digests are collected rather than sent immediately
    if preference["frequency_preference"] in DIGEST_FREQUENCIES:
        return False
    return True


async def should_send_notification(
    user_id: Optional[str],
    notification_type: str,
    channel: str,
    db: AsyncSession,
) -> bool:
    preference = await get_user_preferences(user_id, notification_type, db)
    return allows(preference, channel)


async def list_user_preferences(user_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    return _stored_preferences(await db.get(User, user_id))


async def update_user_preferences(
    user_id: str,
    preferences: Iterable[Dict[str, Any]],
    db: AsyncSession,
) -> List[Dict[str, Any]]:
    """Upsert *preferences* by notification_type; returns the stored list."""
    user = await db.get(User, user_id)
    if user is None:
        raise ValueError(f"User not found: {user_id}")

    merged = {p["notification_type"]: p for p in _stored_preferences(user)}
    for pref in preferences:
        merged[pref["notification_type"]] = {
            **default_preference(pref["notification_type"]),
            **merged.get(pref["notification_type"], {}),
            **pref,
        }

    settings = dict(user.settings or {})
    settings["notification_preferences"] = list(merged.values())
    user.settings = settings
    await db.flush()
    logger.info("Updated %d notification preference(s) for user %s", len(merged), user_id)
    return settings["notification_preferences"]
