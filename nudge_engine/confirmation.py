"""Handling of user actions taken on deadline status-check notifications."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from nudge_engine.store import RuntimeStore

LOGGER = logging.getLogger("nudge_engine.confirmation")

ACTION_COMPLETION = {"complete": True, "working": False}

CONFIRMATION_MESSAGES = {
    True: "Marked complete.",
    False: "Saved as still working.",
}


async def handle_notification_action(
    store: RuntimeStore,
    item_id: str,
    action: str,
    at: Optional[datetime] = None,
) -> Optional[dict[str, Any]]:
    """Apply a ``complete``/``working`` action to *item_id*.

    Returns None for an unknown item or an action that carries no status
    (``view`` only opens the app).
    """

    completed = ACTION_COMPLETION.get(action)
    if completed is None:
        LOGGER.debug("Ignoring action %r for %s", action, item_id)
        return None

    result = await store.confirm_status(item_id, completed, at)
    if result is None:
        LOGGER.info("Confirmation for unknown item %s ignored", item_id)
        return None

    item, state = result
    LOGGER.info("Item %s confirmed %s", item_id, "complete" if completed else "in progress")
    return {
        "item": item,
        "reminder": state,
        "message": CONFIRMATION_MESSAGES[completed],
    }
