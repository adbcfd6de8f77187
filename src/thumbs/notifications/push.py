"""Push persisted notifications to the recipient's live session."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from thumbs.ws.messages import envelope

if TYPE_CHECKING:
    from thumbs.db.models import Notification
    from thumbs.ws.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "read": notification.read,
        "createdAt": notification.created_at.isoformat() if notification.created_at else None,
    }


def push_notification(registry: ConnectionRegistry, notification: Notification) -> bool:
    """Send a ``notification`` envelope if the recipient is connected.

    The notification must already be committed. Returns True when queued;
    an offline recipient simply finds it in their inbox later.
    """
    delivered = registry.send_to_user(
        notification.user_id,
        envelope("notification", notification=serialize_notification(notification)),
    )
    if not delivered:
        logger.debug("User %s offline, notification %s stored only", notification.user_id, notification.id)
    return delivered


def push_notifications(registry: ConnectionRegistry, notifications: Iterable[Notification]) -> int:
    return sum(1 for n in notifications if push_notification(registry, n))
