"""
Notification preference rules.

Decides whether a notification type may be pushed to a subject.
"""

from typing import Optional

import structlog

from notify_guard.storage.models import NotificationPreferences

logger = structlog.get_logger(__name__)

CHAT_MESSAGE = "chat_message"
CHAT_MENTION = "chat_mention"
TEAM_ACTIVITY = "team_activity"
TASK_UPDATE = "task_update"
SYSTEM_ALERT = "system_alert"
ACCOUNT_SECURITY = "account_security"
WEEKLY_REMINDER = "weekly_reminder"

_FLAG_BY_TYPE = {
    TEAM_ACTIVITY: "team_activity",
    TASK_UPDATE: "task_updates",
    SYSTEM_ALERT: "system_alerts",
    ACCOUNT_SECURITY: "account_security",
    WEEKLY_REMINDER: "weekly_reminders",
}


def should_send_notification(
    prefs: Optional[NotificationPreferences],
    notification_type: str
) -> bool:
    """Apply a subject's preferences to one notification type.

    Missing preferences mean defaults. Unknown types are allowed.
    """
    if prefs is None:
        prefs = NotificationPreferences()

    if not prefs.notifications_enabled:
        return False

    if notification_type == CHAT_MESSAGE:
        return prefs.chat_mode == "all"
    if notification_type == CHAT_MENTION:
        return prefs.chat_mode != "mute"

    flag = _FLAG_BY_TYPE.get(notification_type)
    if flag is None:
        logger.info("unknown_notification_type", notification_type=notification_type)
        return True
    return getattr(prefs, flag)


def preference_filter(subscriptions, notification_type: str):
    """Build a fan-out recipient filter backed by stored preferences.

    Args:
        subscriptions: Store with get_preferences(subject_id)
        notification_type: Type being sent

    Returns:
        Callable taking a subject_id and returning True to notify
    """
    def _allowed(subject_id: str) -> bool:
        return should_send_notification(
            subscriptions.get_preferences(subject_id), notification_type
        )
    return _allowed
