"""
Data models for storage layer.

Defines the ledger and subscription entities.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one metered operation.
    
    Append-only rows that make up the quota ledger.
    Once written, these records must never be modified.
    """
    subject_id: str
    operation_name: str
    units_consumed: float
    occurred_at: datetime


@dataclass(frozen=True)
class PushSubscription:
    """A registered browser/device push endpoint for a subject."""
    subject_id: str
    endpoint: str
    p256dh: str
    auth: str
    delivery_type: str = "web"


@dataclass(frozen=True)
class NotificationPreferences:
    """Per-subject notification opt-ins.
    
    Defaults mirror a subject who never opened the settings page:
    everything enabled, all chat messages delivered.
    """
    notifications_enabled: bool = True
    chat_mode: str = "all"
    team_activity: bool = True
    task_updates: bool = True
    system_alerts: bool = True
    account_security: bool = True
    weekly_reminders: bool = True
    
    def __post_init__(self):
        """Validate chat mode."""
        if self.chat_mode not in ("all", "mentions", "mute"):
            raise ValueError("chat_mode must be one of: ['all', 'mentions', 'mute']")
