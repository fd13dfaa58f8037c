"""
Repository pattern for data access.

Handles the append-only usage ledger, push subscriptions and
notification preferences.
"""

import sqlite3
from dataclasses import asdict
from datetime import datetime, timezone
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import NotificationPreferences, PushSubscription, UsageRecord


class StorageError(Exception):
    """Raised when the underlying store cannot be read or written."""


def _to_db_timestamp(value: datetime) -> str:
    """Serialize a timestamp as fixed-width UTC ISO text.

    A fixed format keeps lexicographic order equal to time order,
    which the window queries depend on.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _open(db_path: str) -> sqlite3.Connection:
    try:
        return get_connection(db_path)
    except sqlite3.Error as e:
        raise StorageError(f"Cannot open database {db_path}: {e}") from e


class UsageRepository:
    """Ledger store for metered operations.

    Only two kinds of statements ever touch the table: INSERT and SELECT.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def append(self, record: UsageRecord) -> None:
        """Append a single usage record to the ledger.

        Raises:
            StorageError: If the record cannot be written
        """
        conn = _open(self.db_path)
        try:
            conn.execute("""
                INSERT INTO usage_record
                (subject_id, operation_name, units_consumed, occurred_at)
                VALUES (?, ?, ?, ?)
            """, (
                record.subject_id,
                record.operation_name,
                record.units_consumed,
                _to_db_timestamp(record.occurred_at)
            ))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to append usage record: {e}") from e
        finally:
            conn.close()

    def sum_units(self, subject_id: str, operation_name: str, since: datetime) -> float:
        """Sum units consumed by a subject for an operation since a timestamp.

        The lower bound is inclusive.

        Raises:
            StorageError: If the ledger cannot be read
        """
        conn = _open(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT SUM(units_consumed)
                FROM usage_record
                WHERE subject_id = ? AND operation_name = ? AND occurred_at >= ?
            """, (subject_id, operation_name, _to_db_timestamp(since)))
            row = cursor.fetchone()
            return float(row[0] or 0)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read usage ledger: {e}") from e
        finally:
            conn.close()

    def oldest_since(
        self,
        subject_id: str,
        operation_name: str,
        since: datetime
    ) -> Optional[datetime]:
        """Timestamp of the oldest record at or after `since`, if any."""
        conn = _open(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT MIN(occurred_at)
                FROM usage_record
                WHERE subject_id = ? AND operation_name = ? AND occurred_at >= ?
            """, (subject_id, operation_name, _to_db_timestamp(since)))
            row = cursor.fetchone()
            return _from_db_timestamp(row[0]) if row[0] else None
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read usage ledger: {e}") from e
        finally:
            conn.close()

    def fetch_records(
        self,
        subject_id: str,
        operation_name: Optional[str] = None,
        limit: int = 100
    ) -> List[UsageRecord]:
        """Fetch a subject's records, newest first."""
        conn = _open(self.db_path)
        try:
            query = """
                SELECT subject_id, operation_name, units_consumed, occurred_at
                FROM usage_record
                WHERE subject_id = ?
            """
            params: list = [subject_id]
            if operation_name:
                query += " AND operation_name = ?"
                params.append(operation_name)
            query += " ORDER BY occurred_at DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [
                UsageRecord(
                    subject_id=row[0],
                    operation_name=row[1],
                    units_consumed=row[2],
                    occurred_at=_from_db_timestamp(row[3])
                )
                for row in cursor.fetchall()
            ]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read usage ledger: {e}") from e
        finally:
            conn.close()


class SubscriptionRepository:
    """Store for push subscriptions and notification preferences."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def add(self, subscription: PushSubscription) -> None:
        """Register a subscription, refreshing keys if the endpoint is known."""
        conn = _open(self.db_path)
        try:
            conn.execute("""
                INSERT INTO push_subscription
                (subject_id, endpoint, p256dh, auth, delivery_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(subject_id, endpoint) DO UPDATE SET
                    p256dh = excluded.p256dh,
                    auth = excluded.auth,
                    delivery_type = excluded.delivery_type
            """, (
                subscription.subject_id,
                subscription.endpoint,
                subscription.p256dh,
                subscription.auth,
                subscription.delivery_type,
                _to_db_timestamp(datetime.now(timezone.utc))
            ))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store push subscription: {e}") from e
        finally:
            conn.close()

    def list_for_subject(self, subject_id: str) -> List[PushSubscription]:
        """List a subject's subscriptions in registration order."""
        conn = _open(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT subject_id, endpoint, p256dh, auth, delivery_type
                FROM push_subscription
                WHERE subject_id = ?
                ORDER BY id
            """, (subject_id,))
            return [
                PushSubscription(
                    subject_id=row[0],
                    endpoint=row[1],
                    p256dh=row[2],
                    auth=row[3],
                    delivery_type=row[4]
                )
                for row in cursor.fetchall()
            ]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read push subscriptions: {e}") from e
        finally:
            conn.close()

    def delete(self, subject_id: str, endpoint: str) -> bool:
        """Remove a subscription. Returns True if a row was deleted."""
        conn = _open(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM push_subscription WHERE subject_id = ? AND endpoint = ?",
                (subject_id, endpoint)
            )
            conn.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete push subscription: {e}") from e
        finally:
            conn.close()

    def get_preferences(self, subject_id: str) -> Optional[NotificationPreferences]:
        """Stored preferences for a subject, or None if never saved."""
        conn = _open(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT notifications_enabled, chat_mode, team_activity,
                       task_updates, system_alerts, account_security,
                       weekly_reminders
                FROM notification_preferences
                WHERE subject_id = ?
            """, (subject_id,))
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read notification preferences: {e}") from e
        finally:
            conn.close()

        if row is None:
            return None
        return NotificationPreferences(
            notifications_enabled=bool(row[0]),
            chat_mode=row[1],
            team_activity=bool(row[2]),
            task_updates=bool(row[3]),
            system_alerts=bool(row[4]),
            account_security=bool(row[5]),
            weekly_reminders=bool(row[6])
        )

    def save_preferences(self, subject_id: str, prefs: NotificationPreferences) -> None:
        """Insert or replace a subject's preferences."""
        values = asdict(prefs)
        conn = _open(self.db_path)
        try:
            conn.execute("""
                INSERT OR REPLACE INTO notification_preferences
                (subject_id, notifications_enabled, chat_mode, team_activity,
                 task_updates, system_alerts, account_security, weekly_reminders)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                subject_id,
                int(values["notifications_enabled"]),
                values["chat_mode"],
                int(values["team_activity"]),
                int(values["task_updates"]),
                int(values["system_alerts"]),
                int(values["account_security"]),
                int(values["weekly_reminders"])
            ))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store notification preferences: {e}") from e
        finally:
            conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger, subscription and preference tables if missing.

    The usage_record table is an append-only ledger.
    No UPDATE or DELETE operations should ever be performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = _open(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                subject_id TEXT NOT NULL,
                operation_name TEXT NOT NULL,
                units_consumed REAL NOT NULL CHECK (units_consumed >= 0),
                occurred_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_usage_record_window
            ON usage_record (subject_id, operation_name, occurred_at)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS push_subscription (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                subject_id TEXT NOT NULL,
                endpoint TEXT NOT NULL,
                p256dh TEXT NOT NULL,
                auth TEXT NOT NULL,
                delivery_type TEXT NOT NULL DEFAULT 'web',
                created_at TEXT NOT NULL,
                UNIQUE (subject_id, endpoint)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS notification_preferences (
                subject_id TEXT PRIMARY KEY,
                notifications_enabled INTEGER NOT NULL DEFAULT 1,
                chat_mode TEXT NOT NULL DEFAULT 'all',
                team_activity INTEGER NOT NULL DEFAULT 1,
                task_updates INTEGER NOT NULL DEFAULT 1,
                system_alerts INTEGER NOT NULL DEFAULT 1,
                account_security INTEGER NOT NULL DEFAULT 1,
                weekly_reminders INTEGER NOT NULL DEFAULT 1
            )
        """)
        conn.commit()
    except sqlite3.Error as e:
        raise StorageError(f"Failed to initialize schema: {e}") from e
    finally:
        conn.close()
