"""
Tests for the CLI interface.
"""
import httpx
import pytest
from typer.testing import CliRunner
from unittest.mock import patch

from notify_guard.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from notify_guard.core.dispatcher import PushDispatcher
from notify_guard.core.quota import QuotaLedger
from notify_guard.storage.models import NotificationPreferences, PushSubscription
from notify_guard.storage.repository import SubscriptionRepository, UsageRepository

runner = CliRunner()


@pytest.fixture
def env(monkeypatch, db_path, credential):
    """Point the CLI at a temporary database and a test key pair."""
    monkeypatch.setenv("NOTIFY_GUARD_DB", db_path)
    monkeypatch.setenv("VAPID_PUBLIC_KEY", credential.public_key)
    monkeypatch.setenv("VAPID_PRIVATE_KEY", credential.private_key)
    monkeypatch.setenv("VAPID_CONTACT", credential.contact)
    return db_path


@pytest.fixture
def push_service():
    """Patch the CLI's dispatcher to use a mocked push service."""
    routes = {}
    calls = []

    def handler(request):
        calls.append(str(request.url))
        return httpx.Response(routes.get(request.url.path, 201))

    def make_dispatcher(credential, timeout):
        return PushDispatcher(credential, client=httpx.Client(transport=httpx.MockTransport(handler)))

    with patch('notify_guard.cli.main.PushDispatcher', side_effect=make_dispatcher):
        yield routes, calls


class TestCLI:
    """Test CLI commands."""

    def test_no_command(self):
        result = runner.invoke(app, [])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Notify Guard" in result.output

    def test_init(self, monkeypatch, tmp_path):
        db_file = tmp_path / "cli.db"
        monkeypatch.setenv("NOTIFY_GUARD_DB", str(db_file))

        result = runner.invoke(app, ["init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert db_file.exists()

    def test_subscribe(self, env):
        result = runner.invoke(app, [
            "subscribe", "alice", "https://push.example.com/a1", "BPk3", "c2VjcmV0"
        ])

        assert result.exit_code == EXIT_CODE_PASS
        assert [s.endpoint for s in SubscriptionRepository(env).list_for_subject("alice")] == [
            "https://push.example.com/a1"
        ]

    def test_subscribe_rejects_relative_endpoint(self, env):
        result = runner.invoke(app, ["subscribe", "alice", "/a1", "BPk3", "c2VjcmV0"])

        assert result.exit_code == EXIT_CODE_FAIL

    def test_usage(self, env):
        QuotaLedger(UsageRepository(env)).record_usage("alice", "ai-chat", 250)

        result = runner.invoke(app, ["usage", "alice", "ai-chat"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "250" in result.output
        assert "1000" in result.output
        assert "allowed" in result.output

    def test_usage_unknown_operation(self, env):
        result = runner.invoke(app, ["usage", "alice", "calendar-sync"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "No quota configured" in result.output

    def test_token(self, env):
        result = runner.invoke(app, ["token", "https://fcm.googleapis.com/fcm/send/abc"])

        assert result.exit_code == EXIT_CODE_PASS
        assert len(result.stdout.strip().split(".")) == 3

    def test_token_without_keys(self, monkeypatch):
        monkeypatch.delenv("VAPID_PUBLIC_KEY", raising=False)
        monkeypatch.delenv("VAPID_PRIVATE_KEY", raising=False)

        result = runner.invoke(app, ["token", "https://fcm.googleapis.com/fcm/send/abc"])

        assert result.exit_code == EXIT_CODE_FAIL


class TestRemind:
    """Test the reminder fan-out command."""

    def add(self, db_path, subject_id, endpoint):
        SubscriptionRepository(db_path).add(PushSubscription(
            subject_id=subject_id, endpoint=endpoint, p256dh="BPk3", auth="c2VjcmV0"
        ))

    def test_remind_reports_outcomes(self, env, push_service):
        routes, calls = push_service
        routes["/gone"] = 410
        self.add(env, "alice", "https://push.example.com/ok")
        self.add(env, "alice", "https://push.example.com/gone")

        result = runner.invoke(app, ["remind", "alice"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Delivered: 1" in result.output
        assert "Not delivered: 1" in result.output
        assert len(calls) == 2
        assert len(SubscriptionRepository(env).list_for_subject("alice")) == 2

    def test_remind_prune_removes_stale(self, env, push_service):
        routes, _ = push_service
        routes["/gone"] = 410
        self.add(env, "alice", "https://push.example.com/ok")
        self.add(env, "alice", "https://push.example.com/gone")

        result = runner.invoke(app, ["remind", "alice", "--prune"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Removed 1 stale subscription" in result.output
        remaining = SubscriptionRepository(env).list_for_subject("alice")
        assert [s.endpoint for s in remaining] == ["https://push.example.com/ok"]

    def test_remind_prune_keeps_throttled(self, env, push_service):
        routes, _ = push_service
        routes["/throttled"] = 429
        self.add(env, "alice", "https://push.example.com/throttled")

        result = runner.invoke(app, ["remind", "alice", "--prune"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Not delivered: 1" in result.output
        assert "Removed" not in result.output
        remaining = SubscriptionRepository(env).list_for_subject("alice")
        assert [s.endpoint for s in remaining] == ["https://push.example.com/throttled"]

    def test_remind_honors_preferences(self, env, push_service):
        _, calls = push_service
        self.add(env, "alice", "https://push.example.com/a1")
        self.add(env, "bob", "https://push.example.com/b1")
        SubscriptionRepository(env).save_preferences(
            "bob", NotificationPreferences(weekly_reminders=False)
        )

        result = runner.invoke(app, ["remind", "alice", "bob"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Skipped by preference: 1" in result.output
        assert calls == ["https://push.example.com/a1"]

    def test_remind_without_vapid_keys(self, env, push_service, monkeypatch):
        _, calls = push_service
        monkeypatch.delenv("VAPID_PRIVATE_KEY")
        self.add(env, "alice", "https://push.example.com/a1")

        result = runner.invoke(app, ["remind", "alice"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration error" in result.output
        assert calls == []
