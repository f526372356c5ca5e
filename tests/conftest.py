"""
Pytest fixtures: an in-memory stand-in for ProfileStore and a TestClient
wired to it through dependency overrides.
"""
import hashlib
import hmac
import json
import time

import pytest
from fastapi.testclient import TestClient

from dependencies import get_store, limiter
from main import app
from settings import Settings, get_settings
from store import PersistenceFailure

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_EMAIL = "admin@example.com"
ADMIN_TOKEN = "admin-token"
USER_TOKEN = "user-token"


class FakeStore:
    """Dict-backed tables with the same methods as ProfileStore."""

    def __init__(self):
        self.profiles = {}
        self.fasting_sessions = []
        self.fasting_notes = []
        self.share_connections = []
        self.fast_shares = []
        self.group_memberships = []
        self.notifications = []
        self.tokens = {
            ADMIN_TOKEN: {"id": "admin-1", "email": ADMIN_EMAIL},
            USER_TOKEN: {"id": "u1", "email": "u1@example.com"},
        }
        self.calls = []
        self.fail_writes = False
        self.fail_notifications = False

    def add_profile(self, user_id, **fields):
        profile = {"id": user_id, "paid_until": None, "subscription_status": None,
                   "stripe_customer_id": None, **fields}
        self.profiles[user_id] = profile
        return profile

    def _write(self, name):
        self.calls.append(name)
        if self.fail_writes:
            raise PersistenceFailure(f"{name} failed: connection reset")

    def get_auth_user(self, token):
        return self.tokens.get(token)

    def get_profile(self, user_id):
        self.calls.append("get_profile")
        profile = self.profiles.get(user_id)
        return dict(profile) if profile else None

    def get_profile_by_email(self, email):
        self.calls.append("get_profile_by_email")
        return next((dict(p) for p in self.profiles.values() if p.get("email") == email), None)

    def list_profiles(self):
        return sorted(self.profiles.values(), key=lambda p: p.get("created_at") or "", reverse=True)

    def update_profile(self, user_id, fields):
        self._write("update_profile")
        if user_id not in self.profiles:
            return []
        self.profiles[user_id].update(fields)
        return [dict(self.profiles[user_id])]

    def update_profile_by_email(self, email, fields):
        self._write("update_profile_by_email")
        rows = [p for p in self.profiles.values() if p.get("email") == email]
        for p in rows:
            p.update(fields)
        return [dict(p) for p in rows]

    def update_profiles_by_customer(self, customer_id, fields):
        self._write("update_profiles_by_customer")
        rows = [p for p in self.profiles.values() if p.get("stripe_customer_id") == customer_id]
        for p in rows:
            p.update(fields)
        return [dict(p) for p in rows]

    def list_fasting_sessions(self, user_id=None):
        rows = [s for s in self.fasting_sessions if user_id is None or s.get("user_id") == user_id]
        return sorted(rows, key=lambda s: s.get("created_at") or "", reverse=True)

    def list_fasting_notes(self, session_ids):
        return [n for n in self.fasting_notes if n.get("fasting_id") in session_ids]

    def list_share_connections(self, user_id):
        return [c for c in self.share_connections if user_id in (c.get("user_a"), c.get("user_b"))]

    def list_fast_shares(self, user_id):
        return [s for s in self.fast_shares if s.get("user_id") == user_id]

    def list_group_memberships(self, user_id):
        return [m for m in self.group_memberships if m.get("user_id") == user_id]

    def list_notifications(self, user_id, limit=50):
        if self.fail_notifications:
            raise PersistenceFailure("list_notifications failed: relation does not exist")
        return [n for n in self.notifications if n.get("user_id") == user_id][:limit]

    def insert_notifications(self, rows):
        self._write("insert_notifications")
        self.notifications.extend(rows)
        return list(rows)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header value for payload."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode("utf-8")


@pytest.fixture
def settings():
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        admin_emails=frozenset({ADMIN_EMAIL}),
    )


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def client(store, settings):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
