"""
Supabase access for profiles and the fasting tables the admin views read.

Every query goes through ProfileStore so callers see a single failure type,
PersistenceFailure, whatever the client raised.
"""
import logging
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from supabase import Client, create_client

from settings import get_settings

logger = logging.getLogger(__name__)


class PersistenceFailure(Exception):
    """A Supabase read or write failed."""


@lru_cache
def get_supabase_client() -> Client:
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_service_key:
        raise RuntimeError("Supabase URL and Service Key must be set in environment variables.")
    return create_client(settings.supabase_url, settings.supabase_service_key)


class ProfileStore:
    def __init__(self, client: Client):
        self.client = client

    def _run(self, what: str, query: Callable[[], Any]) -> Any:
        try:
            return query()
        except Exception as e:
            logger.error(f"Supabase {what} failed: {e}")
            raise PersistenceFailure(f"{what} failed: {e}") from e

    # --- auth ---
    def get_auth_user(self, token: str) -> Optional[Dict[str, Any]]:
        """Resolve an access token to {"id", "email"}, or None when it is not valid."""
        user_res = self.client.auth.get_user(token)
        user = user_res.user if user_res else None
        if not user:
            return None
        return {"id": user.id, "email": user.email}

    # --- profiles ---
    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        res = self._run(
            "get_profile",
            lambda: self.client.table("profiles").select("*").eq("id", user_id).limit(1).execute(),
        )
        return res.data[0] if res.data else None

    def get_profile_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        res = self._run(
            "get_profile_by_email",
            lambda: self.client.table("profiles").select("*").eq("email", email).limit(1).execute(),
        )
        return res.data[0] if res.data else None

    def list_profiles(self) -> List[Dict[str, Any]]:
        res = self._run(
            "list_profiles",
            lambda: self.client.table("profiles").select("*").order("created_at", desc=True).execute(),
        )
        return res.data or []

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> List[Dict[str, Any]]:
        res = self._run(
            "update_profile",
            lambda: self.client.table("profiles").update(fields).eq("id", user_id).execute(),
        )
        return res.data or []

    def update_profile_by_email(self, email: str, fields: Dict[str, Any]) -> List[Dict[str, Any]]:
        res = self._run(
            "update_profile_by_email",
            lambda: self.client.table("profiles").update(fields).eq("email", email).execute(),
        )
        return res.data or []

    def update_profiles_by_customer(self, customer_id: str, fields: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Partial update of every profile correlated to a Stripe customer. Returns the rows touched."""
        res = self._run(
            "update_profiles_by_customer",
            lambda: (
                self.client.table("profiles")
                .update(fields)
                .eq("stripe_customer_id", customer_id)
                .execute()
            ),
        )
        return res.data or []

    # --- fasting data ---
    def list_fasting_sessions(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        def query():
            q = self.client.table("fasting_sessions").select("*")
            if user_id:
                q = q.eq("user_id", user_id)
            return q.order("created_at", desc=True).execute()

        return self._run("list_fasting_sessions", query).data or []

    def list_fasting_notes(self, session_ids: List[str]) -> List[Dict[str, Any]]:
        if not session_ids:
            return []
        res = self._run(
            "list_fasting_notes",
            lambda: (
                self.client.table("fasting_notes")
                .select("*")
                .in_("fasting_id", session_ids)
                .order("created_at", desc=True)
                .execute()
            ),
        )
        return res.data or []

    def list_share_connections(self, user_id: str) -> List[Dict[str, Any]]:
        res = self._run(
            "list_share_connections",
            lambda: (
                self.client.table("share_connections")
                .select("*")
                .or_(f"user_a.eq.{user_id},user_b.eq.{user_id}")
                .order("created_at", desc=True)
                .execute()
            ),
        )
        return res.data or []

    def list_fast_shares(self, user_id: str) -> List[Dict[str, Any]]:
        res = self._run(
            "list_fast_shares",
            lambda: (
                self.client.table("fast_shares")
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            ),
        )
        return res.data or []

    def list_group_memberships(self, user_id: str) -> List[Dict[str, Any]]:
        res = self._run(
            "list_group_memberships",
            lambda: (
                self.client.table("share_group_members")
                .select("*, group:share_groups (*)")
                .eq("user_id", user_id)
                .execute()
            ),
        )
        return res.data or []

    # --- notifications ---
    def list_notifications(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        res = self._run(
            "list_notifications",
            lambda: (
                self.client.table("notifications")
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            ),
        )
        return res.data or []

    def insert_notifications(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        res = self._run(
            "insert_notifications",
            lambda: self.client.table("notifications").insert(rows).execute(),
        )
        return res.data or []
