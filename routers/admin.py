"""
Admin Router for Fast!
Internal dashboard API endpoints with admin-only access.

Endpoints:
- GET /admin/stats - KPI totals, user list, fasts in progress
- GET /admin/user-details?userId= - Everything about one user
- POST /admin/grant-access - Manually extend paid access by email
- POST /admin/send-notification - In-app notification to selected users
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Annotated, List, Optional
from datetime import datetime, timedelta, timezone
from dateutil.parser import isoparse
import logging

from dependencies import get_store, limiter, require_admin
from store import PersistenceFailure, ProfileStore
from subscriptions import GRANT_DAYS, STATUS_ACTIVE, has_entitlement

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

# Rough revenue estimate per paid user, in dollars
REVENUE_PER_PAID_USER = 5
DEFAULT_TARGET_HOURS = 24
RECENT_SIGNUP_DAYS = 7


class GrantAccessRequest(BaseModel):
    email: Optional[str] = None
    days: int = GRANT_DAYS


class NotificationRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_ids: List[str] = []
    title: Optional[str] = None
    message: Optional[str] = None
    type: str = "admin"
    action_url: Optional[str] = None
    action_label: Optional[str] = None


# ============================================
# Helpers
# ============================================
def _parse_ts(value) -> Optional[datetime]:
    if not value:
        return None
    parsed = isoparse(value) if isinstance(value, str) else value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def fast_hours(session: dict) -> Optional[float]:
    """Length of a finished fast in hours; None while it is still running."""
    start, end = _parse_ts(session.get("start_time")), _parse_ts(session.get("end_time"))
    if not start or not end:
        return None
    return (end - start).total_seconds() / 3600


def summarize_stats(profiles: List[dict], sessions: List[dict], now: datetime) -> dict:
    total_users = len(profiles)
    paid_users = sum(1 for p in profiles if has_entitlement(p, now))
    week_ago = now - timedelta(days=RECENT_SIGNUP_DAYS)
    recent_signups = sum(
        1 for p in profiles if (_parse_ts(p.get("created_at")) or week_ago) > week_ago
    )
    return {
        "totalUsers": total_users,
        "paidUsers": paid_users,
        "freeUsers": total_users - paid_users,
        "totalFasts": len(sessions),
        "completedFasts": sum(1 for s in sessions if s.get("completed")),
        "activeFasts": sum(1 for s in sessions if s.get("end_time") is None),
        "recentSignups": recent_signups,
        "totalRevenue": paid_users * REVENUE_PER_PAID_USER,
    }


def summarize_user(user_id: str, sessions: List[dict], connections: List[dict],
                   memberships: List[dict], shares: List[dict]) -> dict:
    hours = [h for h in (fast_hours(s) for s in sessions) if h is not None]
    return {
        "totalFasts": len(sessions),
        "completedFasts": sum(1 for s in sessions if s.get("completed")),
        "totalFastingHours": round(sum(hours), 1),
        "longestFast": round(max(hours, default=0), 1),
        "connectionCount": sum(1 for c in connections if c.get("accepted_at")),
        "pendingInvites": sum(
            1 for c in connections if not c.get("accepted_at") and c.get("user_a") == user_id
        ),
        "groupCount": len(memberships),
        "shareCount": len(shares),
    }


def connection_view(user_id: str, c: dict) -> dict:
    """A share connection seen from user_id's side."""
    initiator = c.get("user_a") == user_id
    return {
        "id": c.get("id"),
        "isInitiator": initiator,
        "otherUserId": c.get("user_b") if initiator else c.get("user_a"),
        "displayName": c.get("display_name_b") if initiator else c.get("display_name_a"),
        "myDisplayName": c.get("display_name_a") if initiator else c.get("display_name_b"),
        "accepted": bool(c.get("accepted_at")),
        "createdAt": c.get("created_at"),
        "acceptedAt": c.get("accepted_at"),
    }


# ============================================
# Stats Overview
# ============================================
@router.get("/stats")
def get_admin_stats(
    _admin: Annotated[dict, Depends(require_admin)],
    store: Annotated[ProfileStore, Depends(get_store)],
):
    """KPI totals, every user newest first, and fasts currently in progress."""
    try:
        profiles = store.list_profiles()
    except PersistenceFailure:
        logger.exception("Error fetching profiles")
        raise HTTPException(status_code=500, detail="Failed to fetch profiles")

    try:
        sessions = store.list_fasting_sessions()
    except PersistenceFailure:
        # Stats still render from profiles alone
        logger.exception("Error fetching sessions")
        sessions = []

    by_id = {p.get("id"): p for p in profiles}
    active_fasts = []
    for fast in sessions:
        if fast.get("end_time") is not None:
            continue
        profile = by_id.get(fast.get("user_id"), {})
        active_fasts.append({
            "id": fast.get("id"),
            "userId": fast.get("user_id"),
            "email": profile.get("email") or "Unknown",
            "name": profile.get("name"),
            "startTime": fast.get("start_time"),
            "targetHours": fast.get("target_hours") or DEFAULT_TARGET_HOURS,
        })

    return {
        "stats": summarize_stats(profiles, sessions, datetime.now(timezone.utc)),
        "users": [
            {
                "id": p.get("id"),
                "email": p.get("email"),
                "name": p.get("name"),
                "status": p.get("subscription_status"),
                "paidUntil": p.get("paid_until"),
                "fastsCompleted": p.get("fasts_completed"),
                "createdAt": p.get("created_at"),
            }
            for p in profiles
        ],
        "activeFasts": active_fasts,
    }


# ============================================
# User Details
# ============================================
@router.get("/user-details")
def get_user_details(
    _admin: Annotated[dict, Depends(require_admin)],
    store: Annotated[ProfileStore, Depends(get_store)],
    user_id: Annotated[Optional[str], Query(alias="userId")] = None,
):
    """Profile, fasting history, notes and social graph for one user."""
    if not user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId required")

    try:
        profile = store.get_profile(user_id)
        if not profile:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        sessions = store.list_fasting_sessions(user_id)
        notes = store.list_fasting_notes([s["id"] for s in sessions if s.get("id")])
        connections = store.list_share_connections(user_id)
        shares = store.list_fast_shares(user_id)
        memberships = store.list_group_memberships(user_id)
    except HTTPException:
        raise
    except PersistenceFailure:
        logger.exception("Admin user details error")
        raise HTTPException(status_code=500, detail="Failed to fetch user details")

    try:
        notifications = store.list_notifications(user_id)
    except PersistenceFailure:
        # Older projects have no notifications table yet
        logger.warning(f"Notifications unavailable for user {user_id}")
        notifications = []

    current_fast = next((s for s in sessions if not s.get("end_time")), None)

    return {
        "profile": {
            "id": profile.get("id"),
            "email": profile.get("email"),
            "name": profile.get("name"),
            "subscriptionStatus": profile.get("subscription_status"),
            "stripeCustomerId": profile.get("stripe_customer_id"),
            "paidUntil": profile.get("paid_until"),
            "fastsCompleted": profile.get("fasts_completed"),
            "createdAt": profile.get("created_at"),
        },
        "stats": summarize_user(user_id, sessions, connections, memberships, shares),
        "currentFast": {
            "id": current_fast.get("id"),
            "startTime": current_fast.get("start_time"),
            "targetHours": current_fast.get("target_hours"),
            "confirmedAt": current_fast.get("confirmed_at"),
        } if current_fast else None,
        "recentFasts": [
            {
                "id": s.get("id"),
                "startTime": s.get("start_time"),
                "endTime": s.get("end_time"),
                "targetHours": s.get("target_hours"),
                "completed": s.get("completed"),
            }
            for s in sessions[:10]
        ],
        "recentNotes": [
            {
                "id": n.get("id"),
                "hourMark": n.get("hour_mark"),
                "mood": n.get("mood"),
                "energyLevel": n.get("energy_level"),
                "hungerLevel": n.get("hunger_level"),
                "note": n.get("note"),
                "createdAt": n.get("created_at"),
            }
            for n in notes[:10]
        ],
        "connections": [connection_view(user_id, c) for c in connections],
        "groups": [
            {
                "id": m.get("group_id"),
                "name": (m.get("group") or {}).get("name") or "Unknown",
                "displayName": m.get("display_name"),
                "joinedAt": m.get("joined_at"),
            }
            for m in memberships
        ],
        "notifications": notifications[:20],
    }


# ============================================
# Grant Access
# ============================================
@router.post("/grant-access")
@limiter.limit("30/minute")
def grant_access(
    request: Request,
    body: GrantAccessRequest,
    _admin: Annotated[dict, Depends(require_admin)],
    store: Annotated[ProfileStore, Depends(get_store)],
):
    """Set paid_until to now + days for the profile with this email."""
    if not body.email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")

    try:
        profile = store.get_profile_by_email(body.email)
        if not profile:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No profile found for {body.email}. The user needs to sign up first, then you can grant access.",
            )

        paid_until = (datetime.now(timezone.utc) + timedelta(days=body.days)).isoformat()
        store.update_profile_by_email(body.email, {
            "paid_until": paid_until,
            "subscription_status": STATUS_ACTIVE,
        })
    except HTTPException:
        raise
    except PersistenceFailure as e:
        logger.exception("Admin grant access error")
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"Granted {body.days} days access to {body.email}")
    return {
        "success": True,
        "message": f"Granted {body.days} days access to {body.email}",
        "paidUntil": paid_until,
    }


# ============================================
# Send Notification
# ============================================
@router.post("/send-notification")
@limiter.limit("30/minute")
def send_notification(
    request: Request,
    body: NotificationRequest,
    _admin: Annotated[dict, Depends(require_admin)],
    store: Annotated[ProfileStore, Depends(get_store)],
):
    """Insert one unread in-app notification per selected user."""
    if not body.user_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userIds required")
    if not body.title or not body.message:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="title and message required")

    rows = [
        {
            "user_id": user_id,
            "title": body.title,
            "message": body.message,
            "type": body.type,
            "action_url": body.action_url,
            "action_label": body.action_label,
            "read": False,
        }
        for user_id in body.user_ids
    ]

    try:
        inserted = store.insert_notifications(rows)
    except PersistenceFailure as e:
        logger.exception("Send notification error")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "count": len(inserted),
        "message": f"Sent notification to {len(inserted)} user(s)",
    }
