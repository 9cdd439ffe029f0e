"""Resolve CRM users (setters, sales reps) to display names and local users."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from salesops.db.enums import DEFAULT_SETTER_NAME
from salesops.db.models import Account, User
from salesops.services import ghl_api
from salesops.utils.normalization import join_name, normalize_email

logger = logging.getLogger(__name__)


@dataclass
class SetterInfo:
    name: str
    email: str | None = None
    user_id: uuid.UUID | None = None
    ghl_user_id: str | None = None


def display_name_for(remote_user: dict[str, Any] | None, ghl_user_id: str | None = None) -> str | None:
    """name, then "first last", then a short id placeholder."""
    if remote_user:
        name = (remote_user.get("name") or "").strip()
        if name:
            return name
        joined = join_name(remote_user.get("firstName"), remote_user.get("lastName"))
        if joined:
            return joined
    if ghl_user_id:
        return f"User {ghl_user_id[-8:]}"
    return None


def find_local_user_by_email(db: Session, account_id: uuid.UUID, email: str | None) -> User | None:
    """Case-insensitive email match among the account's active users."""
    normalized = normalize_email(email)
    if not normalized:
        return None
    return (
        db.query(User)
        .filter(
            User.account_id == account_id,
            User.is_active.is_(True),
            func.lower(User.email) == normalized,
        )
        .first()
    )


async def resolve_setter(
    db: Session,
    account: Account,
    access_token: str | None,
    ghl_user_id: str | None,
) -> SetterInfo:
    """
    Resolve the CRM user behind a call or booking.

    Always asks the CRM (there is no local user cache); a missing remote user
    or an unmatched email is not an error.
    """
    if not ghl_user_id:
        return SetterInfo(name=DEFAULT_SETTER_NAME)
    if not access_token:
        return SetterInfo(name=display_name_for(None, ghl_user_id), ghl_user_id=ghl_user_id)

    remote_user = await ghl_api.fetch_user_details(access_token, ghl_user_id, account.ghl_location_id)
    name = display_name_for(remote_user, ghl_user_id)
    email = normalize_email(remote_user.get("email")) if remote_user else None

    local_user = find_local_user_by_email(db, account.id, email)
    return SetterInfo(
        name=name or DEFAULT_SETTER_NAME,
        email=email,
        user_id=local_user.id if local_user else None,
        ghl_user_id=ghl_user_id,
    )
