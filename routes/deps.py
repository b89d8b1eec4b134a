"""Shared route dependencies."""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from errors import AuthorizationError
from models.models import User


def get_actor(
    x_user_id: int | None = Header(default=None, description="Acting user, set by the auth gateway"),
    db: Session = Depends(get_db),
) -> User:
    """The acting user. Authentication itself happens upstream."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user = db.get(User, x_user_id)
    if user is None:
        raise AuthorizationError(f"Unknown user {x_user_id}", {"actor_id": x_user_id})
    return user
