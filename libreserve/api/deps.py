from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from libreserve.core.database import get_db
from libreserve.core.errors import Forbidden, Unauthenticated
from libreserve.models import models


@dataclass(frozen=True)
class Actor:
    """Caller identity handed over by the authentication boundary."""
    user_id: int
    is_admin: bool = False


def get_actor(x_user_id: Optional[int] = Header(None), db: Session = Depends(get_db)) -> Actor:
    if x_user_id is None:
        raise Unauthenticated("Authentication required")
    user = db.query(models.User).filter(models.User.id == x_user_id).first()
    if not user:
        raise Unauthenticated("Unknown user", user_id=x_user_id)
    return Actor(user_id=user.id, is_admin=bool(user.is_admin))


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise Forbidden("Administrator access required", user_id=actor.user_id)
    return actor


def require_owner(user_id: int, actor: Actor = Depends(get_actor)) -> Actor:
    """Path ``user_id`` must be the caller's own."""
    if actor.user_id != user_id:
        raise Forbidden("You can only access your own basket", user_id=user_id)
    return actor
