import logging

from sqlalchemy.orm import Session

from libreserve.core.database import atomic
from libreserve.core.errors import InvalidArgument
from libreserve.models.models import User

logger = logging.getLogger("libreserve.users")


def register_user(db: Session, name: str, email: str, is_admin: bool = False) -> User:
    email = email.strip().lower()
    with atomic(db):
        if db.query(User.id).filter(User.email == email).first():
            raise InvalidArgument("Email already registered", email=email)
        user = User(name=name.strip(), email=email, is_admin=is_admin)
        db.add(user)
        db.flush()
    logger.info(f"Registered user {user.id} ({'admin' if is_admin else 'reader'})")
    return user
