"""
User repository for database operations.
"""

from sqlalchemy.orm import Session

from parley.db.models import User


def get_user_by_id(db: Session, user_id: str) -> User | None:
    """Get user by ID."""
    return db.get(User, user_id)


def ensure_user(db: Session, user_id: str) -> User:
    """Return the user row for an upstream-authenticated id, creating it on first sight."""
    user = get_user_by_id(db, user_id)
    if user:
        return user
    user = User(id=user_id, username=user_id[:64])
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
