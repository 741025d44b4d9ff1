from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func, or_
from app.crud.storage import storage_errors
from app.models import User
from typing import Optional, List, Tuple


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so user input matches literally (escape char is backslash)."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def name_matches(term: str):
    """Case-insensitive substring match on any of the user's name fields."""
    pattern = f"%{escape_like(term.strip().lower())}%"
    return or_(
        func.lower(User.first_name).like(pattern, escape="\\"),
        func.lower(User.last_name).like(pattern, escape="\\"),
        func.lower(func.coalesce(User.display_name, "")).like(pattern, escape="\\"),
    )


@storage_errors
def get_user(db: Session, user_id: str) -> Optional[User]:
    """Get a user by ID."""
    return db.query(User).filter(User.id == user_id).first()

@storage_errors
def get_active_user(db: Session, user_id: str) -> Optional[User]:
    """Get a user by ID, ignoring deactivated accounts."""
    return db.query(User).filter(User.id == user_id, User.is_active.is_(True)).first()

@storage_errors
def create_user(
    db: Session,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    first_name: str = "",
    last_name: str = "",
    display_name: Optional[str] = None,
    is_verified: bool = False,
) -> User:
    """
    Create a new user.

    Args:
        db: Database session
        user_id: Identity provider UID, generated when omitted
        email: User email
        first_name: Given name
        last_name: Family name
        display_name: Optional display name
        is_verified: Whether the account passed verification

    Returns:
        Created User object
    """
    db_user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        display_name=display_name,
        is_verified=is_verified,
        is_active=True,
    )
    if user_id:
        db_user.id = user_id
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user

@storage_errors
def update_user_fields(db: Session, user: User, update_data: dict) -> User:
    """
    Update user fields with the provided data.

    Raises ValueError when the new email belongs to another account.
    """
    for field, value in update_data.items():
        if hasattr(user, field):
            setattr(user, field, value)

    try:
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        raise ValueError("Email is already in use by another account")

    return user

@storage_errors
def deactivate_user(db: Session, user_id: str) -> Optional[User]:
    """Soft-disable an account. The row stays for anything still referencing it."""
    db_user = get_user(db, user_id)
    if db_user:
        db_user.is_active = False
        db.commit()
        db.refresh(db_user)
    return db_user

@storage_errors
def search_users(
    db: Session, term: str, exclude_user_id: Optional[str] = None, page: int = 1, page_size: int = 20
) -> Tuple[List[User], int]:
    """
    Directory search over active, verified users by name.

    Unlike friend search this is not scoped to the caller's connections.
    """
    query = db.query(User).filter(
        User.is_active.is_(True),
        User.is_verified.is_(True),
        name_matches(term),
    )
    if exclude_user_id:
        query = query.filter(User.id != exclude_user_id)
    query = query.order_by(User.first_name, User.last_name, User.id)

    total = query.count()
    users = query.offset((page - 1) * page_size).limit(page_size).all()
    return users, total
