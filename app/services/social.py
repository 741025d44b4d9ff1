from typing import List, Tuple
from sqlalchemy.orm import Session

from app.config import settings
from app.crud.connections import ConnectionsCRUD
from app.crud.storage import storage_errors
from app.crud.user import get_user, name_matches
from app.errors import InvalidOperation, NotFound
from app.models.connection import UserConnection, ConnectionStatus
from app.models.user import User


def _accepted_partners_query(db: Session, user_id: str):
    """(connection, friend) rows for the accepted connections of ``user_id``."""
    partner = ConnectionsCRUD.partner_column(user_id)
    return db.query(UserConnection, User).join(User, User.id == partner).filter(
        ConnectionsCRUD.involves(user_id),
        UserConnection.status == ConnectionStatus.ACCEPTED.value,
        User.is_active.is_(True),
    )


@storage_errors
def _paginate(db: Session, query, page: int, page_size: int) -> Tuple[list, int]:
    total = query.count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    return rows, total


def mutual_friends(db: Session, user_id: str, other_id: str, page: int = 1, page_size: int = 20) -> Tuple[List[User], int]:
    """
    Friends that ``user_id`` and ``other_id`` have in common, newest of
    ``user_id``'s friendships first.
    """
    if user_id == other_id:
        raise InvalidOperation("Cannot look up mutual friends with yourself", code="self_connection")
    if not get_user(db, other_id):
        raise NotFound("User not found", code="user_not_found")

    others_friends = ConnectionsCRUD.partner_ids_query(other_id, ConnectionStatus.ACCEPTED)
    query = _accepted_partners_query(db, user_id).filter(
        ConnectionsCRUD.partner_column(user_id).in_(others_friends)
    ).order_by(UserConnection.created_at.desc(), UserConnection.id.desc())
    rows, total = _paginate(db, query, page, page_size)
    return [friend for _, friend in rows], total


def suggestions(db: Session, user_id: str, page: int = 1, page_size: int = 10) -> Tuple[List[User], int]:
    """Active, verified users ``user_id`` has no connection with in any status, newest first."""
    already_connected = ConnectionsCRUD.partner_ids_query(user_id)
    query = db.query(User).filter(
        User.is_active.is_(True),
        User.is_verified.is_(True),
        User.id != user_id,
        ~User.id.in_(already_connected),
    ).order_by(User.created_at.desc(), User.id)
    return _paginate(db, query, page, page_size)


def search_friends(db: Session, user_id: str, term: str, page: int = 1, page_size: int = 10) -> Tuple[List[User], int]:
    """Name search restricted to ``user_id``'s accepted friends."""
    term = (term or "").strip()
    if len(term) < settings.MIN_SEARCH_LENGTH:
        raise InvalidOperation(
            f"Search query must be at least {settings.MIN_SEARCH_LENGTH} characters",
            code="search_query_too_short",
        )
    query = _accepted_partners_query(db, user_id).filter(name_matches(term)).order_by(
        User.first_name, User.last_name, User.id
    )
    rows, total = _paginate(db, query, page, page_size)
    return [friend for _, friend in rows], total
