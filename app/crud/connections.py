from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import and_, or_, case, select
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set, Tuple
from app.crud.storage import storage_errors
from app.errors import Conflict, NotFound
from app.models.connection import UserConnection, ConnectionStatus
from app.models.message import ChatMessage
from app.utils.logger import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def pair_key(user_a: str, user_b: str) -> Tuple[str, str]:
    """Canonical key of an unordered pair: (smaller id, larger id)."""
    low, high = sorted([user_a, user_b])
    return low, high


class ConnectionsCRUD:
    """
    Storage for connection rows. Every pair lookup goes through ``find_pair`` so
    that no caller has to care which of the two users is stored as initiator.
    """

    @staticmethod
    def involves(user_id: str):
        """SQL condition: the row belongs to ``user_id`` on either side."""
        return or_(UserConnection.pair_low == user_id, UserConnection.pair_high == user_id)

    @staticmethod
    def partner_column(user_id: str):
        """SQL expression yielding the other user of a row that involves ``user_id``."""
        return case(
            (UserConnection.user_id == user_id, UserConnection.connected_user_id),
            else_=UserConnection.user_id,
        )

    @staticmethod
    def partner_ids_query(user_id: str, status: Optional[ConnectionStatus] = None):
        """Select of the ids connected to ``user_id``, optionally restricted to one status."""
        query = select(ConnectionsCRUD.partner_column(user_id)).where(ConnectionsCRUD.involves(user_id))
        if status is not None:
            query = query.where(UserConnection.status == status.value)
        return query

    @staticmethod
    @storage_errors
    def find_pair(db: Session, user_a: str, user_b: str, lock: bool = False) -> Optional[UserConnection]:
        """Find the row for the unordered pair {user_a, user_b}, whichever side initiated it."""
        low, high = pair_key(user_a, user_b)
        query = db.query(UserConnection).filter(
            and_(UserConnection.pair_low == low, UserConnection.pair_high == high)
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    @storage_errors
    def get_by_id(db: Session, connection_id: str, lock: bool = False) -> Optional[UserConnection]:
        query = db.query(UserConnection).filter(UserConnection.id == connection_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    @storage_errors
    def create(
        db: Session,
        requester_id: str,
        target_id: str,
        status: ConnectionStatus = ConnectionStatus.PENDING,
        blocked_by: Optional[str] = None,
    ) -> UserConnection:
        """Insert the row for a pair. Raises Conflict if the pair already has one."""
        low, high = pair_key(requester_id, target_id)
        now = utcnow()
        connection = UserConnection(
            user_id=requester_id,
            connected_user_id=target_id,
            initiated_by=requester_id,
            pair_low=low,
            pair_high=high,
            status=status.value,
            blocked_by=blocked_by,
            blocked_at=now if status == ConnectionStatus.BLOCKED else None,
            created_at=now,
        )
        db.add(connection)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise Conflict("A connection already exists between these users", code="connection_exists")
        db.refresh(connection)
        return connection

    @staticmethod
    @storage_errors
    def update_status(db: Session, user_a: str, user_b: str, status: ConnectionStatus, **changes) -> UserConnection:
        """Move the pair's row to ``status`` and apply any other column changes."""
        connection = ConnectionsCRUD.find_pair(db, user_a, user_b, lock=True)
        if not connection:
            raise NotFound("Connection not found", code="connection_not_found")
        connection.status = status.value
        for field, value in changes.items():
            setattr(connection, field, value)
        db.commit()
        db.refresh(connection)
        return connection

    @staticmethod
    @storage_errors
    def delete_pair(db: Session, user_a: str, user_b: str) -> None:
        """Delete the pair's row, returning the pair to having no relationship."""
        connection = ConnectionsCRUD.find_pair(db, user_a, user_b, lock=True)
        if not connection:
            raise NotFound("Connection not found", code="connection_not_found")
        db.query(ChatMessage).filter(ChatMessage.connection_id == connection.id).delete(synchronize_session=False)
        db.delete(connection)
        db.commit()

    @staticmethod
    @storage_errors
    def connected_user_ids(db: Session, user_id: str, candidate_ids: Optional[Iterable[str]] = None) -> Set[str]:
        """Which ids (of ``candidate_ids``, or all) have a row with ``user_id`` in any status."""
        query = ConnectionsCRUD.partner_ids_query(user_id)
        if candidate_ids is not None:
            candidates = list(candidate_ids)
            if not candidates:
                return set()
            query = query.where(ConnectionsCRUD.partner_column(user_id).in_(candidates))
        return set(db.execute(query).scalars().all())

    @staticmethod
    @storage_errors
    def rows_for_partners(db: Session, user_id: str, partner_ids: List[str]) -> dict[str, UserConnection]:
        """Map partner id -> row for the given partners of ``user_id`` (missing when no row)."""
        if not partner_ids:
            return {}
        rows = db.query(UserConnection).filter(
            ConnectionsCRUD.involves(user_id),
            ConnectionsCRUD.partner_column(user_id).in_(partner_ids),
        ).all()
        return {row.other_user_id(user_id): row for row in rows}

    @staticmethod
    @storage_errors
    def purge_user(db: Session, user_id: str) -> int:
        """Delete every row referencing ``user_id``. Called on account deletion."""
        connection_ids = select(UserConnection.id).where(ConnectionsCRUD.involves(user_id))
        db.query(ChatMessage).filter(ChatMessage.connection_id.in_(connection_ids)).delete(synchronize_session=False)
        deleted = db.query(UserConnection).filter(ConnectionsCRUD.involves(user_id)).delete(synchronize_session=False)
        db.commit()
        logger.info(f"Purged {deleted} connections for user {user_id}")
        return deleted

    @staticmethod
    @storage_errors
    def list_for_user(
        db: Session, user_id: str, relationship: str, page: int = 1, page_size: int = 20
    ) -> Tuple[List[UserConnection], int]:
        """
        Rows of ``user_id`` seen from their side.

        ``relationship`` is one of accepted, sent, received, rejected, blocked.
        For blocked only the users ``user_id`` has blocked are listed.
        """
        query = db.query(UserConnection).filter(ConnectionsCRUD.involves(user_id))
        if relationship == "sent":
            query = query.filter(
                UserConnection.status == ConnectionStatus.PENDING.value,
                UserConnection.initiated_by == user_id,
            )
        elif relationship == "received":
            query = query.filter(
                UserConnection.status == ConnectionStatus.PENDING.value,
                UserConnection.initiated_by != user_id,
            )
        elif relationship == "blocked":
            query = query.filter(
                UserConnection.status == ConnectionStatus.BLOCKED.value,
                or_(UserConnection.blocked_by == user_id, UserConnection.mutual_block.is_(True)),
            )
        else:
            query = query.filter(UserConnection.status == ConnectionStatus(relationship).value)

        query = query.options(
            joinedload(UserConnection.user),
            joinedload(UserConnection.connected_user),
        ).order_by(UserConnection.created_at.desc(), UserConnection.id.desc())

        total = query.count()
        rows = query.offset((page - 1) * page_size).limit(page_size).all()
        return rows, total

    @staticmethod
    @storage_errors
    def list_conversations(db: Session, user_id: str, page: int = 1, page_size: int = 20) -> Tuple[List[UserConnection], int]:
        """Accepted, non-archived rows of ``user_id``, most recent message first."""
        query = db.query(UserConnection).filter(
            ConnectionsCRUD.involves(user_id),
            UserConnection.status == ConnectionStatus.ACCEPTED.value,
            UserConnection.is_archived.is_(False),
        ).options(
            joinedload(UserConnection.user),
            joinedload(UserConnection.connected_user),
        ).order_by(
            UserConnection.last_message_at.desc().nulls_last(),
            UserConnection.accepted_at.desc(),
            UserConnection.id.desc(),
        )
        total = query.count()
        rows = query.offset((page - 1) * page_size).limit(page_size).all()
        return rows, total

    @staticmethod
    @storage_errors
    def touch_last_message(db: Session, connection: UserConnection, at: Optional[datetime] = None) -> None:
        connection.last_message_at = at or utcnow()
        db.commit()

    @staticmethod
    @storage_errors
    def set_archived(db: Session, connection: UserConnection, archived: bool) -> UserConnection:
        connection.is_archived = archived
        db.commit()
        db.refresh(connection)
        return connection
