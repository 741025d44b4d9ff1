from typing import Callable, List, Optional, Tuple
from sqlalchemy.orm import Session

from app.crud.connections import ConnectionsCRUD, utcnow
from app.crud.user import get_user, get_active_user
from app.errors import Conflict, Forbidden, InvalidOperation, NotFound
from app.models.connection import UserConnection, ConnectionStatus
from app.models.user import User
from app.schemas.connections import Relationship, RelationshipStatusResponse
from app.services.policy import relationship_for, capabilities_between
from app.utils.logger import get_logger

logger = get_logger(__name__)

LISTABLE_RELATIONSHIPS = ("accepted", "sent", "received", "rejected", "blocked")


def _existing_connection_error(connection: UserConnection, requester_id: str) -> Optional[Exception]:
    """Why a new request cannot be sent over an existing row, or None if the row may be reused."""
    relationship = relationship_for(connection, requester_id)
    if relationship == Relationship.SENT:
        return Conflict("Friend request already sent", code="request_already_pending")
    if relationship == Relationship.RECEIVED:
        return Conflict("This user has already sent you a friend request", code="request_already_received")
    if relationship == Relationship.ACCEPTED:
        return Conflict("You are already friends with this user", code="already_friends")
    if relationship == Relationship.BLOCKED:
        return Forbidden("Cannot send friend request to this user", code="blocked")
    return None


class ConnectionService:
    """
    Friend request / friendship / block state machine over the connection store.

    none -> sent (request), sent -> accepted | rejected (target responds),
    sent -> none (requester cancels), accepted -> none (unfriend),
    any -> blocked (block), blocked -> none (unblock, blocker only),
    rejected -> sent (request again).
    """

    def __init__(self, db: Session, on_accepted: Optional[Callable[[UserConnection], None]] = None):
        self.db = db
        self.on_accepted = on_accepted

    def _require_user(self, user_id: str, active_only: bool = True) -> User:
        user = get_active_user(self.db, user_id) if active_only else get_user(self.db, user_id)
        if not user:
            raise NotFound("User not found", code="user_not_found")
        return user

    @staticmethod
    def _reject_self(user_a: str, user_b: str, message: str) -> None:
        if user_a == user_b:
            raise InvalidOperation(message, code="self_connection")

    def send_request(self, requester_id: str, target_id: str) -> UserConnection:
        self._reject_self(requester_id, target_id, "Cannot send friend request to yourself")
        self._require_user(target_id)

        connection = ConnectionsCRUD.find_pair(self.db, requester_id, target_id, lock=True)
        if connection is None:
            try:
                connection = ConnectionsCRUD.create(self.db, requester_id, target_id)
            except Conflict:
                # Another writer created the pair between our read and insert
                existing = ConnectionsCRUD.find_pair(self.db, requester_id, target_id)
                error = _existing_connection_error(existing, requester_id) if existing else None
                raise error or Conflict("A connection already exists between these users", code="connection_exists")
            logger.info(f"Friend request sent: {requester_id} -> {target_id}")
            return connection

        error = _existing_connection_error(connection, requester_id)
        if error:
            raise error

        # Previously rejected: the pair starts over as a fresh request from requester_id
        connection = ConnectionsCRUD.update_status(
            self.db, requester_id, target_id, ConnectionStatus.PENDING,
            user_id=requester_id,
            connected_user_id=target_id,
            initiated_by=requester_id,
            created_at=utcnow(),
            accepted_at=None,
            rejected_at=None,
        )
        logger.info(f"Friend request re-sent after rejection: {requester_id} -> {target_id}")
        return connection

    def _load_request(self, request_id: str, actor_id: str) -> UserConnection:
        connection = ConnectionsCRUD.get_by_id(self.db, request_id, lock=True)
        if not connection or not connection.involves(actor_id):
            raise NotFound("Friend request not found", code="request_not_found")
        if connection.status != ConnectionStatus.PENDING.value:
            raise Conflict("Friend request already processed", code="request_already_processed")
        return connection

    def respond(self, request_id: str, responder_id: str, accept: bool) -> UserConnection:
        """Accept or reject a pending request. Only its target may respond."""
        connection = self._load_request(request_id, responder_id)
        if connection.initiated_by == responder_id:
            action = "accept" if accept else "reject"
            raise Forbidden(f"Cannot {action} your own friend request", code="not_request_target")

        now = utcnow()
        if accept:
            connection = ConnectionsCRUD.update_status(
                self.db, connection.user_id, connection.connected_user_id, ConnectionStatus.ACCEPTED,
                accepted_at=now,
            )
            logger.info(f"Friend request accepted: {connection.initiated_by} <-> {responder_id}")
            if self.on_accepted:
                self.on_accepted(connection)
        else:
            connection = ConnectionsCRUD.update_status(
                self.db, connection.user_id, connection.connected_user_id, ConnectionStatus.REJECTED,
                rejected_at=now,
            )
            logger.info(f"Friend request rejected: {connection.initiated_by} -> {responder_id}")
        return connection

    def cancel(self, request_id: str, requester_id: str) -> None:
        """Withdraw a pending request. Only its sender may cancel."""
        connection = self._load_request(request_id, requester_id)
        if connection.initiated_by != requester_id:
            raise Forbidden("Only the sender can cancel a friend request", code="not_request_sender")
        ConnectionsCRUD.delete_pair(self.db, connection.user_id, connection.connected_user_id)
        logger.info(f"Friend request cancelled: {requester_id} -> {connection.other_user_id(requester_id)}")

    def remove(self, user_id: str, friend_id: str) -> None:
        """Unfriend. Deletes the row so the pair is back to no relationship."""
        self._reject_self(user_id, friend_id, "Cannot unfriend yourself")
        connection = ConnectionsCRUD.find_pair(self.db, user_id, friend_id, lock=True)
        if not connection or connection.status != ConnectionStatus.ACCEPTED.value:
            raise NotFound("Friendship not found", code="connection_not_found")
        ConnectionsCRUD.delete_pair(self.db, user_id, friend_id)
        logger.info(f"Friend removed: {user_id} x {friend_id}")

    def block(self, blocker_id: str, target_id: str) -> UserConnection:
        """Block ``target_id``. Succeeds from any state and is idempotent."""
        self._reject_self(blocker_id, target_id, "Cannot block yourself")
        self._require_user(target_id, active_only=False)

        connection = ConnectionsCRUD.find_pair(self.db, blocker_id, target_id, lock=True)
        if connection is None:
            try:
                connection = ConnectionsCRUD.create(
                    self.db, blocker_id, target_id, status=ConnectionStatus.BLOCKED, blocked_by=blocker_id
                )
                logger.info(f"User blocked: {blocker_id} blocked {target_id}")
                return connection
            except Conflict:
                # Lost an insert race; fall through and block the row that won
                connection = ConnectionsCRUD.find_pair(self.db, blocker_id, target_id, lock=True)
                if connection is None:
                    raise Conflict("Connection changed while blocking, please retry", code="concurrent_update")

        if connection.status == ConnectionStatus.BLOCKED.value:
            if connection.blocked_by == blocker_id or connection.mutual_block:
                return connection
            connection = ConnectionsCRUD.update_status(
                self.db, blocker_id, target_id, ConnectionStatus.BLOCKED, mutual_block=True
            )
        else:
            connection = ConnectionsCRUD.update_status(
                self.db, blocker_id, target_id, ConnectionStatus.BLOCKED,
                blocked_by=blocker_id,
                blocked_at=utcnow(),
                mutual_block=False,
                is_archived=False,
            )
        logger.info(f"User blocked: {blocker_id} blocked {target_id}")
        return connection

    def unblock(self, blocker_id: str, target_id: str) -> None:
        """
        Lift a block. Only the blocker may unblock; the blocked user cannot restore
        the relationship. When both users blocked each other, the other block stays.
        """
        self._reject_self(blocker_id, target_id, "Cannot unblock yourself")
        connection = ConnectionsCRUD.find_pair(self.db, blocker_id, target_id, lock=True)
        if not connection or connection.status != ConnectionStatus.BLOCKED.value:
            raise NotFound("No blocked connection found", code="connection_not_found")

        if connection.mutual_block:
            ConnectionsCRUD.update_status(
                self.db, blocker_id, target_id, ConnectionStatus.BLOCKED,
                blocked_by=target_id,
                mutual_block=False,
            )
            logger.info(f"User unblocked: {blocker_id} unblocked {target_id}, block by {target_id} remains")
            return

        if connection.blocked_by != blocker_id:
            raise Forbidden("Only the user who blocked can unblock", code="not_blocker")
        ConnectionsCRUD.delete_pair(self.db, blocker_id, target_id)
        logger.info(f"User unblocked: {blocker_id} unblocked {target_id}")

    def get_status(self, viewer_id: str, other_id: str) -> RelationshipStatusResponse:
        """Relationship of the pair from ``viewer_id``'s side, with the capabilities it grants."""
        if viewer_id == other_id:
            return RelationshipStatusResponse(
                user_id=other_id,
                status=Relationship.SELF,
                capabilities=capabilities_between(None, viewer_id, other_id),
            )

        self._require_user(other_id, active_only=False)
        connection = ConnectionsCRUD.find_pair(self.db, viewer_id, other_id)
        relationship = relationship_for(connection, viewer_id)
        return RelationshipStatusResponse(
            user_id=other_id,
            status=relationship,
            capabilities=capabilities_between(connection, viewer_id, other_id),
            connection_id=connection.id if connection else None,
            request_date=connection.created_at if connection else None,
            connection_date=connection.accepted_at if relationship == Relationship.ACCEPTED else None,
            blocked_by_me=bool(
                connection
                and relationship == Relationship.BLOCKED
                and (connection.blocked_by == viewer_id or connection.mutual_block)
            ),
        )

    def list_connections(
        self, user_id: str, relationship: str = "accepted", page: int = 1, page_size: int = 20
    ) -> Tuple[List[UserConnection], int]:
        if relationship not in LISTABLE_RELATIONSHIPS:
            raise InvalidOperation(f"Unknown connection status '{relationship}'", code="unknown_status")
        return ConnectionsCRUD.list_for_user(self.db, user_id, relationship, page, page_size)

    def purge_user(self, user_id: str) -> int:
        """Remove every connection of an account that is being deleted."""
        return ConnectionsCRUD.purge_user(self.db, user_id)
