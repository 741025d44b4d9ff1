"""
Visibility policy for a pair of users.

Everything that decides what one user may do or see regarding another (chat
eligibility, profile detail, ride and group listings, whether a request can be
sent) asks ``evaluate_capabilities``. Rules are checked in order, first match wins.
"""
from typing import Optional

from app.models.connection import UserConnection, ConnectionStatus
from app.schemas.connections import Capabilities, Relationship


def relationship_for(connection: Optional[UserConnection], viewer_id: str) -> Relationship:
    """Label a stored row from ``viewer_id``'s side of the pair."""
    if connection is None:
        return Relationship.NONE
    if connection.status == ConnectionStatus.PENDING.value:
        return Relationship.SENT if connection.initiated_by == viewer_id else Relationship.RECEIVED
    return Relationship(connection.status)


def evaluate_capabilities(relationship: Relationship) -> Capabilities:
    if relationship == Relationship.SELF:
        return Capabilities(
            can_chat=False,
            can_send_request=False,
            can_view_full_profile=True,
            can_view_rides=True,
            can_view_groups=True,
        )
    if relationship == Relationship.BLOCKED:
        # Grants nothing to either side, the blocker included
        return Capabilities()
    if relationship == Relationship.ACCEPTED:
        return Capabilities(
            can_chat=True,
            can_send_request=False,
            can_view_full_profile=True,
            can_view_rides=True,
            can_view_groups=True,
        )
    if relationship in (Relationship.NONE, Relationship.REJECTED):
        return Capabilities(can_send_request=True)
    # SENT / RECEIVED: awaiting a response
    return Capabilities()


def capabilities_between(connection: Optional[UserConnection], viewer_id: str, other_id: str) -> Capabilities:
    if viewer_id == other_id:
        return evaluate_capabilities(Relationship.SELF)
    return evaluate_capabilities(relationship_for(connection, viewer_id))
