"""Visibility policy: relationship labels and the capabilities each one grants."""
import pytest

from app.models import UserConnection, ConnectionStatus
from app.schemas import Capabilities, Relationship
from app.services.policy import capabilities_between, evaluate_capabilities, relationship_for


def _row(status, initiated_by="alice", other="bob", blocked_by=None):
    return UserConnection(
        user_id=initiated_by,
        connected_user_id=other,
        initiated_by=initiated_by,
        status=status.value,
        blocked_by=blocked_by,
    )


@pytest.mark.parametrize("relationship, expected", [
    (Relationship.SELF, Capabilities(can_view_full_profile=True, can_view_rides=True, can_view_groups=True)),
    (Relationship.NONE, Capabilities(can_send_request=True)),
    (Relationship.REJECTED, Capabilities(can_send_request=True)),
    (Relationship.SENT, Capabilities()),
    (Relationship.RECEIVED, Capabilities()),
    (Relationship.ACCEPTED, Capabilities(
        can_chat=True, can_view_full_profile=True, can_view_rides=True, can_view_groups=True
    )),
    (Relationship.BLOCKED, Capabilities()),
])
def test_capabilities_per_relationship(relationship, expected):
    assert evaluate_capabilities(relationship) == expected


def test_evaluation_is_deterministic():
    for relationship in Relationship:
        assert evaluate_capabilities(relationship) == evaluate_capabilities(relationship)


def test_blocked_grants_nothing():
    capabilities = evaluate_capabilities(Relationship.BLOCKED)
    assert not any(capabilities.model_dump().values())


def test_no_row_is_none():
    assert relationship_for(None, "alice") == Relationship.NONE


def test_pending_is_sent_for_initiator_and_received_for_target():
    row = _row(ConnectionStatus.PENDING)
    assert relationship_for(row, "alice") == Relationship.SENT
    assert relationship_for(row, "bob") == Relationship.RECEIVED


@pytest.mark.parametrize("status", [ConnectionStatus.ACCEPTED, ConnectionStatus.REJECTED, ConnectionStatus.BLOCKED])
def test_settled_statuses_look_the_same_from_both_sides(status):
    row = _row(status, blocked_by="alice" if status == ConnectionStatus.BLOCKED else None)
    assert relationship_for(row, "alice") == relationship_for(row, "bob") == Relationship(status.value)


def test_capabilities_between_same_user_is_self():
    assert capabilities_between(None, "alice", "alice") == evaluate_capabilities(Relationship.SELF)


def test_block_denies_chat_to_both_sides():
    row = _row(ConnectionStatus.BLOCKED, blocked_by="alice")
    assert not capabilities_between(row, "alice", "bob").can_chat
    assert not capabilities_between(row, "bob", "alice").can_chat
