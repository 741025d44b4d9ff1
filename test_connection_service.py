"""Connection store and friend request state machine."""
import pytest
from sqlalchemy.exc import OperationalError

from app.crud.connections import ConnectionsCRUD, pair_key
from app.errors import Conflict, Forbidden, InvalidOperation, NotFound, Unavailable
from app.models import ConnectionStatus, UserConnection
from app.schemas import Relationship
from app.services.connections import ConnectionService


def _rows(db):
    db.expire_all()
    return db.query(UserConnection).all()


# --- store ---

def test_pair_key_is_order_independent():
    assert pair_key("b", "a") == pair_key("a", "b") == ("a", "b")


def test_find_pair_from_either_side(db, make_user):
    alice, bob = make_user(), make_user()
    created = ConnectionsCRUD.create(db, alice.id, bob.id)
    assert ConnectionsCRUD.find_pair(db, alice.id, bob.id).id == created.id
    assert ConnectionsCRUD.find_pair(db, bob.id, alice.id).id == created.id


def test_create_twice_for_a_pair_conflicts(db, make_user):
    alice, bob = make_user(), make_user()
    ConnectionsCRUD.create(db, alice.id, bob.id)
    with pytest.raises(Conflict) as exc_info:
        ConnectionsCRUD.create(db, bob.id, alice.id)
    assert exc_info.value.code == "connection_exists"
    assert len(_rows(db)) == 1


def test_update_missing_pair_is_not_found(db, make_user):
    alice, bob = make_user(), make_user()
    with pytest.raises(NotFound):
        ConnectionsCRUD.update_status(db, alice.id, bob.id, ConnectionStatus.ACCEPTED)


def test_connected_user_ids_covers_every_status(db, make_user, service):
    alice, bob, carol, dave, erin = (make_user() for _ in range(5))
    service.send_request(alice.id, bob.id)
    service.send_request(carol.id, alice.id)
    service.block(alice.id, dave.id)

    assert ConnectionsCRUD.connected_user_ids(db, alice.id) == {bob.id, carol.id, dave.id}
    assert ConnectionsCRUD.connected_user_ids(db, alice.id, [bob.id, erin.id]) == {bob.id}
    assert ConnectionsCRUD.connected_user_ids(db, alice.id, []) == set()


def test_storage_failure_is_unavailable(db, make_user, monkeypatch):
    alice, bob = make_user(), make_user()

    def broken_query(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "query", broken_query)
    with pytest.raises(Unavailable) as exc_info:
        ConnectionsCRUD.find_pair(db, alice.id, bob.id)
    assert "locked" not in exc_info.value.message


# --- sending requests ---

def test_send_request_creates_pending_row(service, make_user):
    alice, bob = make_user(), make_user()
    connection = service.send_request(alice.id, bob.id)

    assert connection.status == ConnectionStatus.PENDING.value
    assert connection.initiated_by == alice.id
    assert service.get_status(alice.id, bob.id).status == Relationship.SENT
    assert service.get_status(bob.id, alice.id).status == Relationship.RECEIVED


def test_request_to_self_is_invalid(service, make_user):
    alice = make_user()
    with pytest.raises(InvalidOperation) as exc_info:
        service.send_request(alice.id, alice.id)
    assert exc_info.value.code == "self_connection"


def test_request_to_unknown_user_is_not_found(service, make_user):
    alice = make_user()
    with pytest.raises(NotFound) as exc_info:
        service.send_request(alice.id, "no-such-user")
    assert exc_info.value.code == "user_not_found"


def test_request_to_inactive_user_is_not_found(service, make_user):
    alice, gone = make_user(), make_user(is_active=False)
    with pytest.raises(NotFound):
        service.send_request(alice.id, gone.id)


def test_duplicate_request_conflicts(db, service, make_user):
    alice, bob = make_user(), make_user()
    service.send_request(alice.id, bob.id)

    with pytest.raises(Conflict) as exc_info:
        service.send_request(alice.id, bob.id)
    assert exc_info.value.code == "request_already_pending"

    with pytest.raises(Conflict) as exc_info:
        service.send_request(bob.id, alice.id)
    assert exc_info.value.code == "request_already_received"

    assert len(_rows(db)) == 1


def test_request_between_friends_conflicts(service, make_user, befriend):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)
    with pytest.raises(Conflict) as exc_info:
        service.send_request(bob.id, alice.id)
    assert exc_info.value.code == "already_friends"


@pytest.fixture
def stale_first_lookup(monkeypatch):
    """The first pair lookup misses, as if another writer inserted the row right after it."""
    real_find_pair = ConnectionsCRUD.find_pair
    lookups = []

    def find_pair(db, user_a, user_b, lock=False):
        lookups.append((user_a, user_b))
        if len(lookups) == 1:
            return None
        return real_find_pair(db, user_a, user_b, lock=lock)

    monkeypatch.setattr(ConnectionsCRUD, "find_pair", staticmethod(find_pair))
    return lookups


def test_request_losing_insert_race_reports_existing_request(db, service, make_user, stale_first_lookup):
    alice, bob = make_user(), make_user()
    service.send_request(bob.id, alice.id)
    stale_first_lookup.clear()

    with pytest.raises(Conflict) as exc_info:
        service.send_request(alice.id, bob.id)

    assert exc_info.value.code == "request_already_received"
    rows = _rows(db)
    assert len(rows) == 1
    assert rows[0].initiated_by == bob.id
    assert rows[0].status == ConnectionStatus.PENDING.value


def test_block_losing_insert_race_blocks_existing_row(db, service, make_user, stale_first_lookup):
    alice, bob = make_user(), make_user()
    service.block(bob.id, alice.id)
    stale_first_lookup.clear()

    connection = service.block(alice.id, bob.id)

    assert connection.mutual_block
    rows = _rows(db)
    assert len(rows) == 1
    assert rows[0].status == ConnectionStatus.BLOCKED.value
    assert rows[0].blocked_by == bob.id
    assert rows[0].mutual_block


def test_request_on_blocked_pair_is_forbidden(service, make_user):
    alice, bob = make_user(), make_user()
    service.block(alice.id, bob.id)
    for requester, target in ((alice, bob), (bob, alice)):
        with pytest.raises(Forbidden) as exc_info:
            service.send_request(requester.id, target.id)
        assert exc_info.value.code == "blocked"


def test_rejected_request_can_be_sent_again_by_either_side(db, service, make_user):
    alice, bob = make_user(), make_user()
    first = service.send_request(alice.id, bob.id)
    service.respond(first.id, bob.id, accept=False)
    assert service.get_status(alice.id, bob.id).status == Relationship.REJECTED

    again = service.send_request(bob.id, alice.id)
    assert again.id == first.id
    assert again.initiated_by == bob.id
    assert again.rejected_at is None
    assert service.get_status(bob.id, alice.id).status == Relationship.SENT
    assert len(_rows(db)) == 1


# --- responding and cancelling ---

def test_accept_by_target(make_user, db):
    accepted = []
    service = ConnectionService(db, on_accepted=accepted.append)
    alice, bob = make_user(), make_user()
    request = service.send_request(alice.id, bob.id)

    connection = service.respond(request.id, bob.id, accept=True)

    assert connection.status == ConnectionStatus.ACCEPTED.value
    assert connection.accepted_at is not None
    assert [c.id for c in accepted] == [request.id]
    for viewer, other in ((alice, bob), (bob, alice)):
        status = service.get_status(viewer.id, other.id)
        assert status.status == Relationship.ACCEPTED
        assert status.capabilities.can_chat


def test_requester_cannot_accept_own_request(service, make_user):
    alice, bob = make_user(), make_user()
    request = service.send_request(alice.id, bob.id)
    with pytest.raises(Forbidden) as exc_info:
        service.respond(request.id, alice.id, accept=True)
    assert exc_info.value.code == "not_request_target"


def test_outsider_cannot_see_request(service, make_user):
    alice, bob, mallory = make_user(), make_user(), make_user()
    request = service.send_request(alice.id, bob.id)
    with pytest.raises(NotFound) as exc_info:
        service.respond(request.id, mallory.id, accept=True)
    assert exc_info.value.code == "request_not_found"


def test_responding_twice_conflicts(service, make_user):
    alice, bob = make_user(), make_user()
    request = service.send_request(alice.id, bob.id)
    service.respond(request.id, bob.id, accept=False)
    with pytest.raises(Conflict) as exc_info:
        service.respond(request.id, bob.id, accept=True)
    assert exc_info.value.code == "request_already_processed"


def test_cancel_by_sender_deletes_row(db, service, make_user):
    alice, bob = make_user(), make_user()
    request = service.send_request(alice.id, bob.id)
    service.cancel(request.id, alice.id)
    assert _rows(db) == []
    assert service.get_status(alice.id, bob.id).status == Relationship.NONE


def test_cancel_by_target_is_forbidden(service, make_user):
    alice, bob = make_user(), make_user()
    request = service.send_request(alice.id, bob.id)
    with pytest.raises(Forbidden) as exc_info:
        service.cancel(request.id, bob.id)
    assert exc_info.value.code == "not_request_sender"


# --- unfriending ---

def test_remove_friend_then_request_again(service, make_user, befriend):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)

    service.remove(alice.id, bob.id)

    assert service.get_status(alice.id, bob.id).status == Relationship.NONE
    assert service.send_request(alice.id, bob.id).status == ConnectionStatus.PENDING.value


def test_remove_without_friendship_is_not_found(service, make_user):
    alice, bob = make_user(), make_user()
    service.send_request(alice.id, bob.id)
    with pytest.raises(NotFound):
        service.remove(alice.id, bob.id)


# --- blocking ---

@pytest.mark.parametrize("setup", ["none", "pending", "accepted", "rejected"])
def test_block_succeeds_from_any_state(db, service, make_user, setup):
    alice, bob = make_user(), make_user()
    if setup != "none":
        request = service.send_request(bob.id, alice.id)
        if setup != "pending":
            service.respond(request.id, alice.id, accept=setup == "accepted")

    service.block(alice.id, bob.id)

    for viewer, other in ((alice, bob), (bob, alice)):
        status = service.get_status(viewer.id, other.id)
        assert status.status == Relationship.BLOCKED
        assert not any(status.capabilities.model_dump().values())
    assert len(_rows(db)) == 1


def test_block_is_idempotent(db, service, make_user):
    alice, bob = make_user(), make_user()
    first = service.block(alice.id, bob.id)
    second = service.block(alice.id, bob.id)
    assert first.id == second.id
    assert second.blocked_by == alice.id
    assert not second.mutual_block
    assert len(_rows(db)) == 1


def test_block_inactive_user_is_allowed(service, make_user):
    alice, gone = make_user(), make_user(is_active=False)
    assert service.block(alice.id, gone.id).status == ConnectionStatus.BLOCKED.value


def test_only_blocker_can_unblock(service, make_user, befriend):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)
    service.block(alice.id, bob.id)

    with pytest.raises(Forbidden) as exc_info:
        service.unblock(bob.id, alice.id)
    assert exc_info.value.code == "not_blocker"

    service.unblock(alice.id, bob.id)
    assert service.get_status(bob.id, alice.id).status == Relationship.NONE


def test_unblock_without_block_is_not_found(service, make_user):
    alice, bob = make_user(), make_user()
    with pytest.raises(NotFound):
        service.unblock(alice.id, bob.id)


def test_block_back_keeps_reported_relationship(service, make_user, befriend):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)
    service.block(alice.id, bob.id)
    before = {viewer.id: service.get_status(viewer.id, other.id) for viewer, other in ((alice, bob), (bob, alice))}

    service.block(bob.id, alice.id)

    for viewer, other in ((alice, bob), (bob, alice)):
        after = service.get_status(viewer.id, other.id)
        assert after.status == before[viewer.id].status == Relationship.BLOCKED
        assert after.capabilities == before[viewer.id].capabilities
        assert not any(after.capabilities.model_dump().values())
        assert after.connection_id == before[viewer.id].connection_id


def test_mutual_block_survives_one_unblock(service, make_user):
    alice, bob = make_user(), make_user()
    service.block(alice.id, bob.id)
    connection = service.block(bob.id, alice.id)
    assert connection.mutual_block
    assert service.get_status(alice.id, bob.id).blocked_by_me
    assert service.get_status(bob.id, alice.id).blocked_by_me

    service.unblock(alice.id, bob.id)

    alice_view = service.get_status(alice.id, bob.id)
    assert alice_view.status == Relationship.BLOCKED
    assert not alice_view.blocked_by_me
    assert service.get_status(bob.id, alice.id).blocked_by_me
    with pytest.raises(Forbidden):
        service.unblock(alice.id, bob.id)

    service.unblock(bob.id, alice.id)
    assert service.get_status(alice.id, bob.id).status == Relationship.NONE


# --- status and listings ---

def test_status_of_self(service, make_user):
    alice = make_user()
    status = service.get_status(alice.id, alice.id)
    assert status.status == Relationship.SELF
    assert status.capabilities.can_view_full_profile
    assert not status.capabilities.can_send_request


def test_status_of_unknown_user_is_not_found(service, make_user):
    alice = make_user()
    with pytest.raises(NotFound):
        service.get_status(alice.id, "no-such-user")


def test_status_is_symmetric_apart_from_direction(service, make_user, befriend):
    alice, bob, carol, dave = (make_user() for _ in range(4))
    befriend(alice, bob)
    service.send_request(alice.id, carol.id)
    service.block(dave.id, alice.id)

    assert service.get_status(alice.id, bob.id).status == service.get_status(bob.id, alice.id).status
    assert service.get_status(alice.id, dave.id).status == service.get_status(dave.id, alice.id).status
    assert {service.get_status(alice.id, carol.id).status, service.get_status(carol.id, alice.id).status} == {
        Relationship.SENT, Relationship.RECEIVED
    }


def test_list_connections_by_relationship(service, make_user, befriend):
    alice, bob, carol, dave, erin = (make_user() for _ in range(5))
    befriend(alice, bob)
    service.send_request(alice.id, carol.id)
    service.send_request(dave.id, alice.id)
    service.block(alice.id, erin.id)

    def listed(relationship):
        rows, total = service.list_connections(alice.id, relationship)
        assert total == len(rows)
        return {row.other_user_id(alice.id) for row in rows}

    assert listed("accepted") == {bob.id}
    assert listed("sent") == {carol.id}
    assert listed("received") == {dave.id}
    assert listed("blocked") == {erin.id}
    assert listed("rejected") == set()
    # Being blocked does not show up in the blocked user's list
    rows, _ = service.list_connections(erin.id, "blocked")
    assert rows == []


def test_list_connections_unknown_relationship(service, make_user):
    alice = make_user()
    with pytest.raises(InvalidOperation) as exc_info:
        service.list_connections(alice.id, "frenemies")
    assert exc_info.value.code == "unknown_status"


def test_list_connections_paginates(service, make_user):
    alice = make_user()
    for _ in range(5):
        service.send_request(alice.id, make_user().id)

    first, total = service.list_connections(alice.id, "sent", page=1, page_size=2)
    last, _ = service.list_connections(alice.id, "sent", page=3, page_size=2)
    assert total == 5
    assert len(first) == 2
    assert len(last) == 1


def test_purge_user_removes_every_connection(db, service, make_user, befriend):
    alice, bob, carol, dave = (make_user() for _ in range(4))
    befriend(alice, bob)
    service.send_request(carol.id, alice.id)
    service.block(dave.id, alice.id)
    service.send_request(bob.id, carol.id)

    assert service.purge_user(alice.id) == 3
    remaining = _rows(db)
    assert len(remaining) == 1
    assert not remaining[0].involves(alice.id)
