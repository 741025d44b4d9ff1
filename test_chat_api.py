"""Direct messages between friends."""
from app.models import ChatMessage


def _message(client, auth, sender, recipient, content="Leaving at 8?"):
    return client.post(f"/chat/{recipient.id}/messages", json={"content": content}, headers=auth(sender))


def test_friends_can_message(client, auth, make_user, befriend):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)

    response = _message(client, auth, alice, bob)

    assert response.status_code == 201
    body = response.json()
    assert body["sender_id"] == alice.id
    assert body["recipient_id"] == bob.id
    assert body["content"] == "Leaving at 8?"


def test_messages_are_listed_newest_first(client, auth, make_user, befriend):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)
    for content in ("one", "two", "three"):
        _message(client, auth, alice, bob, content)

    page = client.get(f"/chat/{alice.id}/messages", headers=auth(bob)).json()

    assert page["total_count"] == 3
    assert [m["content"] for m in page["items"]] == ["three", "two", "one"]


def test_strangers_cannot_message(client, auth, make_user):
    alice, bob = make_user(), make_user()
    response = _message(client, auth, alice, bob)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "chat_not_allowed"


def test_pending_request_does_not_allow_chat(client, auth, make_user, service):
    alice, bob = make_user(), make_user()
    service.send_request(alice.id, bob.id)
    assert _message(client, auth, bob, alice).status_code == 403


def test_block_stops_chat_both_ways(client, auth, make_user, befriend, service):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)
    service.block(alice.id, bob.id)

    assert _message(client, auth, alice, bob).status_code == 403
    assert _message(client, auth, bob, alice).status_code == 403
    assert client.get(f"/chat/{alice.id}/messages", headers=auth(bob)).status_code == 403


def test_empty_message_is_rejected(client, auth, make_user, befriend):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)
    assert _message(client, auth, alice, bob, "   ").status_code == 422


def test_message_to_self(client, auth, make_user):
    alice = make_user()
    response = _message(client, auth, alice, alice)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "self_connection"


def test_conversations_follow_latest_message(client, auth, make_user, befriend):
    alice, bob, carol, dave = (make_user() for _ in range(4))
    for friend in (bob, carol, dave):
        befriend(alice, friend)
    _message(client, auth, bob, alice)
    _message(client, auth, alice, carol)

    page = client.get("/chat/conversations", headers=auth(alice)).json()
    users = [c["user"]["id"] for c in page["items"]]

    assert users[:2] == [carol.id, bob.id]
    assert set(users) == {bob.id, carol.id, dave.id}


def test_archive_hides_conversation_until_next_message(client, auth, make_user, befriend):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)

    assert client.post(f"/chat/{bob.id}/archive", headers=auth(alice)).json()["status"] == "archived"
    assert client.get("/chat/conversations", headers=auth(alice)).json()["items"] == []

    client.delete(f"/chat/{bob.id}/archive", headers=auth(alice))
    assert len(client.get("/chat/conversations", headers=auth(alice)).json()["items"]) == 1

    client.post(f"/chat/{bob.id}/archive", headers=auth(alice))
    _message(client, auth, bob, alice)
    assert len(client.get("/chat/conversations", headers=auth(alice)).json()["items"]) == 1


def test_unfriending_removes_history(client, auth, make_user, befriend, db):
    alice, bob = make_user(), make_user()
    befriend(alice, bob)
    _message(client, auth, alice, bob)

    client.delete(f"/friends/{bob.id}", headers=auth(alice))

    db.expire_all()
    assert db.query(ChatMessage).count() == 0
    assert _message(client, auth, alice, bob).status_code == 403
