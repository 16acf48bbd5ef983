import pytest
from starlette.websockets import WebSocketDisconnect

from session import RoomSession


def create_room(client, **body):
    response = client.post("/api/rooms", json=body)
    assert response.status_code == 200, response.text
    return response.json()


def delete_room(client, room_id, password=None):
    return client.request("DELETE", f"/api/rooms/{room_id}", json={"password": password})


def join(ws, room_id, username):
    ws.send_json({"type": "join", "roomId": room_id, "username": username})
    history = ws.receive_json()
    assert history["type"] == "history"
    return history["messages"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_room_appears_in_list_without_password(client):
    room = create_room(client, name="General", username="alice")

    assert room == {"id": room["id"], "name": "General", "description": None, "created_by": "alice"}
    listed = client.get("/api/rooms").json()
    assert listed == [room]
    assert "password" not in listed[0] and "password_hash" not in listed[0]


def test_create_room_requires_name_and_username(client):
    response = client.post("/api/rooms", json={"name": "General"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Name and username are required"

    response = client.post("/api/rooms", json={"username": "alice"})
    assert response.status_code == 400


def test_room_details(client):
    room = create_room(client, name="Private", description="shh", password="secret", username="alice")

    details = client.get(f"/api/rooms/{room['id']}").json()

    assert details["has_password"] is True
    assert details["online_count"] == 0
    assert details["description"] == "shh"
    assert "password_hash" not in details
    assert client.get("/api/rooms/999").status_code == 404


def test_password_lifecycle(client):
    room = create_room(client, name="Private", password="secret", username="alice")
    room_id = room["id"]

    assert client.post(f"/api/rooms/{room_id}/check-password", json={"password": "secret"}).json() == {"valid": True}
    assert client.post(f"/api/rooms/{room_id}/check-password", json={"password": "wrong"}).json() == {"valid": False}

    response = delete_room(client, room_id, "wrong")
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid password"

    assert delete_room(client, room_id, "secret").json() == {"success": True}
    assert client.get("/api/rooms").json() == []
    assert delete_room(client, room_id, "secret").status_code == 404


def test_open_room_password_checks(client):
    room = create_room(client, name="General", username="alice")

    assert client.post(f"/api/rooms/{room['id']}/check-password", json={"password": ""}).json() == {"valid": True}
    assert client.post(f"/api/rooms/{room['id']}/check-password", json={}).json() == {"valid": True}
    assert client.request("DELETE", f"/api/rooms/{room['id']}").json() == {"success": True}


def test_check_password_missing_room(client):
    assert client.post("/api/rooms/5/check-password", json={"password": "x"}).status_code == 404


def test_chat_scenario(client):
    room_id = create_room(client, name="General", username="alice")["id"]

    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        assert join(alice, room_id, "alice") == []
        assert join(bob, room_id, "bob") == []
        assert client.get(f"/api/rooms/{room_id}").json()["online_count"] == 2

        alice.send_json({"type": "message", "text": "hi"})
        mine, theirs = alice.receive_json(), bob.receive_json()
        assert mine["type"] == theirs["type"] == "message"
        assert mine["username"] == theirs["username"] == "alice"
        assert mine["text"] == theirs["text"] == "hi"
        assert mine["canEdit"] is True
        assert theirs["canEdit"] is False
        message_id = mine["id"]

        # bob cannot edit alice's message, only bob hears about it
        bob.send_json({"type": "edit", "messageId": message_id, "newText": "pwned"})
        assert bob.receive_json()["type"] == "error"
        alice.send_json({"type": "message", "text": "still me"})
        assert alice.receive_json()["text"] == "still me"
        assert bob.receive_json()["text"] == "still me"

        alice.send_json({"type": "edit", "messageId": message_id, "newText": "hello"})
        edited_mine, edited_theirs = alice.receive_json(), bob.receive_json()
        assert edited_mine["type"] == "edit" and edited_mine["text"] == "hello"
        assert edited_mine["is_edited"] is True
        assert edited_mine["canEdit"] is True and edited_theirs["canEdit"] is False

        alice.send_json({"type": "delete", "messageId": message_id})
        assert alice.receive_json() == {"type": "delete", "messageId": message_id}
        assert bob.receive_json() == {"type": "delete", "messageId": message_id}

    with client.websocket_connect("/ws") as carol:
        history = join(carol, room_id, "carol")
        assert [m["text"] for m in history] == ["still me"]
        assert history[0]["canEdit"] is False


def test_malformed_frames_do_not_close_connection(client):
    room_id = create_room(client, name="General", username="alice")["id"]

    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        ws.send_json({"type": "shout"})
        ws.send_json({"type": "message", "text": "before join"})
        assert join(ws, room_id, "alice") == []


def test_undecodable_text_does_not_close_connection(client):
    room_id = create_room(client, name="General", username="alice")["id"]

    with client.websocket_connect("/ws") as ws:
        join(ws, room_id, "alice")
        ws.send_text('{"type": "message", "text": "\\ud800"}')
        ws.send_text('{"type": "edit", "messageId": 1, "newText": "\\udfff"}')
        ws.send_json({"type": "message", "text": "after"})
        assert ws.receive_json()["text"] == "after"

    with client.websocket_connect("/ws") as ws:
        assert [m["text"] for m in join(ws, room_id, "bob")] == ["after"]


def test_undecodable_strings_rejected_over_http(client):
    headers = {"content-type": "application/json"}
    response = client.post("/api/rooms", content='{"name": "\\ud800", "username": "alice"}', headers=headers)
    assert response.status_code == 422

    room_id = create_room(client, name="General", password="secret", username="alice")["id"]
    response = client.post(f"/api/rooms/{room_id}/check-password", content='{"password": "\\ud800"}', headers=headers)
    assert response.status_code == 422
    assert client.get("/api/rooms").json()[0]["id"] == room_id


def test_deleting_room_notifies_members(client):
    room_id = create_room(client, name="General", password="secret", username="alice")["id"]

    with client.websocket_connect("/ws") as ws:
        join(ws, room_id, "alice")
        ws.send_json({"type": "message", "text": "hi"})
        ws.receive_json()

        assert delete_room(client, room_id, "secret").status_code == 200
        assert ws.receive_json() == {"type": "room_deleted", "roomId": room_id}

        ws.send_json({"type": "message", "text": "anyone?"})
        error = ws.receive_json()
        assert error == {"type": "error", "action": "message", "detail": "Room not found"}


def test_unexpected_endpoint_error_closes_socket(client, monkeypatch):
    async def explode(self, raw):
        raise RuntimeError("boom")

    monkeypatch.setattr(RoomSession, "handle_raw", explode)

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "message", "text": "hi"})
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()
