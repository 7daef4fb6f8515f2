from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from kiram_chat.core.exceptions import StoreUnavailable
from kiram_chat.main import create_app


@pytest.fixture
def client(service):
    @asynccontextmanager
    async def lifespan(app):
        app.state.chat_service = service
        yield
        await service.wait_for_pending()

    with TestClient(create_app(lifespan=lifespan)) as c:
        yield c


def _open_conversation(client, a="U2", b="U1"):
    resp = client.post("/conversations", json={"user_a": a, "user_b": b})
    assert resp.status_code == 200
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_get_or_create_conversation(client):
    body = _open_conversation(client)
    assert body["conversation_id"] == "U1_U2"
    assert body["participant1_id"] == "U1"
    assert body["participant2_id"] == "U2"
    assert _open_conversation(client, "U1", "U2")["conversation_id"] == "U1_U2"


def test_send_and_list_messages(client):
    _open_conversation(client)
    resp = client.post("/conversations/U1_U2/messages", json={"sender_id": "U1", "receiver_id": "U2", "content": "hello"})
    assert resp.status_code == 201
    sent = resp.json()
    assert sent["message_id"]
    assert sent["attachment_type"] == "none"

    listed = client.get("/conversations/U1_U2/messages").json()
    assert listed == [sent]


def test_errors_map_to_status_codes(client):
    _open_conversation(client)
    resp = client.post(
        "/conversations/U1_U2/messages",
        json={"sender_id": "U1", "receiver_id": "U2", "content": "x", "attachment_type": "none", "attachment_url": "https://x"},
    )
    assert resp.status_code == 400
    assert resp.json()["retryable"] is False

    assert client.get("/conversations/nobody_here").status_code == 404
    assert client.get("/conversations/nobody_here/messages").status_code == 404
    assert client.post("/conversations/U1_U2/messages/missing/read", json={"reader_id": "U2"}).status_code == 404


def test_upload_attachment(client, storage):
    _open_conversation(client)
    resp = client.post(
        "/conversations/U1_U2/attachments",
        data={"attachment_type": "photo"},
        files={"file": ("room.jpg", b"\xff\xd8\xffdata", "image/jpeg")},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["extension"] == "jpg"
    assert body["url"].startswith("https://storage.test/message_attachments/U1_U2_")

    storage.fail = True
    resp = client.post(
        "/conversations/U1_U2/attachments",
        data={"attachment_type": "video"},
        files={"file": ("tour.mp4", b"frames", "video/mp4")},
    )
    assert resp.status_code == 502


def test_read_edit_delete_flow(client):
    _open_conversation(client)
    sent = client.post("/conversations/U1_U2/messages", json={"sender_id": "U1", "receiver_id": "U2", "content": "helo"}).json()
    mid = sent["message_id"]

    assert client.post(f"/conversations/U1_U2/messages/{mid}/read", json={"reader_id": "U2"}).json() == {"updated": True}
    assert client.post(f"/conversations/U1_U2/messages/{mid}/read", json={"reader_id": "U2"}).json() == {"updated": False}

    edited = client.patch(f"/conversations/U1_U2/messages/{mid}", json={"editor_id": "U1", "content": "hello"})
    assert edited.json()["content"] == "hello"
    assert edited.json()["is_edited"] is True

    assert client.delete(f"/conversations/U1_U2/messages/{mid}", params={"user_id": "U1"}).status_code == 204
    [stored] = client.get("/conversations/U1_U2/messages").json()
    assert stored["is_deleted"] is True
    assert stored["is_read"] is True


def test_message_stream(client):
    _open_conversation(client)
    with client.websocket_connect("/ws/conversations/U1_U2?user_id=U2") as ws:
        assert ws.receive_json() == {"type": "snapshot", "items": []}
        client.post("/conversations/U1_U2/messages", json={"sender_id": "U1", "receiver_id": "U2", "content": "hi"})
        frame = ws.receive_json()
        assert frame["type"] == "snapshot"
        assert [m["content"] for m in frame["items"]] == ["hi"]


def test_message_stream_rejects_outsiders(client):
    _open_conversation(client)
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/conversations/U1_U2?user_id=U9") as ws:
            ws.receive_json()
    assert exc_info.value.code == 4403


def test_conversation_stream(client):
    with client.websocket_connect("/ws/users/U1/conversations") as ws:
        assert ws.receive_json() == {"type": "snapshot", "items": []}
        _open_conversation(client)
        frame = ws.receive_json()
        assert [c["conversation_id"] for c in frame["items"]] == ["U1_U2"]


def test_stream_reports_unavailable_feed_and_closes(monkeypatch, client, service):
    async def feed_down(*args, **kwargs):
        raise StoreUnavailable("Could not watch user:U1: connection refused")

    monkeypatch.setattr(service, "subscribe_conversations", feed_down)
    with client.websocket_connect("/ws/users/U1/conversations") as ws:
        frame = ws.receive_json()
        assert frame["type"] == "error"
        assert frame["retryable"] is True
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 1013
