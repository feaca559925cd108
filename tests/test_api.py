import pytest
from fastapi.testclient import TestClient

from app.main import app


@pytest.fixture
def client():
    with TestClient(app) as client:
        yield client


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["rooms"] == 0
    assert body["services"]["scheduler"]["status"] == "running"
    assert body["services"]["scheduler"]["scheduled_jobs"] == 2


def test_no_active_rooms(client):
    response = client.get("/api/rooms/active")
    assert response.status_code == 200
    assert response.json() == {"rooms": [], "totalRooms": 0}


def test_unknown_room_info(client):
    response = client.get("/api/room/does-not-exist/info")
    assert response.status_code == 404
    assert response.json()["detail"] == "Room not found"


def test_websocket_create_room_is_listed(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.send_json({"type": "create-room", "data": {"playerName": "Alice"}})

        joined = websocket.receive_json()
        assert joined["type"] == "room-joined"
        assert joined["data"]["isHost"] is True
        room_id = joined["data"]["roomId"]

        code = websocket.receive_json()
        assert code["type"] == "room-code"
        assert len(code["data"]["code"]) == 6

        players = websocket.receive_json()
        assert players["type"] == "player-list-update"

        active = client.get("/api/rooms/active").json()
        assert active["totalRooms"] == 1
        assert active["rooms"][0]["roomId"] == room_id

        info = client.get(f"/api/room/{room_id}/info").json()
        assert info["playerCount"] == 1
        assert info["gameStatus"] == "waiting"
        assert info["gameSettings"]["is3D"] is False


def test_websocket_rejects_malformed_frames(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.send_text("not json")
        assert websocket.receive_json() == {"type": "error", "data": {"message": "Malformed message"}}

        websocket.send_json({"type": "start-game", "data": {}})
        assert websocket.receive_json() == {"type": "error", "data": {"message": "Player not found"}}
