"""
Tests for the HTTP and WebSocket API.

Tests:
- API service wiring
- Room and game endpoints
- Error responses (status codes and error codes)
- Uploads
- User, leaderboard and moderation endpoints
- WebSocket room channel
"""

import asyncio
import logging

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from ..api import CreateRoomRequest, create_app, build_service
from ..api.service import MAX_UPLOAD_BYTES, validate_upload
from ..config import AppConfig
from ..errors import ImageServiceUnavailable, InvalidUpload
from ..imaging import ImageService
from ..rooms import RoomStatus

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def as_user(user_id: str) -> dict:
    return {"X-User-Id": user_id}


class ClosableImageService(ImageService):
    def __init__(self):
        self.closed = False

    async def generate(self, prompt):
        return PNG_BYTES

    async def edit(self, image, prompt):
        return PNG_BYTES

    async def aclose(self):
        self.closed = True


@pytest.fixture
def config():
    return AppConfig()


@pytest.fixture
def client(config):
    app = create_app(service=build_service(config), config=config)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def room(client):
    """A WAITING room hosted by `host` with `u2` joined."""
    response = client.post(
        "/api/v1/rooms",
        json={"name": "API Room", "max_players": 4, "max_turns": 2},
        headers=as_user("host"),
    )
    assert response.status_code == 201
    room = response.json()
    client.post(f"/api/v1/rooms/{room['id']}/join", headers=as_user("u2"))
    return room


class TestBuildService:
    """Tests for service wiring."""

    def test_in_memory_placeholder_by_default(self):
        service = build_service(AppConfig())
        assert service.placeholder_mode
        assert service.registry.locks is service.session.locks
        assert service.session.broadcaster is service.hub

    def test_sql_backend(self, tmp_path):
        from ..store import SqlRoomStore

        service = build_service(AppConfig(database_url=f"sqlite:///{tmp_path / 'api.db'}"))
        assert isinstance(service.store, SqlRoomStore)

    def test_shutdown_closes_image_service(self, config):
        images = ClosableImageService()
        app = create_app(service=build_service(config, images=images), config=config)
        with TestClient(app):
            assert not images.closed
        assert images.closed


class TestDetachedGameActions:
    """Game actions keep running when the requesting client disconnects."""

    async def _started_room(self, service):
        room = await service.create_room("host", CreateRoomRequest(name="Detached"))
        await service.join_room(room.id, "u2")
        await service.start_game(room.id, "host", prompt="a red balloon")
        return room

    async def _abandon_turn(self, service, room, images):
        images.gate = asyncio.Event()
        request = asyncio.create_task(service.submit_turn(room.id, "host", "add a cat"))
        await asyncio.sleep(0.01)
        request.cancel()
        with pytest.raises(asyncio.CancelledError):
            await request
        images.gate.set()
        await asyncio.sleep(0.05)

    async def test_turn_commits_after_cancel(self, images):
        service = build_service(AppConfig(), images=images)
        room = await self._started_room(service)

        await self._abandon_turn(service, room, images)

        state = service.get_game_state(room.id)
        assert [t.prompt for t in state.turns] == ["a red balloon", "add a cat"]
        assert state.current_player_id == "u2"

    async def test_failure_after_cancel_is_logged(self, images, caplog):
        caplog.set_level(logging.WARNING, logger="exquisite.api.service")
        service = build_service(AppConfig(), images=images)
        room = await self._started_room(service)
        images.error = ImageServiceUnavailable()

        await self._abandon_turn(service, room, images)

        assert "after its client went away" in caplog.text
        state = service.get_game_state(room.id)
        assert len(state.turns) == 1
        assert state.current_player_id == "host"


class TestValidateUpload:
    """Tests for upload checks."""

    def test_accepts_image(self):
        assert validate_upload(PNG_BYTES, "image/png") == PNG_BYTES

    @pytest.mark.parametrize("content_type", [None, "", "text/plain", "application/pdf"])
    def test_rejects_non_images(self, content_type):
        with pytest.raises(InvalidUpload):
            validate_upload(PNG_BYTES, content_type)

    def test_rejects_empty_and_oversized(self):
        with pytest.raises(InvalidUpload):
            validate_upload(b"", "image/png")
        with pytest.raises(InvalidUpload):
            validate_upload(b"\x00" * (MAX_UPLOAD_BYTES + 1), "image/png")


class TestSystemEndpoints:

    def test_health(self, client):
        """Health reports placeholder image mode without an API key."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["image_mode"] == "placeholder"

    def test_root(self, client):
        response = client.get("/")
        assert response.json()["health"] == "/health"

    def test_identity_required(self, client):
        """Requests without a caller are rejected."""
        response = client.post("/api/v1/rooms", json={"name": "Nope"})
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_query_identity_ignored_over_http(self, client):
        """The user_id query parameter is only honoured on WebSockets."""
        response = client.post("/api/v1/rooms?user_id=host", json={"name": "Nope"})
        assert response.status_code == 401



class TestRoomEndpoints:

    def test_create_room(self, client):
        """The creator is the host and only participant."""
        response = client.post("/api/v1/rooms", json={"name": "Doodles"}, headers=as_user("host"))

        assert response.status_code == 201
        data = response.json()
        assert len(data["code"]) == 6
        assert data["status"] == "WAITING"
        assert data["max_players"] == 8
        assert data["max_turns"] == 10
        assert data["participant_count"] == 1
        assert data["participants"][0]["user_id"] == "host"
        assert data["api_version"] == "v1"

    def test_invalid_settings(self, client):
        response = client.post(
            "/api/v1/rooms", json={"name": "Doodles", "max_players": 1}, headers=as_user("host"),
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_ROOM_SETTINGS"

    def test_lookup_by_code(self, client, room):
        response = client.get(f"/api/v1/rooms/code/{room['code'].lower()}", headers=as_user("u3"))
        assert response.status_code == 200
        assert response.json()["id"] == room["id"]

    def test_lookup_errors(self, client):
        response = client.get("/api/v1/rooms/code/ABC", headers=as_user("u1"))
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_ROOM_CODE"

        response = client.get("/api/v1/rooms/missing", headers=as_user("u1"))
        assert response.status_code == 404
        body = response.json()
        assert body["error_code"] == "ROOM_NOT_FOUND"
        assert body["kind"] == "NOT_FOUND"

    def test_join(self, client, room):
        response = client.get(f"/api/v1/rooms/{room['id']}", headers=as_user("u2"))
        data = response.json()
        assert data["participant_count"] == 2
        assert [p["user_id"] for p in data["participants"]] == ["host", "u2"]
        assert [p["turn_order"] for p in data["participants"]] == [0, 1]

        response = client.post(f"/api/v1/rooms/{room['id']}/join", headers=as_user("u2"))
        assert response.status_code == 409
        assert response.json()["error_code"] == "ALREADY_JOINED"

    def test_leave(self, client, room):
        response = client.post(f"/api/v1/rooms/{room['id']}/leave", headers=as_user("u2"))
        assert response.status_code == 200
        assert response.json() == {"success": True, "room_id": room["id"]}

        response = client.post(f"/api/v1/rooms/{room['id']}/leave", headers=as_user("host"))
        assert response.status_code == 409
        assert response.json()["error_code"] == "HOST_CANNOT_LEAVE"

    def test_update_room(self, client, room):
        response = client.patch(
            f"/api/v1/rooms/{room['id']}",
            json={"name": "Renamed", "max_turns": 5},
            headers=as_user("host"),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Renamed"
        assert data["max_turns"] == 5
        assert data["max_players"] == 4

    def test_update_rejects_unknown_fields(self, client, room):
        response = client.patch(
            f"/api/v1/rooms/{room['id']}",
            json={"status": "COMPLETED"},
            headers=as_user("host"),
        )
        assert response.status_code == 422

    def test_update_requires_host(self, client, room):
        response = client.patch(
            f"/api/v1/rooms/{room['id']}", json={"name": "Mine"}, headers=as_user("u2"),
        )
        assert response.status_code == 403
        assert response.json()["error_code"] == "NOT_HOST"


class TestGameEndpoints:

    def test_full_game(self, client, room):
        """Start with a prompt, play both turns, read the history."""
        room_id = room["id"]

        response = client.post(
            f"/api/v1/rooms/{room_id}/start", data={"prompt": "a red balloon"}, headers=as_user("host"),
        )
        assert response.status_code == 200
        state = response.json()
        assert state["status"] == "IN_PROGRESS"
        assert state["current_turn"] == 1
        assert state["current_player_id"] == "host"
        assert state["current_image"].startswith("data:image/svg+xml;base64,")
        assert state["turns"][0]["turn_number"] == 0

        response = client.post(
            f"/api/v1/rooms/{room_id}/turn", json={"prompt": "add a cat"}, headers=as_user("u2"),
        )
        assert response.status_code == 403
        assert response.json()["error_code"] == "NOT_YOUR_TURN"

        response = client.post(
            f"/api/v1/rooms/{room_id}/turn", json={"prompt": "add a cat"}, headers=as_user("host"),
        )
        assert response.status_code == 200
        assert response.json()["current_player_id"] == "u2"

        response = client.post(
            f"/api/v1/rooms/{room_id}/turn", json={"prompt": "make it blue"}, headers=as_user("u2"),
        )
        final = response.json()
        assert final["status"] == "COMPLETED"
        assert final["current_player_id"] is None
        assert [t["turn_number"] for t in final["turns"]] == [0, 1, 2]
        assert final["turns"][2]["input_image_url"] == final["turns"][1]["image_url"]

        history = client.get(f"/api/v1/rooms/{room_id}/history", headers=as_user("host")).json()
        assert history["total_turns"] == 3
        assert history["status"] == "COMPLETED"

    def test_start_with_upload(self, client, room):
        response = client.post(
            f"/api/v1/rooms/{room['id']}/start",
            files={"initial_image": ("start.png", PNG_BYTES, "image/png")},
            headers=as_user("host"),
        )
        assert response.status_code == 200
        state = response.json()
        assert state["turns"][0]["prompt"] == "Initial uploaded image"
        assert state["current_image"].startswith("data:image/png;base64,")

    def test_start_rejects_non_image_upload(self, client, room):
        response = client.post(
            f"/api/v1/rooms/{room['id']}/start",
            files={"initial_image": ("notes.txt", b"hello", "text/plain")},
            headers=as_user("host"),
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_UPLOAD"

    def test_start_requires_content(self, client, room):
        response = client.post(f"/api/v1/rooms/{room['id']}/start", headers=as_user("host"))
        assert response.status_code == 400
        assert response.json()["error_code"] == "MISSING_INITIAL_CONTENT"

    def test_moderation_rejection(self, client, room):
        room_id = room["id"]
        client.post(f"/api/v1/rooms/{room_id}/start", data={"prompt": "a red balloon"}, headers=as_user("host"))

        response = client.post(
            f"/api/v1/rooms/{room_id}/turn", json={"prompt": "add some blood"}, headers=as_user("host"),
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "MODERATION_REJECTED"
        assert "blood" in body["error"]

        response = client.post(f"/api/v1/rooms/{room_id}/turn", json={"prompt": 42}, headers=as_user("host"))
        assert response.status_code == 400
        assert response.json()["error_code"] == "PROMPT_MISSING"

        state = client.get(f"/api/v1/rooms/{room_id}/state", headers=as_user("host")).json()
        assert state["current_player_id"] == "host"
        assert len(state["turns"]) == 1

    def test_host_controls(self, client, room):
        room_id = room["id"]
        client.post(f"/api/v1/rooms/{room_id}/start", data={"prompt": "a red balloon"}, headers=as_user("host"))

        response = client.post(f"/api/v1/rooms/{room_id}/skip", headers=as_user("host"))
        assert response.json()["current_player_id"] == "u2"

        response = client.post(f"/api/v1/rooms/{room_id}/end", headers=as_user("u2"))
        assert response.status_code == 403

        response = client.post(f"/api/v1/rooms/{room_id}/end", headers=as_user("host"))
        assert response.json()["status"] == "COMPLETED"

        response = client.post(f"/api/v1/rooms/{room_id}/cancel", headers=as_user("host"))
        assert response.status_code == 409
        assert response.json()["error_code"] == "ALREADY_ENDED"

    def test_join_after_start(self, client, room):
        client.post(f"/api/v1/rooms/{room['id']}/start", data={"prompt": "a red balloon"}, headers=as_user("host"))
        response = client.post(f"/api/v1/rooms/{room['id']}/join", headers=as_user("u3"))
        assert response.status_code == 409
        assert response.json()["error_code"] == "ROOM_NOT_JOINABLE"


class TestUserEndpoints:

    def test_my_rooms(self, client, room):
        data = client.get("/api/v1/users/me/rooms", headers=as_user("u2")).json()
        assert data["count"] == 1
        entry = data["rooms"][0]
        assert entry["room_id"] == room["id"]
        assert not entry["is_host"]
        assert entry["participant_count"] == 2

    def test_stats_and_games(self, client, room):
        room_id = room["id"]
        client.post(f"/api/v1/rooms/{room_id}/start", data={"prompt": "a red balloon"}, headers=as_user("host"))
        client.post(f"/api/v1/rooms/{room_id}/turn", json={"prompt": "add a cat"}, headers=as_user("host"))

        stats = client.get("/api/v1/users/me/stats", headers=as_user("host")).json()
        assert stats == {"user_id": "host", "games_played": 1, "games_hosted": 1, "total_turns": 1}

        games = client.get("/api/v1/users/me/games", headers=as_user("u2")).json()
        assert games["total"] == 1
        assert not games["has_more"]
        assert games["games"][0]["total_turns"] == 2

        filtered = client.get(
            "/api/v1/users/me/games", params={"status": "COMPLETED"}, headers=as_user("u2"),
        ).json()
        assert filtered["total"] == 0

    def test_games_pagination(self, client):
        for name in ("One", "Two", "Three"):
            client.post("/api/v1/rooms", json={"name": name}, headers=as_user("host"))

        page = client.get("/api/v1/users/me/games", params={"limit": 2}, headers=as_user("host")).json()
        assert page["total"] == 3
        assert len(page["games"]) == 2
        assert page["has_more"]

        response = client.get("/api/v1/users/me/games", params={"limit": 0}, headers=as_user("host"))
        assert response.status_code == 422

    def test_leaderboard(self, client, room):
        """The leaderboard is public."""
        client.post(f"/api/v1/rooms/{room['id']}/start", data={"prompt": "a red balloon"}, headers=as_user("host"))

        data = client.get("/api/v1/leaderboard", params={"sort_by": "games_hosted"}).json()
        assert data["sort_by"] == "games_hosted"
        assert data["entries"][0] == {
            "rank": 1, "user_id": "host", "games_played": 1, "games_hosted": 1, "total_turns": 0,
        }


class TestModerationEndpoints:

    def test_stats_and_flagged(self, client, room):
        room_id = room["id"]
        client.post(f"/api/v1/rooms/{room_id}/start", data={"prompt": "a red balloon"}, headers=as_user("host"))
        client.post(f"/api/v1/rooms/{room_id}/turn", json={"prompt": "kill the cat"}, headers=as_user("host"))

        stats = client.get("/api/v1/moderation/stats", headers=as_user("host")).json()
        assert stats["total_checks"] == 2
        assert stats["flagged_count"] == 1
        assert stats["flag_rate"] == 50.0

        flagged = client.get("/api/v1/moderation/flagged", headers=as_user("host")).json()
        assert flagged["count"] == 1
        assert flagged["entries"][0]["prompt"] == "kill the cat"
        assert flagged["entries"][0]["room_id"] == room_id


class TestWebSocket:

    def test_connect_and_messages(self, client, room):
        """Participants get the room state, presence, pong and chat."""
        url = f"/api/v1/rooms/{room['id']}/ws"
        with client.websocket_connect(url, headers=as_user("u2")) as ws:
            joined = ws.receive_json()
            assert joined["type"] == "room:joined"
            assert joined["payload"]["gameState"]["status"] == RoomStatus.WAITING.value
            assert joined["payload"]["onlineUsers"] == ["u2"]

            connected = ws.receive_json()
            assert connected["type"] == "room:userConnected"
            assert connected["payload"]["userId"] == "u2"

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"type": "room:chat", "payload": {"message": "  hello there  "}})
            chat = ws.receive_json()
            assert chat["type"] == "room:chatMessage"
            assert chat["payload"]["message"] == "hello there"
            assert chat["payload"]["userId"] == "u2"

            ws.send_json({"type": "game:getState"})
            assert ws.receive_json()["type"] == "game:state"

            ws.send_json({"type": "dance"})
            error = ws.receive_json()
            assert error["type"] == "error"

            ws.send_text("not json")
            assert ws.receive_json()["type"] == "error"

    def test_game_events_reach_sockets(self, client, room):
        url = f"/api/v1/rooms/{room['id']}/ws?user_id=u2"
        with client.websocket_connect(url) as ws:
            ws.receive_json()
            ws.receive_json()

            client.post(
                f"/api/v1/rooms/{room['id']}/start", data={"prompt": "a red balloon"}, headers=as_user("host"),
            )
            started = ws.receive_json()
            assert started["type"] == "game:started"
            assert started["payload"]["gameState"]["currentPlayerId"] == "host"

    def test_outsider_rejected(self, client, room):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/api/v1/rooms/{room['id']}/ws", headers=as_user("stranger")):
                pass
        assert exc_info.value.code == 4403

    def test_anonymous_rejected(self, client, room):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/api/v1/rooms/{room['id']}/ws"):
                pass
        assert exc_info.value.code == 4403
