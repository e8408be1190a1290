"""
Tests for event publishing and presence.
"""

import pytest

from ..events import (
    EventType,
    PresenceTracker,
    RecordingBroadcaster,
    WebSocketHub,
    notify,
)
from ..events.broadcaster import Broadcaster


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)


class ExplodingBroadcaster(Broadcaster):
    async def publish(self, room_id, event_type, payload):
        raise RuntimeError("boom")


class TestEventTypes:

    def test_wire_names(self):
        assert EventType.GAME_STARTED.value == "game:started"
        assert EventType.TURN_COMPLETED.value == "game:turnCompleted"
        assert EventType.PLAYER_JOINED.value == "room:playerJoined"
        assert EventType.CHAT_MESSAGE.value == "room:chatMessage"


class TestPresence:
    """Tests for who is online in a room."""

    def test_connect_and_disconnect(self):
        presence = PresenceTracker()

        assert presence.connect("r1", "u1")
        assert presence.is_online("r1", "u1")
        assert presence.online_users("r1") == ["u1"]

        assert presence.disconnect("r1", "u1")
        assert not presence.is_online("r1", "u1")
        assert presence.online_users("r1") == []

    def test_multiple_connections_per_user(self):
        presence = PresenceTracker()
        assert presence.connect("r1", "u1")
        assert not presence.connect("r1", "u1")

        assert not presence.disconnect("r1", "u1")
        assert presence.is_online("r1", "u1")
        assert presence.disconnect("r1", "u1")

    def test_rooms_are_separate(self):
        presence = PresenceTracker()
        presence.connect("r1", "u2")
        presence.connect("r1", "u1")
        presence.connect("r2", "u3")

        assert presence.online_users("r1") == ["u1", "u2"]
        assert presence.online_users("r2") == ["u3"]

    def test_disconnect_unknown(self):
        presence = PresenceTracker()
        assert not presence.disconnect("r1", "u1")


class TestRecordingBroadcaster:

    async def test_records_in_order(self):
        broadcaster = RecordingBroadcaster()
        await broadcaster.publish("r1", EventType.PLAYER_JOINED, {"userId": "u2"})
        await broadcaster.publish("r1", EventType.GAME_STARTED, {})

        assert broadcaster.types() == [EventType.PLAYER_JOINED, EventType.GAME_STARTED]
        assert broadcaster.of_type(EventType.PLAYER_JOINED)[0].payload == {"userId": "u2"}

        broadcaster.clear()
        assert broadcaster.events == []


class TestNotify:
    """Publishing is best-effort."""

    async def test_failure_swallowed(self):
        await notify(ExplodingBroadcaster(), "r1", EventType.GAME_STARTED, {})

    async def test_no_broadcaster(self):
        await notify(None, "r1", EventType.GAME_STARTED, {})

    async def test_delivers(self):
        broadcaster = RecordingBroadcaster()
        await notify(broadcaster, "r1", EventType.TURN_SKIPPED, {"skippedPlayerId": "u1"})
        assert broadcaster.events[0].room_id == "r1"


class TestWebSocketHub:
    """Tests for socket fan-out."""

    async def test_publish_to_room(self):
        hub = WebSocketHub()
        a, b, other = FakeSocket(), FakeSocket(), FakeSocket()
        hub.register("r1", a)
        hub.register("r1", b)
        hub.register("r2", other)

        await hub.publish("r1", EventType.PLAYER_LEFT, {"userId": "u2"})

        expected = {"type": "room:playerLeft", "payload": {"userId": "u2"}}
        assert a.sent == [expected]
        assert b.sent == [expected]
        assert other.sent == []

    async def test_dead_socket_dropped(self):
        hub = WebSocketHub()
        alive, dead = FakeSocket(), FakeSocket(fail=True)
        hub.register("r1", alive)
        hub.register("r1", dead)

        await hub.broadcast("r1", {"type": "ping"})

        assert alive.sent == [{"type": "ping"}]
        assert hub.connection_count("r1") == 1

    def test_unregister(self):
        hub = WebSocketHub()
        socket = FakeSocket()
        hub.register("r1", socket)
        hub.unregister("r1", socket)
        hub.unregister("r1", socket)
        assert hub.connection_count("r1") == 0

    @pytest.mark.parametrize("room_id", ["r1", "missing"])
    async def test_publish_without_sockets(self, room_id):
        await WebSocketHub().publish(room_id, EventType.GAME_STARTED, {})
