"""
Pytest fixtures for Exquisite tests.
"""

import asyncio

import pytest

from ..events import RecordingBroadcaster
from ..imaging import ImageService
from ..moderation import InMemoryAuditLog, ModerationGate
from ..rooms import RoomRegistry
from ..session import GameSession, RoomLocks
from ..store import InMemoryRoomStore, InMemoryStatsRecorder

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeImageService(ImageService):
    """
    Deterministic image service.

    Output bytes are a PNG header followed by the prompt, so tests can see
    which prompt produced which image. Set `error` to make the next calls
    fail, or `gate` to hold calls until the event is set.
    """

    def __init__(self):
        self.calls: list[tuple[str, bytes | None, str]] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.on_edit = None

    async def generate(self, prompt: str) -> bytes:
        self.calls.append(("generate", None, prompt))
        return await self._result(prompt)

    async def edit(self, image: bytes, prompt: str) -> bytes:
        self.calls.append(("edit", image, prompt))
        if self.on_edit is not None:
            self.on_edit()
        return await self._result(prompt)

    async def _result(self, prompt: str) -> bytes:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return b"\x89PNG\r\n\x1a\n" + prompt.encode("utf-8")


@pytest.fixture
def store() -> InMemoryRoomStore:
    return InMemoryRoomStore()


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def gate(audit_log) -> ModerationGate:
    return ModerationGate(audit_log=audit_log)


@pytest.fixture
def images() -> FakeImageService:
    return FakeImageService()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def stats() -> InMemoryStatsRecorder:
    return InMemoryStatsRecorder()


@pytest.fixture
def locks() -> RoomLocks:
    return RoomLocks()


@pytest.fixture
def registry(store, locks, broadcaster) -> RoomRegistry:
    return RoomRegistry(store, locks=locks, broadcaster=broadcaster)


@pytest.fixture
def session(store, gate, images, broadcaster, stats, locks) -> GameSession:
    return GameSession(
        store,
        gate,
        images,
        broadcaster=broadcaster,
        stats=stats,
        locks=locks,
    )


@pytest.fixture
def room_factory(registry):
    """Create a room with the given players joined in order (first is host)."""
    async def create(*players, max_players=8, max_turns=10, name="Test Room"):
        host, *others = players or ("host",)
        room = await registry.create_room(host, name, max_players=max_players, max_turns=max_turns)
        for user_id in others:
            await registry.join_room(room.id, user_id)
        return room
    return create
