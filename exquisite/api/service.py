"""
API Service - Business logic layer between the API and the game core.

The service:
1. Translates API requests to registry and session calls
2. Validates uploads
3. Shields long-running game actions from client disconnects
4. Formats responses

This layer is framework-agnostic (can be used with FastAPI, Flask, etc.)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
import asyncio
import logging

from ..config import AppConfig
from ..errors import InvalidUpload
from ..events import PresenceTracker, WebSocketHub
from ..imaging import DataUrlImageStore, ImageService, ImageServiceAdapter
from ..moderation import AuditLog, InMemoryAuditLog, ModerationGate
from ..rooms import RoomRegistry, RoomUpdate
from ..rooms.models import GameHistory, GameState, Participant, Room, RoomStatus, Turn
from ..session import GameSession, RoomLocks
from ..store import (
    InMemoryRoomStore,
    InMemoryStatsRecorder,
    RoomStore,
    SqlAuditLog,
    SqlRoomStore,
    SqlStatsRecorder,
    StatField,
    StatsRecorder,
    init_db,
    make_engine,
    make_session_factory,
)
from .schemas import (
    CreateRoomRequest,
    FlaggedPrompt,
    FlaggedPromptsResponse,
    GameHistoryResponse,
    GameStateResponse,
    GameSummary,
    LeaderboardEntry,
    LeaderboardResponse,
    LeaveRoomResponse,
    ModerationStatsResponse,
    ParticipantInfo,
    RoomResponse,
    RoomUpdateRequest,
    TurnInfo,
    UserGamesResponse,
    UserRoomInfo,
    UserRoomsResponse,
    UserStatsResponse,
)

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


async def _run_detached(coro):
    """
    Await a game action that must finish even if the caller is cancelled.

    A cancelled caller leaves the action running; its outcome is logged
    since nobody is left to receive it.
    """
    task = asyncio.ensure_future(coro)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        task.add_done_callback(_log_detached_result)
        raise


def _log_detached_result(task: asyncio.Future):
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Game action failed after its client went away: %s", exc)


def validate_upload(data: bytes, content_type: str | None) -> bytes:
    """Accept non-empty image uploads up to 10 MB."""
    if not content_type or not content_type.startswith("image/"):
        raise InvalidUpload()
    if not data:
        raise InvalidUpload("Uploaded image is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise InvalidUpload("Image must be at most 10 MB")
    return data


@dataclass
class APIService:
    """
    Main API service.

    Usage:
        service = build_service(AppConfig.from_env())

        room = await service.create_room("host-1", CreateRoomRequest(name="Doodles"))
        await service.join_room(room.id, "user-2")
        state = await service.start_game(room.id, "host-1", prompt="a red balloon")
        state = await service.submit_turn(room.id, "host-1", "add a cat")
    """
    store: RoomStore
    registry: RoomRegistry
    session: GameSession
    gate: ModerationGate
    stats: StatsRecorder
    hub: WebSocketHub = field(default_factory=WebSocketHub)
    presence: PresenceTracker = field(default_factory=PresenceTracker)
    placeholder_mode: bool = True
    images: ImageService | None = None

    async def aclose(self):
        """Release outbound connections. Called on application shutdown."""
        if self.images is not None:
            await self.images.aclose()

    # =========================================================================
    # Rooms
    # =========================================================================

    async def create_room(self, user_id: str, request: CreateRoomRequest) -> RoomResponse:
        room = await self.registry.create_room(
            host_id=user_id,
            name=request.name,
            max_players=request.max_players,
            max_turns=request.max_turns,
        )
        return self.get_room(room.id)

    def get_room(self, room_id: str) -> RoomResponse:
        self.registry.get_room(room_id)
        return self._room_response(self.store.load(room_id))

    def get_room_by_code(self, code: str) -> RoomResponse:
        room = self.registry.get_room_by_code(code)
        return self._room_response(self.store.load(room.id))

    async def update_room(
        self,
        room_id: str,
        user_id: str,
        request: RoomUpdateRequest,
    ) -> RoomResponse:
        update = RoomUpdate.from_dict(request.model_dump(exclude_none=True))
        await self.registry.update_room(room_id, user_id, update)
        return self.get_room(room_id)

    async def join_room(self, room_id: str, user_id: str) -> RoomResponse:
        await self.registry.join_room(room_id, user_id)
        return self.get_room(room_id)

    async def leave_room(self, room_id: str, user_id: str) -> LeaveRoomResponse:
        await self.registry.leave_room(room_id, user_id)
        return LeaveRoomResponse(success=True, room_id=room_id)

    def is_active_participant(self, room_id: str, user_id: str) -> bool:
        snapshot = self.store.load(room_id)
        if snapshot is None:
            return False
        participant = snapshot.participant(user_id)
        return participant is not None and participant.is_active

    # =========================================================================
    # Game
    # =========================================================================

    async def start_game(
        self,
        room_id: str,
        user_id: str,
        prompt: str | None = None,
        initial_image: bytes | None = None,
    ) -> GameStateResponse:
        state = await _run_detached(
            self.session.start_game(room_id, user_id, prompt=prompt, initial_image=initial_image)
        )
        return self._state_response(state)

    async def submit_turn(self, room_id: str, user_id: str, prompt: Any) -> GameStateResponse:
        # The turn completes even if the requesting client goes away.
        state = await _run_detached(self.session.process_turn(room_id, user_id, prompt))
        return self._state_response(state)

    async def end_game(self, room_id: str, user_id: str) -> GameStateResponse:
        return self._state_response(await self.session.end_game(room_id, user_id))

    async def cancel_game(self, room_id: str, user_id: str) -> GameStateResponse:
        return self._state_response(await self.session.cancel_game(room_id, user_id))

    async def skip_turn(self, room_id: str, user_id: str) -> GameStateResponse:
        return self._state_response(await self.session.skip_turn(room_id, user_id))

    def get_game_state(self, room_id: str) -> GameStateResponse:
        return self._state_response(self.session.get_game_state(room_id))

    def game_state_payload(self, room_id: str) -> dict[str, Any]:
        """Game state in the shape used by broadcast events."""
        return self.session.get_game_state(room_id).to_dict()

    def get_game_history(self, room_id: str) -> GameHistoryResponse:
        return self._history_response(self.session.get_game_history(room_id))

    # =========================================================================
    # Users
    # =========================================================================

    def list_user_rooms(self, user_id: str) -> UserRoomsResponse:
        rooms = [
            UserRoomInfo(
                room_id=entry.room.id,
                code=entry.room.code,
                name=entry.room.name,
                status=entry.room.status,
                host_id=entry.room.host_id,
                is_host=entry.is_host,
                participant_count=entry.participant_count,
                max_players=entry.room.max_players,
                current_player_id=entry.room.current_player_id,
                created_at=entry.room.created_at,
            )
            for entry in self.registry.list_user_rooms(user_id)
        ]
        return UserRoomsResponse(rooms=rooms, count=len(rooms))

    def user_stats(self, user_id: str) -> UserStatsResponse:
        stats = self.stats.get(user_id)
        return UserStatsResponse(
            user_id=stats.user_id,
            games_played=stats.games_played,
            games_hosted=stats.games_hosted,
            total_turns=stats.total_turns,
        )

    def user_games(
        self,
        user_id: str,
        status: RoomStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> UserGamesResponse:
        snapshots, total = self.store.games_for_user(user_id, status=status, limit=limit, offset=offset)
        games = []
        for snapshot in snapshots:
            room = snapshot.room
            games.append(GameSummary(
                room_id=room.id,
                code=room.code,
                name=room.name,
                status=room.status,
                host_id=room.host_id,
                is_host=room.host_id == user_id,
                participant_count=len(snapshot.active_participants),
                total_turns=len(snapshot.turns),
                final_image=room.current_image,
                created_at=room.created_at,
                ended_at=room.ended_at,
            ))
        return UserGamesResponse(
            games=games,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(games) < total,
        )

    def leaderboard(self, sort_by: StatField = StatField.GAMES_PLAYED, limit: int = 10) -> LeaderboardResponse:
        entries = [
            LeaderboardEntry(
                rank=rank,
                user_id=s.user_id,
                games_played=s.games_played,
                games_hosted=s.games_hosted,
                total_turns=s.total_turns,
            )
            for rank, s in enumerate(self.stats.leaderboard(sort_by, limit), start=1)
        ]
        return LeaderboardResponse(sort_by=sort_by, entries=entries)

    # =========================================================================
    # Moderation
    # =========================================================================

    def moderation_stats(self) -> ModerationStatsResponse:
        stats = self.gate.stats()
        return ModerationStatsResponse(
            total_checks=stats.total_checks,
            flagged_count=stats.flagged_count,
            flag_rate=round(stats.flag_rate, 2),
        )

    def flagged_prompts(self, limit: int = 50) -> FlaggedPromptsResponse:
        entries = [
            FlaggedPrompt(
                prompt=e.prompt,
                reason=e.reason,
                user_id=e.user_id,
                room_id=e.room_id,
                created_at=e.created_at,
            )
            for e in self.gate.recent_flagged(limit)
        ]
        return FlaggedPromptsResponse(entries=entries, count=len(entries))

    # =========================================================================
    # Private Helpers
    # =========================================================================

    def _room_response(self, snapshot) -> RoomResponse:
        room: Room = snapshot.room
        active = snapshot.active_participants
        return RoomResponse(
            id=room.id,
            code=room.code,
            name=room.name,
            status=room.status,
            host_id=room.host_id,
            max_players=room.max_players,
            max_turns=room.max_turns,
            current_turn=room.current_turn,
            current_player_id=room.current_player_id,
            current_image=room.current_image,
            participants=[_participant_info(p) for p in active],
            participant_count=len(active),
            created_at=room.created_at,
            started_at=room.started_at,
            ended_at=room.ended_at,
        )

    def _state_response(self, state: GameState) -> GameStateResponse:
        room = state.room
        return GameStateResponse(
            room_id=room.id,
            room_code=room.code,
            room_name=room.name,
            status=room.status,
            host_id=room.host_id,
            current_turn=room.current_turn,
            max_turns=room.max_turns,
            max_players=room.max_players,
            current_player_id=room.current_player_id,
            current_image=room.current_image,
            participants=[_participant_info(p) for p in state.participants],
            turns=[_turn_info(t) for t in state.turns],
            started_at=room.started_at,
            ended_at=room.ended_at,
        )

    def _history_response(self, history: GameHistory) -> GameHistoryResponse:
        room = history.room
        return GameHistoryResponse(
            room_id=room.id,
            room_code=room.code,
            room_name=room.name,
            status=room.status,
            host_id=room.host_id,
            max_turns=room.max_turns,
            total_turns=history.total_turns,
            participants=[_participant_info(p) for p in history.participants],
            turns=[_turn_info(t) for t in history.turns],
            created_at=room.created_at,
            started_at=room.started_at,
            ended_at=room.ended_at,
        )


def _participant_info(p: Participant) -> ParticipantInfo:
    return ParticipantInfo(
        user_id=p.user_id,
        turn_order=p.turn_order,
        is_active=p.is_active,
        joined_at=p.joined_at,
        left_at=p.left_at,
    )


def _turn_info(t: Turn) -> TurnInfo:
    return TurnInfo(
        turn_number=t.turn_number,
        player_id=t.player_id,
        prompt=t.prompt,
        image_url=t.output_image,
        input_image_url=t.input_image,
        processing_ms=t.processing_ms,
        created_at=t.created_at,
    )


def build_service(
    config: AppConfig | None = None,
    images: ImageService | None = None,
) -> APIService:
    """
    Wire every collaborator from configuration.

    With DATABASE_URL set, rooms, statistics and the moderation log live in
    SQL; otherwise everything is in memory.
    """
    config = config or AppConfig.from_env()

    audit_log: AuditLog
    if config.database_url:
        engine = make_engine(config.database_url)
        init_db(engine)
        factory = make_session_factory(engine)
        store: RoomStore = SqlRoomStore(factory)
        stats: StatsRecorder = SqlStatsRecorder(factory)
        audit_log = SqlAuditLog(factory)
        logger.info("Using SQL storage")
    else:
        store = InMemoryRoomStore()
        stats = InMemoryStatsRecorder()
        audit_log = InMemoryAuditLog()
        logger.info("Using in-memory storage")

    images = images or ImageServiceAdapter(config.image)
    gate = ModerationGate(audit_log=audit_log, audit_enabled=config.moderation.audit_enabled)
    hub = WebSocketHub()
    locks = RoomLocks()

    registry = RoomRegistry(store, locks=locks, broadcaster=hub)
    session = GameSession(
        store,
        gate,
        images,
        image_store=DataUrlImageStore(),
        broadcaster=hub,
        stats=stats,
        locks=locks,
    )
    return APIService(
        store=store,
        registry=registry,
        session=session,
        gate=gate,
        stats=stats,
        hub=hub,
        presence=PresenceTracker(),
        placeholder_mode=getattr(images, "placeholder_mode", False),
        images=images,
    )
