"""
Game Session - The turn-based state machine for a room.

States:
    WAITING -> IN_PROGRESS -> COMPLETED
    WAITING / IN_PROGRESS -> CANCELLED

Every mutating operation:
1. Takes the room's lock (held across the image call and the commit)
2. Reads a snapshot and checks role, status and turn ownership
3. Runs the prompt through the moderation gate
4. Calls the image service if pixels are needed
5. Commits Room + Participant + Turn changes in one store transaction,
   guarded by the version read in step 2
6. Publishes the outcome (after the lock is released)

A failed image call leaves the room untouched: no Turn is written and the
same player keeps the turn.
"""

from __future__ import annotations
from typing import Callable, TYPE_CHECKING
from datetime import datetime
import logging
import time

from ..errors import (
    ExquisiteError,
    ConflictingInitialContent,
    GameAlreadyEnded,
    GameAlreadyStarted,
    GameNotInProgress,
    InvalidUpload,
    MissingInitialContent,
    NoActiveParticipants,
    NotHost,
    NotYourTurn,
    RoomNotFound,
)
from ..clock import utcnow
from ..events import Broadcaster, EventType, notify
from ..imaging import DataUrlImageStore, ImageService, ImageStore
from ..moderation import ModerationGate
from ..rooms.models import (
    INITIAL_IMAGE_PROMPT,
    GameHistory,
    GameState,
    RoomStatus,
    Turn,
    first_in_order,
    next_in_order,
)
from ..store.stats import StatField, StatsRecorder
from .locks import RoomLocks

if TYPE_CHECKING:
    from ..store.base import RoomStore, RoomSnapshot

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class GameSession:
    """
    Orchestrates games across all rooms.

    Usage:
        session = GameSession(store, gate, images, broadcaster=hub)
        state = await session.start_game(room_id, host_id, prompt="a red balloon")
        state = await session.process_turn(room_id, state.current_player_id, "add a cat")
    """

    def __init__(
        self,
        store: RoomStore,
        gate: ModerationGate,
        images: ImageService,
        image_store: ImageStore | None = None,
        broadcaster: Broadcaster | None = None,
        stats: StatsRecorder | None = None,
        locks: RoomLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.gate = gate
        self.images = images
        self.image_store = image_store or DataUrlImageStore()
        self.broadcaster = broadcaster
        self.stats = stats
        self.locks = locks or RoomLocks()
        self.clock = clock

    # =========================================================================
    # Reads
    # =========================================================================

    def get_game_state(self, room_id: str) -> GameState:
        """Room with active participants in turn order and all turns."""
        snapshot = self._load(room_id)
        return GameState(
            room=snapshot.room,
            participants=snapshot.active_participants,
            turns=sorted(snapshot.turns, key=lambda t: t.turn_number),
        )

    def get_game_history(self, room_id: str) -> GameHistory:
        """Full record for replay, including participants who left."""
        snapshot = self._load(room_id)
        return GameHistory(
            room=snapshot.room,
            participants=sorted(snapshot.participants, key=lambda p: p.turn_order),
            turns=sorted(snapshot.turns, key=lambda t: t.turn_number),
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    async def start_game(
        self,
        room_id: str,
        host_id: str,
        prompt: str | None = None,
        initial_image: bytes | None = None,
    ) -> GameState:
        """
        Move a WAITING room to IN_PROGRESS with Turn 0.

        Exactly one of prompt or initial_image must be given. A prompt is
        moderated and turned into the first image; an uploaded image is
        used as-is.
        """
        has_prompt = prompt is not None and prompt != ""
        has_image = initial_image is not None

        async with self.locks.for_room(room_id):
            snapshot = self._load(room_id)
            room = snapshot.room

            if room.host_id != host_id:
                raise NotHost("Only the host can start the game")
            if room.status != RoomStatus.WAITING:
                raise GameAlreadyStarted()
            if not snapshot.active_participants:
                raise NoActiveParticipants()
            if not has_prompt and not has_image:
                raise MissingInitialContent()
            if has_prompt and has_image:
                raise ConflictingInitialContent()

            started = time.monotonic()
            if has_prompt:
                cleaned = self.gate.moderate(prompt, user_id=host_id, room_id=room_id)
                image_ref = self.image_store.put(await self.images.generate(cleaned))
                turn_prompt = prompt
            else:
                if not initial_image:
                    raise InvalidUpload("Uploaded image is empty")
                image_ref = self.image_store.put(initial_image)
                turn_prompt = INITIAL_IMAGE_PROMPT

            with self.store.transaction(room_id, expected_version=room.version) as tx:
                first = first_in_order(tx.participants)
                if first is None:
                    raise NoActiveParticipants()

                tx.add_turn(Turn(
                    room_id=room_id,
                    player_id=host_id,
                    turn_number=0,
                    prompt=turn_prompt,
                    input_image=None,
                    output_image=image_ref,
                    processing_ms=_elapsed_ms(started),
                ))
                tx.room.transition(RoomStatus.IN_PROGRESS)
                tx.room.started_at = self.clock()
                tx.room.current_turn = 1
                tx.room.current_player_id = first.user_id
                tx.room.current_image = image_ref
                players = [p.user_id for p in tx.active_participants]

            state = self.get_game_state(room_id)

        logger.info("Game started in room %s with %d players", room_id, len(players))
        self._bump(host_id, StatField.GAMES_HOSTED)
        for user_id in players:
            self._bump(user_id, StatField.GAMES_PLAYED)

        await notify(self.broadcaster, room_id, EventType.GAME_STARTED, {
            "gameState": state.to_dict(),
        })
        return state

    async def process_turn(self, room_id: str, player_id: str, prompt: str) -> GameState:
        """
        Apply the current player's prompt to the current image.

        On success the turn is recorded and play passes to the next active
        participant, or the game completes after max_turns player turns.
        """
        async with self.locks.for_room(room_id):
            snapshot = self._load(room_id)
            room = snapshot.room

            if room.status != RoomStatus.IN_PROGRESS:
                raise GameNotInProgress()
            if room.current_player_id != player_id:
                raise NotYourTurn()

            cleaned = self.gate.moderate(prompt, user_id=player_id, room_id=room_id)

            await notify(self.broadcaster, room_id, EventType.TURN_PROCESSING, {
                "playerId": player_id,
                "prompt": cleaned,
            })

            started = time.monotonic()
            try:
                source = self.image_store.get(room.current_image)
                output = await self.images.edit(source, cleaned)
            except ExquisiteError as e:
                logger.warning("Turn failed in room %s for %s: %s", room_id, player_id, e.message)
                await notify(self.broadcaster, room_id, EventType.TURN_ERROR, {
                    "playerId": player_id,
                    "error": e.message,
                    "code": e.code,
                })
                raise

            image_ref = self.image_store.put(output)

            with self.store.transaction(room_id, expected_version=room.version) as tx:
                current = tx.room
                tx.add_turn(Turn(
                    room_id=room_id,
                    player_id=player_id,
                    turn_number=current.current_turn,
                    prompt=cleaned,
                    input_image=current.current_image,
                    output_image=image_ref,
                    processing_ms=_elapsed_ms(started),
                ))

                new_turn = current.current_turn + 1
                current.current_turn = new_turn
                current.current_image = image_ref
                completed = new_turn > current.max_turns
                if completed:
                    current.transition(RoomStatus.COMPLETED)
                    current.current_player_id = None
                    current.ended_at = self.clock()
                else:
                    following = next_in_order(tx.participants, player_id)
                    current.current_player_id = following.user_id if following else None

            state = self.get_game_state(room_id)

        self._bump(player_id, StatField.TOTAL_TURNS)

        if completed:
            logger.info("Game completed in room %s after %d turns", room_id, len(state.turns) - 1)
            await notify(self.broadcaster, room_id, EventType.GAME_COMPLETED, {
                "gameState": state.to_dict(),
            })
        else:
            logger.info("Turn %d completed in room %s by %s", new_turn - 1, room_id, player_id)
            await notify(self.broadcaster, room_id, EventType.TURN_COMPLETED, {
                "gameState": state.to_dict(),
            })
        return state

    async def end_game(self, room_id: str, host_id: str) -> GameState:
        """Host ends the game early. The room becomes COMPLETED."""
        state = await self._finish(room_id, host_id, RoomStatus.COMPLETED)
        logger.info("Game ended in room %s by host", room_id)
        await notify(self.broadcaster, room_id, EventType.GAME_COMPLETED, {
            "gameState": state.to_dict(),
        })
        return state

    async def cancel_game(self, room_id: str, host_id: str) -> GameState:
        """Host abandons the game. The room becomes CANCELLED."""
        state = await self._finish(room_id, host_id, RoomStatus.CANCELLED)
        logger.info("Game cancelled in room %s by host", room_id)
        await notify(self.broadcaster, room_id, EventType.GAME_CANCELLED, {
            "gameState": state.to_dict(),
        })
        return state

    async def skip_turn(self, room_id: str, host_id: str) -> GameState:
        """Pass the turn to the next active participant without recording a Turn."""
        async with self.locks.for_room(room_id):
            snapshot = self._load(room_id)
            room = snapshot.room

            if room.host_id != host_id:
                raise NotHost("Only the host can skip turns")
            if room.status != RoomStatus.IN_PROGRESS:
                raise GameNotInProgress()

            with self.store.transaction(room_id, expected_version=room.version) as tx:
                skipped = tx.room.current_player_id
                following = next_in_order(tx.participants, skipped)
                tx.room.current_player_id = following.user_id if following else None

            state = self.get_game_state(room_id)

        logger.info("Turn skipped in room %s: %s -> %s", room_id, skipped, state.current_player_id)
        await notify(self.broadcaster, room_id, EventType.TURN_SKIPPED, {
            "skippedPlayerId": skipped,
            "gameState": state.to_dict(),
        })
        return state

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _finish(self, room_id: str, host_id: str, target: RoomStatus) -> GameState:
        async with self.locks.for_room(room_id):
            snapshot = self._load(room_id)
            room = snapshot.room

            if room.host_id != host_id:
                raise NotHost("Only the host can end the game")
            if room.status.is_terminal:
                raise GameAlreadyEnded()

            with self.store.transaction(room_id, expected_version=room.version) as tx:
                tx.room.transition(target)
                tx.room.current_player_id = None
                tx.room.ended_at = self.clock()

            return self.get_game_state(room_id)

    def _load(self, room_id: str) -> RoomSnapshot:
        snapshot = self.store.load(room_id)
        if snapshot is None:
            raise RoomNotFound()
        return snapshot

    def _bump(self, user_id: str, stat: StatField):
        if self.stats is None:
            return
        try:
            self.stats.increment(user_id, stat)
        except Exception:
            logger.warning("Failed to update %s for user %s", stat.value, user_id, exc_info=True)
