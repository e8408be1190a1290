"""
SQLAlchemy persistence for rooms, statistics and the moderation log.

Tables:
    rooms             one row per room, `version` is the optimistic lock
    participants      unique (room_id, user_id)
    turns             unique (room_id, turn_number)
    user_statistics   per-user counters
    moderation_logs   moderation decisions

Rows are mapped to and from the plain dataclasses in rooms.models; nothing
outside this module sees an ORM object. A room write whose version no longer
matches, or a turn number that already exists, raises ConcurrentModification.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from ..errors import ConcurrentModification, RoomNotFound
from ..moderation.audit import AuditLog, ModerationLogEntry, ModerationStats
from ..clock import utcnow
from ..rooms.models import Participant, Room, RoomStatus, Turn
from .base import RoomSnapshot, RoomStore, RoomTransaction
from .stats import StatField, StatsRecorder, UserStatistics


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    pass


class RoomRow(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(6), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    host_id: Mapped[str] = mapped_column(String(128), index=True)
    max_players: Mapped[int] = mapped_column(Integer, default=8)
    max_turns: Mapped[int] = mapped_column(Integer, default=10)
    status: Mapped[str] = mapped_column(String(16), default=RoomStatus.WAITING.value)
    current_turn: Mapped[int] = mapped_column(Integer, default=0)
    current_player_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    current_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    def to_room(self) -> Room:
        return Room(
            id=self.id,
            code=self.code,
            name=self.name,
            host_id=self.host_id,
            max_players=self.max_players,
            max_turns=self.max_turns,
            status=RoomStatus(self.status),
            current_turn=self.current_turn,
            current_player_id=self.current_player_id,
            current_image=self.current_image,
            created_at=_aware(self.created_at),
            started_at=_aware(self.started_at),
            ended_at=_aware(self.ended_at),
            version=self.version,
        )

    def apply(self, room: Room):
        """Copy the mutable room fields onto this row."""
        self.name = room.name
        self.max_players = room.max_players
        self.max_turns = room.max_turns
        self.status = room.status.value
        self.current_turn = room.current_turn
        self.current_player_id = room.current_player_id
        self.current_image = room.current_image
        self.started_at = room.started_at
        self.ended_at = room.ended_at


class ParticipantRow(Base):
    __tablename__ = "participants"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_participants_room_user"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    room_id: Mapped[str] = mapped_column(String(36), ForeignKey("rooms.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    turn_order: Mapped[int] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def from_participant(cls, p: Participant) -> ParticipantRow:
        return cls(
            id=p.id,
            room_id=p.room_id,
            user_id=p.user_id,
            turn_order=p.turn_order,
            is_active=p.is_active,
            joined_at=p.joined_at,
            left_at=p.left_at,
        )

    def to_participant(self) -> Participant:
        return Participant(
            id=self.id,
            room_id=self.room_id,
            user_id=self.user_id,
            turn_order=self.turn_order,
            is_active=self.is_active,
            joined_at=_aware(self.joined_at),
            left_at=_aware(self.left_at),
        )


class TurnRow(Base):
    __tablename__ = "turns"
    __table_args__ = (UniqueConstraint("room_id", "turn_number", name="uq_turns_room_number"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    room_id: Mapped[str] = mapped_column(String(36), ForeignKey("rooms.id"), index=True)
    player_id: Mapped[str] = mapped_column(String(128), index=True)
    turn_number: Mapped[int] = mapped_column(Integer)
    prompt: Mapped[str] = mapped_column(Text)
    input_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_image: Mapped[str] = mapped_column(Text)
    processing_ms: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @classmethod
    def from_turn(cls, t: Turn) -> TurnRow:
        return cls(
            id=t.id,
            room_id=t.room_id,
            player_id=t.player_id,
            turn_number=t.turn_number,
            prompt=t.prompt,
            input_image=t.input_image,
            output_image=t.output_image,
            processing_ms=t.processing_ms,
            created_at=t.created_at,
        )

    def to_turn(self) -> Turn:
        return Turn(
            id=self.id,
            room_id=self.room_id,
            player_id=self.player_id,
            turn_number=self.turn_number,
            prompt=self.prompt,
            input_image=self.input_image,
            output_image=self.output_image,
            processing_ms=self.processing_ms,
            created_at=_aware(self.created_at),
        )


class UserStatisticsRow(Base):
    __tablename__ = "user_statistics"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    games_played: Mapped[int] = mapped_column(Integer, default=0)
    games_hosted: Mapped[int] = mapped_column(Integer, default=0)
    total_turns: Mapped[int] = mapped_column(Integer, default=0)

    def to_stats(self) -> UserStatistics:
        return UserStatistics(
            user_id=self.user_id,
            games_played=self.games_played,
            games_hosted=self.games_hosted,
            total_turns=self.total_turns,
        )


class ModerationLogRow(Base):
    __tablename__ = "moderation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    prompt: Mapped[str] = mapped_column(Text)
    flagged: Mapped[bool] = mapped_column(Boolean, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    def to_entry(self) -> ModerationLogEntry:
        return ModerationLogEntry(
            prompt=self.prompt,
            flagged=self.flagged,
            reason=self.reason,
            user_id=self.user_id,
            room_id=self.room_id,
            created_at=_aware(self.created_at),
        )


# =============================================================================
# Engine
# =============================================================================

def make_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine. In-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url:
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


def init_db(engine: Engine):
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False)


# =============================================================================
# Stores
# =============================================================================

class SqlRoomStore(RoomStore):
    """Room store backed by any SQLAlchemy database."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def insert_room(self, room: Room, host: Participant):
        with self.session_factory() as session:
            row = RoomRow(
                id=room.id,
                code=room.code,
                host_id=room.host_id,
                created_at=room.created_at,
                version=room.version,
            )
            row.apply(room)
            session.add(row)
            session.flush()
            session.add(ParticipantRow.from_participant(host))
            session.commit()

    def code_exists(self, code: str) -> bool:
        with self.session_factory() as session:
            return session.scalar(select(RoomRow.id).where(RoomRow.code == code)) is not None

    def get_room(self, room_id: str) -> Room | None:
        with self.session_factory() as session:
            row = session.get(RoomRow, room_id)
            return row.to_room() if row else None

    def find_room_by_code(self, code: str) -> Room | None:
        with self.session_factory() as session:
            row = session.scalar(select(RoomRow).where(RoomRow.code == code))
            return row.to_room() if row else None

    def load(self, room_id: str) -> RoomSnapshot | None:
        with self.session_factory() as session:
            return self._snapshot(session, room_id)

    @contextmanager
    def transaction(
        self,
        room_id: str,
        expected_version: int | None = None,
    ) -> Iterator[RoomTransaction]:
        with self.session_factory() as session:
            room_row = session.get(RoomRow, room_id)
            if room_row is None:
                raise RoomNotFound()
            if expected_version is not None and room_row.version != expected_version:
                raise ConcurrentModification()

            participant_rows = {
                r.id: r for r in session.scalars(
                    select(ParticipantRow).where(ParticipantRow.room_id == room_id)
                )
            }
            snapshot = RoomSnapshot(
                room=room_row.to_room(),
                participants=[r.to_participant() for r in participant_rows.values()],
                turns=self._turns(session, room_id),
            )
            tx = RoomTransaction(snapshot)

            yield tx

            base_version = room_row.version
            room_row.apply(tx.room)
            room_row.version = base_version + 1

            for p in tx.participants:
                row = participant_rows.get(p.id)
                if row is None:
                    session.add(ParticipantRow.from_participant(p))
                else:
                    row.is_active = p.is_active
                    row.left_at = p.left_at
            for t in tx.new_turns:
                session.add(TurnRow.from_turn(t))

            try:
                session.commit()
            except (StaleDataError, IntegrityError) as e:
                session.rollback()
                raise ConcurrentModification() from e

            tx.room.version = base_version + 1

    def rooms_for_user(self, user_id: str) -> list[RoomSnapshot]:
        with self.session_factory() as session:
            room_ids = session.scalars(
                select(ParticipantRow.room_id)
                .where(ParticipantRow.user_id == user_id, ParticipantRow.is_active.is_(True))
                .order_by(ParticipantRow.joined_at.desc())
            ).all()
            return [self._snapshot(session, room_id) for room_id in room_ids]

    def games_for_user(
        self,
        user_id: str,
        status: RoomStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[RoomSnapshot], int]:
        with self.session_factory() as session:
            query = (
                select(RoomRow.id)
                .join(ParticipantRow, ParticipantRow.room_id == RoomRow.id)
                .where(ParticipantRow.user_id == user_id)
            )
            if status is not None:
                query = query.where(RoomRow.status == status.value)

            total = session.scalar(select(func.count()).select_from(query.subquery()))
            room_ids = session.scalars(
                query.order_by(RoomRow.created_at.desc()).offset(offset).limit(limit)
            ).all()
            return [self._snapshot(session, room_id) for room_id in room_ids], total or 0

    def _snapshot(self, session: Session, room_id: str) -> RoomSnapshot | None:
        row = session.get(RoomRow, room_id)
        if row is None:
            return None
        participants = session.scalars(
            select(ParticipantRow)
            .where(ParticipantRow.room_id == room_id)
            .order_by(ParticipantRow.turn_order)
        )
        return RoomSnapshot(
            room=row.to_room(),
            participants=[p.to_participant() for p in participants],
            turns=self._turns(session, room_id),
        )

    def _turns(self, session: Session, room_id: str) -> list[Turn]:
        rows = session.scalars(
            select(TurnRow).where(TurnRow.room_id == room_id).order_by(TurnRow.turn_number)
        )
        return [r.to_turn() for r in rows]


class SqlStatsRecorder(StatsRecorder):

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def increment(self, user_id: str, stat: StatField, amount: int = 1):
        with self.session_factory() as session:
            row = session.get(UserStatisticsRow, user_id)
            if row is None:
                row = UserStatisticsRow(user_id=user_id, games_played=0, games_hosted=0, total_turns=0)
                session.add(row)
            setattr(row, stat.value, getattr(row, stat.value) + amount)
            session.commit()

    def get(self, user_id: str) -> UserStatistics:
        with self.session_factory() as session:
            row = session.get(UserStatisticsRow, user_id)
            return row.to_stats() if row else UserStatistics(user_id=user_id)

    def leaderboard(self, sort_by: StatField, limit: int = 10) -> list[UserStatistics]:
        column = getattr(UserStatisticsRow, sort_by.value)
        with self.session_factory() as session:
            rows = session.scalars(
                select(UserStatisticsRow)
                .order_by(column.desc(), UserStatisticsRow.user_id)
                .limit(limit)
            )
            return [r.to_stats() for r in rows]


class SqlAuditLog(AuditLog):

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def record(self, entry: ModerationLogEntry):
        with self.session_factory() as session:
            session.add(ModerationLogRow(
                room_id=entry.room_id,
                user_id=entry.user_id,
                prompt=entry.prompt,
                flagged=entry.flagged,
                reason=entry.reason,
                created_at=entry.created_at,
            ))
            session.commit()

    def stats(self) -> ModerationStats:
        with self.session_factory() as session:
            total = session.scalar(select(func.count(ModerationLogRow.id))) or 0
            flagged = session.scalar(
                select(func.count(ModerationLogRow.id)).where(ModerationLogRow.flagged.is_(True))
            ) or 0
            return ModerationStats(total_checks=total, flagged_count=flagged)

    def recent_flagged(self, limit: int = 50) -> list[ModerationLogEntry]:
        with self.session_factory() as session:
            rows = session.scalars(
                select(ModerationLogRow)
                .where(ModerationLogRow.flagged.is_(True))
                .order_by(ModerationLogRow.created_at.desc(), ModerationLogRow.id.desc())
                .limit(limit)
            )
            return [r.to_entry() for r in rows]
