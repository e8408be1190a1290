"""
Pydantic Schemas for API - Request/response models for OpenAPI.

These models define the exact contract between clients and the game server.
All responses carry explicit types for OpenAPI schema generation.

Errors are returned as ErrorResponse with a stable `error_code`
(ROOM_FULL, NOT_YOUR_TURN, MODERATION_REJECTED, ...) and a broad `kind`.
"""

from datetime import datetime
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict, Field

from ..rooms.models import RoomStatus
from ..store.stats import StatField


# =============================================================================
# Shared Models
# =============================================================================

class ParticipantInfo(BaseModel):
    """A member of a room."""
    user_id: str
    turn_order: int
    is_active: bool = True
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TurnInfo(BaseModel):
    """One recorded move."""
    turn_number: int = Field(description="0 is the initial image")
    player_id: str
    prompt: str
    image_url: str = Field(description="Output image reference")
    input_image_url: Optional[str] = None
    processing_ms: int = 0
    created_at: datetime


class UserRoomInfo(BaseModel):
    """A room as listed for one of its members."""
    room_id: str
    code: str
    name: str
    status: RoomStatus
    host_id: str
    is_host: bool
    participant_count: int
    max_players: int
    current_player_id: Optional[str] = None
    created_at: datetime


class GameSummary(BaseModel):
    """A past or running game in a user's history."""
    room_id: str
    code: str
    name: str
    status: RoomStatus
    host_id: str
    is_host: bool
    participant_count: int
    total_turns: int
    final_image: Optional[str] = None
    created_at: datetime
    ended_at: Optional[datetime] = None


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    games_played: int = 0
    games_hosted: int = 0
    total_turns: int = 0


class FlaggedPrompt(BaseModel):
    prompt: str
    reason: Optional[str] = None
    user_id: Optional[str] = None
    room_id: Optional[str] = None
    created_at: datetime


# =============================================================================
# Request Models
# =============================================================================

class CreateRoomRequest(BaseModel):
    """Request to create a new room."""
    name: str = Field(..., description="Room name, 1-100 characters")
    max_players: int = Field(8, description="Maximum active players (2-20)")
    max_turns: int = Field(10, description="Player turns before the game completes (1-50)")


class RoomUpdateRequest(BaseModel):
    """Room settings the host may change before the game starts. Other fields are rejected."""
    name: Optional[str] = None
    max_players: Optional[int] = None
    max_turns: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


class TurnRequest(BaseModel):
    """Request to submit a turn."""
    prompt: Any = Field(..., description="How to change the current image (3-500 characters)")


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: str = Field(..., description="Machine-readable error code")
    kind: str = Field(..., description="Error category")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")
    api_version: str = Field("v1", description="API version")


class RoomResponse(BaseModel):
    """Room details with active participants."""
    id: str
    code: str
    name: str
    status: RoomStatus
    host_id: str
    max_players: int
    max_turns: int
    current_turn: int = 0
    current_player_id: Optional[str] = None
    current_image: Optional[str] = None
    participants: list[ParticipantInfo] = Field(default_factory=list)
    participant_count: int = 0
    created_at: datetime
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    api_version: str = "v1"


class GameStateResponse(BaseModel):
    """Current game state for display."""
    room_id: str
    room_code: str
    room_name: str
    status: RoomStatus
    host_id: str
    current_turn: int
    max_turns: int
    max_players: int
    current_player_id: Optional[str] = None
    current_image: Optional[str] = None
    participants: list[ParticipantInfo] = Field(default_factory=list)
    turns: list[TurnInfo] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    api_version: str = "v1"


class GameHistoryResponse(BaseModel):
    """Complete record of a game for replay."""
    room_id: str
    room_code: str
    room_name: str
    status: RoomStatus
    host_id: str
    max_turns: int
    total_turns: int
    participants: list[ParticipantInfo] = Field(default_factory=list)
    turns: list[TurnInfo] = Field(default_factory=list)
    created_at: datetime
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    api_version: str = "v1"


class LeaveRoomResponse(BaseModel):
    success: bool
    room_id: str


class UserRoomsResponse(BaseModel):
    rooms: list[UserRoomInfo]
    count: int


class UserStatsResponse(BaseModel):
    user_id: str
    games_played: int = 0
    games_hosted: int = 0
    total_turns: int = 0


class UserGamesResponse(BaseModel):
    games: list[GameSummary]
    total: int
    limit: int
    offset: int
    has_more: bool


class LeaderboardResponse(BaseModel):
    sort_by: StatField
    entries: list[LeaderboardEntry]


class ModerationStatsResponse(BaseModel):
    total_checks: int
    flagged_count: int
    flag_rate: float = Field(description="Percentage of checks that were flagged")


class FlaggedPromptsResponse(BaseModel):
    entries: list[FlaggedPrompt]
    count: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    image_mode: str = Field(description="live or placeholder")
