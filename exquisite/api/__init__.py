"""
API Module - Client interface.

Exposes the game over a REST API plus a per-room WebSocket.
Clients:
1. Create or join a room by code
2. Start the game and submit turns
3. Receive state changes over the WebSocket
4. Re-fetch authoritative state whenever an event arrives
"""

from .schemas import (
    # Requests
    CreateRoomRequest,
    RoomUpdateRequest,
    TurnRequest,
    # Responses
    ErrorResponse,
    RoomResponse,
    GameStateResponse,
    GameHistoryResponse,
    UserStatsResponse,
    LeaderboardResponse,
    HealthResponse,
)
from .auth import IdentityProvider, HeaderIdentityProvider, TokenIdentityProvider
from .service import APIService, build_service
from .app import create_app

__all__ = [
    # Requests
    "CreateRoomRequest",
    "RoomUpdateRequest",
    "TurnRequest",
    # Responses
    "ErrorResponse",
    "RoomResponse",
    "GameStateResponse",
    "GameHistoryResponse",
    "UserStatsResponse",
    "LeaderboardResponse",
    "HealthResponse",
    # Identity
    "IdentityProvider",
    "HeaderIdentityProvider",
    "TokenIdentityProvider",
    # Service
    "APIService",
    "build_service",
    "create_app",
]
