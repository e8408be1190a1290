"""
FastAPI Application - REST and WebSocket API for game clients.

Endpoints:
    POST   /api/v1/rooms                      Create room
    GET    /api/v1/rooms/code/{code}          Look up room by join code
    GET    /api/v1/rooms/{id}                 Room details
    PATCH  /api/v1/rooms/{id}                 Update room settings (host, WAITING)
    POST   /api/v1/rooms/{id}/join            Join room
    POST   /api/v1/rooms/{id}/leave           Leave room
    POST   /api/v1/rooms/{id}/start           Start game (prompt or initial_image)
    POST   /api/v1/rooms/{id}/turn            Submit a turn
    POST   /api/v1/rooms/{id}/end             End game (host)
    POST   /api/v1/rooms/{id}/cancel          Cancel game (host)
    POST   /api/v1/rooms/{id}/skip            Skip current player (host)
    GET    /api/v1/rooms/{id}/state           Game state
    GET    /api/v1/rooms/{id}/history         Game history
    GET    /api/v1/users/me/rooms             My rooms
    GET    /api/v1/users/me/stats             My statistics
    GET    /api/v1/users/me/games             My games (paginated)
    GET    /api/v1/leaderboard                Leaderboard
    GET    /api/v1/moderation/stats           Moderation statistics
    GET    /api/v1/moderation/flagged         Recently flagged prompts
    WS     /api/v1/rooms/{id}/ws              Real-time room events

Every request except health, root and leaderboard must identify the caller
(see api.auth). All errors are JSON ErrorResponse bodies.
"""

from contextlib import asynccontextmanager
from typing import Annotated, Optional
import json
import logging

from ..clock import utcnow
from ..config import AppConfig, configure_logging
from ..errors import ExquisiteError, ErrorKind, UnauthorizedError
from ..events import EventType
from ..rooms.models import RoomStatus
from ..store.stats import StatField

logger = logging.getLogger(__name__)

MAX_CHAT_LENGTH = 500
POLICY_VIOLATION = 4403


def create_app(service=None, config: AppConfig | None = None, identity=None):
    """
    Create the FastAPI application.

    Args:
        service: Optional APIService instance (built from config if not provided)
        config: Optional AppConfig (read from the environment if not provided)
        identity: Optional IdentityProvider (built from config if not provided)

    Returns:
        FastAPI application instance
    """
    try:
        from fastapi import (
            Depends, FastAPI, File, Form, Query, Request, UploadFile, WebSocket, WebSocketDisconnect,
        )
        from fastapi.middleware.cors import CORSMiddleware
        from fastapi.responses import JSONResponse
    except ImportError:
        raise ImportError(
            "FastAPI not installed. Install with: pip install fastapi uvicorn python-multipart"
        )

    from .auth import build_identity_provider
    from .service import build_service, validate_upload
    from .schemas import (
        # Request models
        CreateRoomRequest,
        RoomUpdateRequest,
        TurnRequest,
        # Response models
        ErrorResponse,
        RoomResponse,
        GameStateResponse,
        GameHistoryResponse,
        LeaveRoomResponse,
        UserRoomsResponse,
        UserStatsResponse,
        UserGamesResponse,
        LeaderboardResponse,
        ModerationStatsResponse,
        FlaggedPromptsResponse,
        HealthResponse,
    )

    config = config or AppConfig.from_env()
    configure_logging(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.service.aclose()

    app = FastAPI(
        title="Exquisite Corpse API",
        description="""
Collaborative image editing game: players take turns describing how to change
a shared image.

## Game Flow

1. Host creates a room and shares the join code
2. Players join while the room is `WAITING`
3. Host starts the game with a prompt or an uploaded image
4. The current player submits a prompt; the image is edited and play passes on
5. After `max_turns` player turns the game is `COMPLETED`

## Error Codes

| Code | Description |
|------|-------------|
| `ROOM_NOT_FOUND` | Room does not exist |
| `ROOM_FULL` | Room has reached max players |
| `NOT_YOUR_TURN` | Another player holds the turn |
| `MODERATION_REJECTED` | Prompt was flagged |
| `IMAGE_SERVICE_TIMEOUT` | Image generation timed out; the turn was not consumed |
| `CONCURRENT_MODIFICATION` | The room changed during the request; retry |
        """,
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    api_service = service or build_service(config)
    identity = identity or build_identity_provider(config)
    app.state.service = api_service

    # =========================================================================
    # Error helpers
    # =========================================================================

    def make_error_response(error: ExquisiteError) -> JSONResponse:
        """Create a standardized error response."""
        message = error.message
        if config.is_production and error.kind == ErrorKind.INTERNAL_ERROR:
            message = "Internal server error"
        return JSONResponse(
            status_code=error.status_code,
            content=ErrorResponse(
                error=message,
                error_code=error.code,
                kind=error.kind.value,
                details=error.details,
            ).model_dump(),
        )

    @app.exception_handler(ExquisiteError)
    async def handle_game_error(request: Request, exc: ExquisiteError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return make_error_response(exc)

    def current_user(request: Request) -> str:
        return identity.resolve_caller(request.headers)

    CurrentUser = Annotated[str, Depends(current_user)]

    error_responses = {
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    }

    # =========================================================================
    # Room Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/rooms",
        response_model=RoomResponse,
        status_code=201,
        responses=error_responses,
        tags=["Rooms"],
        summary="Create a new room",
    )
    async def create_room(request: CreateRoomRequest, user_id: CurrentUser) -> RoomResponse:
        """Create a room. The caller becomes the host and first player."""
        return await api_service.create_room(user_id, request)

    @app.get(
        "/api/v1/rooms/code/{code}",
        response_model=RoomResponse,
        responses=error_responses,
        tags=["Rooms"],
        summary="Find a room by join code",
    )
    async def get_room_by_code(code: str, user_id: CurrentUser) -> RoomResponse:
        return api_service.get_room_by_code(code)

    @app.get(
        "/api/v1/rooms/{room_id}",
        response_model=RoomResponse,
        responses=error_responses,
        tags=["Rooms"],
        summary="Get room details",
    )
    async def get_room(room_id: str, user_id: CurrentUser) -> RoomResponse:
        return api_service.get_room(room_id)

    @app.patch(
        "/api/v1/rooms/{room_id}",
        response_model=RoomResponse,
        responses=error_responses,
        tags=["Rooms"],
        summary="Update room settings",
    )
    async def update_room(
        room_id: str,
        request: RoomUpdateRequest,
        user_id: CurrentUser,
    ) -> RoomResponse:
        """Change name, max_players or max_turns. Host only, before the game starts."""
        return await api_service.update_room(room_id, user_id, request)

    @app.post(
        "/api/v1/rooms/{room_id}/join",
        response_model=RoomResponse,
        responses=error_responses,
        tags=["Rooms"],
        summary="Join a room",
    )
    async def join_room(room_id: str, user_id: CurrentUser) -> RoomResponse:
        return await api_service.join_room(room_id, user_id)

    @app.post(
        "/api/v1/rooms/{room_id}/leave",
        response_model=LeaveRoomResponse,
        responses=error_responses,
        tags=["Rooms"],
        summary="Leave a room",
    )
    async def leave_room(room_id: str, user_id: CurrentUser) -> LeaveRoomResponse:
        return await api_service.leave_room(room_id, user_id)

    # =========================================================================
    # Game Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/rooms/{room_id}/start",
        response_model=GameStateResponse,
        responses=error_responses,
        tags=["Game"],
        summary="Start the game",
    )
    async def start_game(
        room_id: str,
        user_id: CurrentUser,
        prompt: Annotated[Optional[str], Form(description="Prompt for the first image")] = None,
        initial_image: Annotated[
            Optional[UploadFile], File(description="Initial image instead of a prompt")
        ] = None,
    ) -> GameStateResponse:
        """
        Start the game with either a text prompt or an uploaded image.

        Uploads must be images of at most 10 MB.
        """
        image_bytes = None
        if initial_image is not None:
            image_bytes = validate_upload(await initial_image.read(), initial_image.content_type)
        return await api_service.start_game(
            room_id, user_id, prompt=prompt or None, initial_image=image_bytes,
        )

    @app.post(
        "/api/v1/rooms/{room_id}/turn",
        response_model=GameStateResponse,
        responses={**error_responses, 429: {"model": ErrorResponse}, 503: {"model": ErrorResponse},
                   504: {"model": ErrorResponse}},
        tags=["Game"],
        summary="Submit a turn",
    )
    async def submit_turn(room_id: str, request: TurnRequest, user_id: CurrentUser) -> GameStateResponse:
        """
        Apply a prompt to the current image.

        Only the current player may submit. If image generation fails the
        turn is not consumed and the same player may retry.
        """
        return await api_service.submit_turn(room_id, user_id, request.prompt)

    @app.post(
        "/api/v1/rooms/{room_id}/end",
        response_model=GameStateResponse,
        responses=error_responses,
        tags=["Game"],
        summary="End the game",
    )
    async def end_game(room_id: str, user_id: CurrentUser) -> GameStateResponse:
        return await api_service.end_game(room_id, user_id)

    @app.post(
        "/api/v1/rooms/{room_id}/cancel",
        response_model=GameStateResponse,
        responses=error_responses,
        tags=["Game"],
        summary="Cancel the game",
    )
    async def cancel_game(room_id: str, user_id: CurrentUser) -> GameStateResponse:
        return await api_service.cancel_game(room_id, user_id)

    @app.post(
        "/api/v1/rooms/{room_id}/skip",
        response_model=GameStateResponse,
        responses=error_responses,
        tags=["Game"],
        summary="Skip the current player",
    )
    async def skip_turn(room_id: str, user_id: CurrentUser) -> GameStateResponse:
        return await api_service.skip_turn(room_id, user_id)

    @app.get(
        "/api/v1/rooms/{room_id}/state",
        response_model=GameStateResponse,
        responses=error_responses,
        tags=["Game"],
        summary="Get game state",
    )
    async def get_game_state(room_id: str, user_id: CurrentUser) -> GameStateResponse:
        return api_service.get_game_state(room_id)

    @app.get(
        "/api/v1/rooms/{room_id}/history",
        response_model=GameHistoryResponse,
        responses=error_responses,
        tags=["Game"],
        summary="Get game history",
    )
    async def get_game_history(room_id: str, user_id: CurrentUser) -> GameHistoryResponse:
        return api_service.get_game_history(room_id)

    # =========================================================================
    # User Endpoints
    # =========================================================================

    @app.get(
        "/api/v1/users/me/rooms",
        response_model=UserRoomsResponse,
        tags=["Users"],
        summary="Rooms I am in",
    )
    async def my_rooms(user_id: CurrentUser) -> UserRoomsResponse:
        return api_service.list_user_rooms(user_id)

    @app.get(
        "/api/v1/users/me/stats",
        response_model=UserStatsResponse,
        tags=["Users"],
        summary="My statistics",
    )
    async def my_stats(user_id: CurrentUser) -> UserStatsResponse:
        return api_service.user_stats(user_id)

    @app.get(
        "/api/v1/users/me/games",
        response_model=UserGamesResponse,
        tags=["Users"],
        summary="My games",
    )
    async def my_games(
        user_id: CurrentUser,
        status: Annotated[Optional[RoomStatus], Query(description="Filter by status")] = None,
        limit: Annotated[int, Query(ge=1, le=100)] = 20,
        offset: Annotated[int, Query(ge=0)] = 0,
    ) -> UserGamesResponse:
        return api_service.user_games(user_id, status=status, limit=limit, offset=offset)

    @app.get(
        "/api/v1/leaderboard",
        response_model=LeaderboardResponse,
        tags=["Users"],
        summary="Leaderboard",
    )
    async def leaderboard(
        sort_by: Annotated[StatField, Query(description="Counter to rank by")] = StatField.GAMES_PLAYED,
        limit: Annotated[int, Query(ge=1, le=100)] = 10,
    ) -> LeaderboardResponse:
        return api_service.leaderboard(sort_by, limit)

    # =========================================================================
    # Moderation Endpoints
    # =========================================================================

    @app.get(
        "/api/v1/moderation/stats",
        response_model=ModerationStatsResponse,
        tags=["Moderation"],
        summary="Moderation statistics",
    )
    async def moderation_stats(user_id: CurrentUser) -> ModerationStatsResponse:
        return api_service.moderation_stats()

    @app.get(
        "/api/v1/moderation/flagged",
        response_model=FlaggedPromptsResponse,
        tags=["Moderation"],
        summary="Recently flagged prompts",
    )
    async def flagged_prompts(
        user_id: CurrentUser,
        limit: Annotated[int, Query(ge=1, le=200)] = 50,
    ) -> FlaggedPromptsResponse:
        return api_service.flagged_prompts(limit)

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    @app.websocket("/api/v1/rooms/{room_id}/ws")
    async def websocket_endpoint(websocket: WebSocket, room_id: str):
        """
        WebSocket for real-time room events.

        Messages from server:
        - room:joined: Sent once on connect with the game state and online users
        - game:started, turn:processing, game:turnCompleted, game:completed,
          turn:error, game:turnSkipped, game:cancelled: Game events
        - room:playerJoined, room:playerLeft, room:updated: Membership events
        - room:userConnected, room:userDisconnected: Presence
        - room:chatMessage, room:userTyping: Chat
        - game:state: Reply to game:getState
        - error: Bad message

        Messages from client:
        - ping: Keep-alive
        - game:getState: Request the current game state
        - room:chat: {"message": "..."}
        - room:typing: {"isTyping": true}
        """
        try:
            user_id = identity.resolve_caller(websocket.headers, websocket.query_params)
        except UnauthorizedError:
            await websocket.close(code=POLICY_VIOLATION)
            return
        if not api_service.is_active_participant(room_id, user_id):
            await websocket.close(code=POLICY_VIOLATION)
            return

        await websocket.accept()
        api_service.hub.register(room_id, websocket)
        came_online = api_service.presence.connect(room_id, user_id)

        try:
            await websocket.send_json({
                "type": "room:joined",
                "payload": {
                    "roomId": room_id,
                    "gameState": api_service.game_state_payload(room_id),
                    "onlineUsers": api_service.presence.online_users(room_id),
                },
            })
            if came_online:
                await api_service.hub.publish(room_id, EventType.USER_CONNECTED, {
                    "userId": user_id,
                    "onlineUsers": api_service.presence.online_users(room_id),
                })

            while True:
                data = await websocket.receive_text()
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    await send_error(websocket, "Invalid JSON")
                    continue
                if not isinstance(message, dict):
                    await send_error(websocket, "Invalid message")
                    continue
                await handle_client_message(websocket, room_id, user_id, message)

        except WebSocketDisconnect:
            pass
        finally:
            api_service.hub.unregister(room_id, websocket)
            if api_service.presence.disconnect(room_id, user_id):
                await api_service.hub.publish(room_id, EventType.USER_DISCONNECTED, {
                    "userId": user_id,
                    "onlineUsers": api_service.presence.online_users(room_id),
                })

    async def send_error(websocket: WebSocket, message: str):
        await websocket.send_json({"type": "error", "payload": {"message": message}})

    async def handle_client_message(websocket: WebSocket, room_id: str, user_id: str, message: dict):
        msg_type = message.get("type")
        payload = message.get("payload") or {}
        if not isinstance(payload, dict):
            payload = {}

        if msg_type == "ping":
            await websocket.send_json({"type": "pong"})

        elif msg_type == "game:getState":
            try:
                state = api_service.game_state_payload(room_id)
            except ExquisiteError as e:
                await send_error(websocket, e.message)
                return
            await websocket.send_json({"type": "game:state", "payload": {"gameState": state}})

        elif msg_type == "room:chat":
            text = payload.get("message", message.get("message"))
            if not isinstance(text, str) or not text.strip():
                await send_error(websocket, "Message is required")
                return
            text = text.strip()
            if len(text) > MAX_CHAT_LENGTH:
                await send_error(websocket, f"Message must not exceed {MAX_CHAT_LENGTH} characters")
                return
            await api_service.hub.publish(room_id, EventType.CHAT_MESSAGE, {
                "userId": user_id,
                "message": text,
                "timestamp": utcnow().isoformat(),
            })

        elif msg_type == "room:typing":
            await api_service.hub.publish(room_id, EventType.USER_TYPING, {
                "userId": user_id,
                "isTyping": bool(payload.get("isTyping", True)),
            })

        else:
            await send_error(websocket, f"Unknown message type: {msg_type}")

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint for load balancers."""
        return HealthResponse(
            status="healthy",
            service="exquisite-engine",
            version="1.0.0",
            image_mode="placeholder" if api_service.placeholder_mode else "live",
        )

    @app.get("/", tags=["System"])
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Exquisite Corpse API",
            "version": "1.0.0",
            "docs": "/api/docs",
            "health": "/health",
        }

    return app
