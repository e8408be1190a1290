"""
Errors - Stable error taxonomy shared by every layer.

Every rejected action raises a subclass of ExquisiteError. Each error carries:
- kind: one of the broad categories (ErrorKind)
- code: a stable machine-readable string ("ROOM_FULL", "NOT_YOUR_TURN", ...)
- message: human-readable reason shown to the player
- status_code: HTTP status used by the API layer

These are routine, expected conditions. None of them should crash the process.
"""

from __future__ import annotations
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Broad error categories."""
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_STATE = "INVALID_STATE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MODERATION_REJECTED = "MODERATION_REJECTED"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ExquisiteError(Exception):
    """Base class for all game errors."""
    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    default_message: str = "Something went wrong"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


# =============================================================================
# Categories
# =============================================================================

class NotFoundError(ExquisiteError):
    kind = ErrorKind.NOT_FOUND
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class UnauthorizedError(ExquisiteError):
    kind = ErrorKind.UNAUTHORIZED
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Authentication required"


class ForbiddenError(ExquisiteError):
    kind = ErrorKind.FORBIDDEN
    code = "FORBIDDEN"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class InvalidStateError(ExquisiteError):
    kind = ErrorKind.INVALID_STATE
    code = "INVALID_STATE"
    status_code = 409
    default_message = "Action not allowed in the current room state"


class InputValidationError(ExquisiteError):
    kind = ErrorKind.VALIDATION_ERROR
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid input"


class ModerationRejected(ExquisiteError):
    """A prompt was flagged by the moderation gate."""
    kind = ErrorKind.MODERATION_REJECTED
    code = "MODERATION_REJECTED"
    status_code = 400
    default_message = "Inappropriate prompt"

    def __init__(self, reason: str | None = None):
        super().__init__(reason)
        self.reason = self.message


class ExternalServiceError(ExquisiteError):
    kind = ErrorKind.EXTERNAL_SERVICE_ERROR
    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 503
    default_message = "Image generation service unavailable. Please try again later."


class ConcurrentModification(ExquisiteError):
    """The room changed between read and commit."""
    kind = ErrorKind.CONCURRENT_MODIFICATION
    code = "CONCURRENT_MODIFICATION"
    status_code = 409
    default_message = "The room was modified by another action. Please refresh and retry."


# =============================================================================
# Room registry
# =============================================================================

class RoomNotFound(NotFoundError):
    code = "ROOM_NOT_FOUND"
    default_message = "Room not found"


class InvalidRoomCode(InputValidationError):
    code = "INVALID_ROOM_CODE"
    default_message = "Invalid room code format"


class InvalidRoomSettings(InputValidationError):
    code = "INVALID_ROOM_SETTINGS"
    default_message = "Invalid room settings"


class CodeGenerationExhausted(ExquisiteError):
    code = "CODE_GENERATION_EXHAUSTED"
    default_message = "Failed to generate unique room code"


class RoomNotJoinable(InvalidStateError):
    code = "ROOM_NOT_JOINABLE"
    default_message = "Cannot join a game in progress or completed"


class RoomFull(InvalidStateError):
    code = "ROOM_FULL"
    default_message = "Room is full"


class AlreadyJoined(InvalidStateError):
    code = "ALREADY_JOINED"
    default_message = "You are already in this room"


class HostCannotLeave(InvalidStateError):
    code = "HOST_CANNOT_LEAVE"
    default_message = "Host cannot leave. End the game instead."


class NotAParticipant(ForbiddenError):
    code = "NOT_A_PARTICIPANT"
    default_message = "You are not a participant in this room"


class RoomNotEditable(InvalidStateError):
    code = "ROOM_NOT_EDITABLE"
    default_message = "Cannot update room settings after game has started"


# =============================================================================
# Game session
# =============================================================================

class NotHost(ForbiddenError):
    code = "NOT_HOST"
    default_message = "Only the host can perform this action"


class NotYourTurn(ForbiddenError):
    code = "NOT_YOUR_TURN"
    default_message = "It is not your turn"


class GameAlreadyStarted(InvalidStateError):
    code = "GAME_ALREADY_STARTED"
    default_message = "Game has already started or ended"


class GameNotInProgress(InvalidStateError):
    code = "GAME_NOT_IN_PROGRESS"
    default_message = "Game is not in progress"


class GameAlreadyEnded(InvalidStateError):
    code = "ALREADY_ENDED"
    default_message = "Game has already ended"


class NoActiveParticipants(InvalidStateError):
    code = "NO_ACTIVE_PARTICIPANTS"
    default_message = "Need at least 1 participant to start"


class MissingInitialContent(InputValidationError):
    code = "MISSING_INITIAL_CONTENT"
    default_message = "Please provide either an initial image or a text prompt"


class ConflictingInitialContent(InputValidationError):
    code = "CONFLICTING_INITIAL_CONTENT"
    default_message = "Provide either an initial image or a text prompt, not both"


class InvalidUpload(InputValidationError):
    code = "INVALID_UPLOAD"
    default_message = "Only image files are allowed"


class InvalidImageReference(InputValidationError):
    code = "INVALID_IMAGE_REFERENCE"
    default_message = "Unrecognized image reference"


# =============================================================================
# Moderation gate
# =============================================================================

class PromptMissing(InputValidationError):
    code = "PROMPT_MISSING"
    default_message = "Prompt is required"


class PromptTooShort(InputValidationError):
    code = "PROMPT_TOO_SHORT"
    default_message = "Prompt must be at least 3 characters"


class PromptTooLong(InputValidationError):
    code = "PROMPT_TOO_LONG"
    default_message = "Prompt must not exceed 500 characters"


class PromptNoAlphanumeric(InputValidationError):
    code = "PROMPT_NO_ALPHANUMERIC"
    default_message = "Prompt must contain alphanumeric characters"


# =============================================================================
# Image service
# =============================================================================

class ImageServiceAuthError(ExternalServiceError):
    code = "IMAGE_SERVICE_AUTH"
    status_code = 502
    default_message = "Invalid API key. Please check your image service credentials."


class ImageServiceRateLimited(ExternalServiceError):
    code = "IMAGE_SERVICE_RATE_LIMITED"
    status_code = 429
    default_message = "Rate limit exceeded. Please wait before trying again."


class ImageServiceBadRequest(ExternalServiceError):
    code = "IMAGE_SERVICE_BAD_REQUEST"
    status_code = 400
    default_message = "The image service rejected the request"


class ImageServiceTimeout(ExternalServiceError):
    code = "IMAGE_SERVICE_TIMEOUT"
    status_code = 504
    default_message = "Image generation timed out. Please try again."


class ImageServiceUnavailable(ExternalServiceError):
    code = "IMAGE_SERVICE_UNAVAILABLE"
    status_code = 503
