"""
matchday/errors.py
Centralized error handling for the HTTP API

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid input (scores, penalties, too few teams)
- 403: Caller is not allowed (not home participant, not organizer)
- 404: Tournament, match or result does not exist
- 409: Conflict with current state (already submitted, wrong match state)
- 422: Validation error (Pydantic)
- 500: NEVER caused by user input (internal only)
"""

import logging
from typing import Optional, Dict, Any
from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from matchday.services.bracket_service import (
    BracketError, MatchAlreadyDecidedError, TeamNotInMatchError
)
from matchday.services.match_result_service import (
    InvalidMatchStateError, InvalidScoreError, MatchNotFoundError, MatchResultError,
    ResultConflictError, ResultNotFoundError, UnauthorizedSubmitterError
)
from matchday.services.round_robin_service import InsufficientTeamsError, SchedulingError
from matchday.services.tournament_service import (
    InvalidTournamentError, RegistrationError, TournamentError, TournamentNotFoundError,
    TournamentStateError, UnauthorizedOrganizerError
)
from matchday.state_machines.match_lifecycle import InvalidTransitionError
from matchday.state_machines.tournament_lifecycle import (
    TournamentLockedError, TournamentTransitionError
)

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    FORBIDDEN = "FORBIDDEN"
    PARTICIPANT_REQUIRED = "PARTICIPANT_REQUIRED"

    NOT_FOUND = "NOT_FOUND"

    INVALID_STATE = "INVALID_STATE"
    STATE_TRANSITION_INVALID = "STATE_TRANSITION_INVALID"
    TOURNAMENT_LOCKED = "TOURNAMENT_LOCKED"
    CONFLICT = "CONFLICT"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class BadRequestError(APIError):
    """400 Bad Request - Invalid input"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Bad Request",
            message=message,
            code=code,
            details=details
        )


class ForbiddenError(APIError):
    """403 Forbidden - Access denied"""
    def __init__(self, message: str, code: str = ErrorCode.FORBIDDEN, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND, message: str = None):
        if message is None:
            message = f"{resource} not found"
            if identifier is not None:
                message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code
        )


class ConflictError(APIError):
    """409 Conflict - Request clashes with the current state"""
    def __init__(self, message: str, code: str = ErrorCode.CONFLICT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Conflict",
            message=message,
            code=code,
            details=details
        )


# =============================================================================
# Service exception translation
# =============================================================================

def to_api_error(exc: Exception) -> APIError:
    """
    Map an engine exception onto an APIError.

    Raises the original exception again if it is not an engine error.
    """
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)

    if isinstance(exc, (TournamentNotFoundError, MatchNotFoundError, ResultNotFoundError)):
        return NotFoundError("", message=message, code=code)

    if isinstance(exc, (UnauthorizedSubmitterError, UnauthorizedOrganizerError)):
        return ForbiddenError(message, code=code)

    if isinstance(exc, TournamentLockedError):
        return ConflictError(str(exc), code=ErrorCode.TOURNAMENT_LOCKED)

    if isinstance(exc, (InvalidTransitionError, TournamentTransitionError)):
        return ConflictError(str(exc), code=ErrorCode.STATE_TRANSITION_INVALID)

    if isinstance(exc, RegistrationError) and code == "INVALID_TEAM_NAME":
        return BadRequestError(message, code=code)

    if isinstance(exc, (ResultConflictError, InvalidMatchStateError, TournamentStateError,
                        MatchAlreadyDecidedError, RegistrationError)):
        return ConflictError(message, code=code)

    if isinstance(exc, (InvalidScoreError, InsufficientTeamsError, InvalidTournamentError,
                        TeamNotInMatchError)):
        return BadRequestError(message, code=code)

    if isinstance(exc, (MatchResultError, TournamentError, BracketError, SchedulingError)):
        return BadRequestError(message, code=code or ErrorCode.INVALID_INPUT)

    raise exc


ENGINE_ERRORS = (
    MatchResultError,
    TournamentError,
    SchedulingError,
    InvalidTransitionError,
    TournamentTransitionError,
    TournamentLockedError,
)
