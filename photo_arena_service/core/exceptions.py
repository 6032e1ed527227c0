#!/usr/bin/env python3
"""
Custom Exceptions for Photo Arena Service
=========================================

Centralized exception handling for the verification pipeline and the
rating engine. Signal-quality and authentication failures are reported as
decisions, not raised; everything below is either a caller error or a
selection/integrity failure.
"""

from typing import Optional, Dict, Any


class PhotoArenaServiceError(Exception):
    """Base exception for all photo arena service errors"""

    def __init__(self, message: str, error_code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            'error': self.error_code,
            'message': self.message,
            'details': self.details
        }


# Input errors

class ValidationError(PhotoArenaServiceError):
    """Raised when input validation fails"""

    def __init__(self, field: str, value: Any, reason: str,
                 details: Optional[Dict[str, Any]] = None):
        message = f"Validation failed for '{field}' = '{value}': {reason}"
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field
        self.value = value
        self.reason = reason


class InvalidFrameError(PhotoArenaServiceError):
    """Raised when an image frame cannot be analyzed"""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Invalid frame: {reason}", "INVALID_FRAME_ERROR", details)
        self.reason = reason


class ConfigurationError(PhotoArenaServiceError):
    """Raised when configuration is invalid"""

    def __init__(self, parameter: str, value: Any, reason: str,
                 details: Optional[Dict[str, Any]] = None):
        message = f"Invalid configuration for '{parameter}' = '{value}': {reason}"
        super().__init__(message, "CONFIGURATION_ERROR", details)
        self.parameter = parameter
        self.value = value
        self.reason = reason


# Verification session errors

class SessionNotFoundError(PhotoArenaServiceError):
    """Raised when a verification session does not exist or has expired"""

    def __init__(self, session_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Verification session '{session_id}' not found",
                         "SESSION_NOT_FOUND", details)
        self.session_id = session_id


class SessionLimitError(PhotoArenaServiceError):
    """Raised when no more verification sessions can be opened"""

    def __init__(self, max_sessions: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Maximum sessions limit reached: {max_sessions}",
                         "SESSION_LIMIT_REACHED", details)
        self.max_sessions = max_sessions


class InvalidTransitionError(PhotoArenaServiceError):
    """Raised when an event is delivered in a state that cannot accept it"""

    def __init__(self, state: str, event: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Event '{event}' is not valid in state '{state}'",
                         "INVALID_TRANSITION", details)
        self.state = state
        self.event = event


class SessionClosedError(InvalidTransitionError):
    """Raised when an event arrives after the session reached a final state"""

    def __init__(self, state: str, event: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(state, event, details)
        self.message = f"Session already finished in state '{state}', cannot handle '{event}'"
        self.args = (self.message,)
        self.error_code = "SESSION_CLOSED"


# Rating errors

class InsufficientPoolSizeError(PhotoArenaServiceError):
    """Raised when fewer than two eligible photos remain for a comparison"""

    def __init__(self, eligible_count: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Need at least 2 eligible photos, found {eligible_count}",
                         "INSUFFICIENT_POOL_SIZE", details)
        self.eligible_count = eligible_count


class DuplicatePhotoError(PhotoArenaServiceError):
    """Raised when a photo id is registered twice"""

    def __init__(self, photo_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Photo '{photo_id}' is already registered", "DUPLICATE_PHOTO", details)
        self.photo_id = photo_id


class RatingIntegrityError(PhotoArenaServiceError):
    """Base class for rating events that indicate a caller bug"""


class MalformedRatingEventError(RatingIntegrityError):
    """Raised when a rating event is structurally invalid"""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Malformed rating event: {reason}", "MALFORMED_RATING_EVENT", details)
        self.reason = reason


class IdempotencyConflictError(RatingIntegrityError):
    """Raised when an idempotency key is reused for a different outcome"""

    def __init__(self, idempotency_key: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Idempotency key '{idempotency_key}' already used for a different outcome",
                         "IDEMPOTENCY_CONFLICT", details)
        self.idempotency_key = idempotency_key


class PhotoNotFoundError(RatingIntegrityError):
    """Raised when a rating event references an unknown photo"""

    def __init__(self, photo_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Photo '{photo_id}' not found", "PHOTO_NOT_FOUND", details)
        self.photo_id = photo_id


# Exception categories for different handling strategies

VALIDATION_ERRORS = (
    ValidationError,
    InvalidFrameError,
    ConfigurationError,
    MalformedRatingEventError
)

NOT_FOUND_ERRORS = (
    SessionNotFoundError,
    PhotoNotFoundError
)

CONFLICT_ERRORS = (
    InvalidTransitionError,
    InsufficientPoolSizeError,
    DuplicatePhotoError,
    IdempotencyConflictError
)


def is_validation_error(error: Exception) -> bool:
    """Check if an error is a validation error"""
    return isinstance(error, VALIDATION_ERRORS)


def get_http_status_code(error: Exception) -> int:
    """Get appropriate HTTP status code for an exception"""
    if is_validation_error(error):
        return 400  # Bad Request
    elif isinstance(error, NOT_FOUND_ERRORS):
        return 404  # Not Found
    elif isinstance(error, CONFLICT_ERRORS):
        return 409  # Conflict
    elif isinstance(error, SessionLimitError):
        return 503  # Service Unavailable
    else:
        return 500  # Internal Server Error


def log_exception(logger, error: Exception, context: Optional[Dict[str, Any]] = None):
    """Log exception with context information"""
    if isinstance(error, PhotoArenaServiceError):
        logger.error(f"{error.error_code}: {error.message}")
        if error.details:
            logger.error(f"Error details: {error.details}")
    else:
        logger.error(f"Unexpected error: {str(error)}")

    if context:
        logger.error(f"Context: {context}")
