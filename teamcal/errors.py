"""
Domain exceptions shared by every service.

Each exception carries the HTTP status the gateway answers with, so route
handlers can let them propagate and the registered error handler renders
`{"error": message}`.
"""

from typing import Any, Dict, Optional


class CalendarError(Exception):
    """Base exception for all application-specific errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class UnauthorizedError(CalendarError):
    """The caller presented no usable identity."""

    status_code = 401


class ForbiddenError(CalendarError):
    """The caller is known but lacks the capability for this action."""

    status_code = 403


class NotFoundError(CalendarError):
    """A referenced event, team, grouping or user does not exist."""

    status_code = 404

    def __init__(self, resource: str, identifier: Any):
        message = f"{resource} not found"
        super().__init__(message, {"resource": resource, "identifier": str(identifier)})


class ValidationError(CalendarError):
    status_code = 400


class ConflictError(CalendarError):
    status_code = 409


class ConfigurationError(CalendarError):
    """Raised at startup when required secrets are missing or malformed."""

    status_code = 500


class KeyUnavailableError(CalendarError):
    """The owner's key envelope is missing, corrupt, or no master key is loaded."""

    status_code = 409


class CryptoError(CalendarError):
    status_code = 422


class IntegrityError(CryptoError):
    """Authenticated decryption failed: tampered record or wrong key."""


class FormatError(CryptoError):
    """A sealed record does not have the `iv:tag:ciphertext` structure."""
