"""Error kinds surfaced by services.

Every error carries the HTTP status the API layer answers with, so
controllers and the exception handler in `main` never need to guess.
"""

from typing import Any, Dict, Optional


class PortalError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailed(PortalError):
    status_code = 400


class UnauthorizedError(PortalError):
    status_code = 401


class ForbiddenError(PortalError):
    status_code = 403


class NotFoundError(PortalError):
    status_code = 404


class ConflictError(PortalError):
    status_code = 409
