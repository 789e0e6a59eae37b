"""
Typed failures raised by the service layer.

Handlers translate these into JSON responses; services never swallow them.
"""
from __future__ import annotations


class GavelError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class Unauthenticated(GavelError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Not signed in") -> None:
        super().__init__(message)


class Unauthorized(GavelError):
    status_code = 403
    code = "unauthorized"


class NotFound(GavelError):
    status_code = 404
    code = "not_found"


class InvalidTransition(GavelError):
    status_code = 409
    code = "invalid_transition"


class PreconditionFailed(GavelError):
    status_code = 409
    code = "precondition_failed"


class ValidationError(GavelError, ValueError):
    status_code = 400
    code = "validation_error"


class Transient(GavelError):
    """Backing store conflict or outage; safe to resubmit."""

    status_code = 503
    code = "transient"
