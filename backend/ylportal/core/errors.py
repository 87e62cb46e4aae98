"""Typed errors raised by the service layer.

Each error carries a machine-readable ``code`` (the same snake_case strings
the routes put in ``HTTPException.detail``) and the HTTP status it maps to.
``ylportal.main`` installs one handler that renders all of them.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str
    row: int | None = None

    def as_dict(self) -> dict:
        out = {"field": self.field, "message": self.message}
        if self.row is not None:
            out["row"] = self.row
        return out


class PortalError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str | None = None, code: str | None = None):
        if code is not None:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)

    def extra(self) -> dict:
        return {}

    def to_body(self) -> dict:
        return {"detail": self.code, "message": self.message, **self.extra()}


class ValidationFailed(PortalError):
    status_code = 400
    code = "validation_failed"

    def __init__(self, message: str, errors: list[FieldError] | None = None, code: str | None = None):
        super().__init__(message, code)
        self.errors = list(errors or [])

    def extra(self) -> dict:
        return {"errors": [e.as_dict() for e in self.errors]}


class Unauthorized(PortalError):
    status_code = 401
    code = "invalid_token"


class Forbidden(PortalError):
    status_code = 403
    code = "forbidden"


class NotFound(PortalError):
    status_code = 404
    code = "not_found"


class Conflict(PortalError):
    status_code = 409
    code = "conflict"


class InvalidStateTransition(Conflict):
    code = "invalid_state_transition"

    def __init__(self, current_status: str, attempted: str, message: str | None = None):
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(message or f"Cannot {attempted} a movement with status {current_status}")

    def extra(self) -> dict:
        return {"current_status": self.current_status, "attempted": self.attempted}


class ReferencedEntityConflict(Conflict):
    code = "entity_referenced"

    def __init__(self, message: str, code: str, references: int = 0):
        super().__init__(message, code)
        self.references = references

    def extra(self) -> dict:
        return {"references": self.references}
