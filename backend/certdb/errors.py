"""
Error taxonomy for the lifecycle engine.

Every error is recoverable and carries:
- `code`: machine readable category
- `reason`: human readable message
- `detail`: list of {"field": ..., "reason": ...} items
"""

from __future__ import annotations

from typing import Dict, List, NoReturn, Optional

from fastapi import HTTPException


class LifecycleError(Exception):
    code = "lifecycle_error"
    status_code = 400

    def __init__(self, reason: str, detail: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.detail = list(detail or [])

    def to_dict(self) -> dict:
        return {"code": self.code, "reason": self.reason, "detail": self.detail}


class NotFound(LifecycleError):
    code = "not_found"
    status_code = 404


class InvalidTransition(LifecycleError):
    code = "invalid_transition"
    status_code = 409


class ValidationFailed(LifecycleError):
    code = "validation_failed"
    status_code = 422


class Conflict(LifecycleError):
    code = "conflict"
    status_code = 409


def raise_http(db, exc: LifecycleError) -> NoReturn:
    """Roll back the request transaction and re-raise as an HTTP error."""
    db.rollback()
    raise HTTPException(status_code=exc.status_code, detail=exc.to_dict()) from exc
