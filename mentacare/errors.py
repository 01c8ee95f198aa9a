from __future__ import annotations

from typing import Any, Dict, Optional


class ApiError(RuntimeError):
    status = 500

    def __init__(self, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = dict(extra or {})


class ValidationError(ApiError):
    status = 400


class ConflictError(ApiError):
    """Business-rule violation; `extra` carries the structured detail (e.g. a count)."""

    status = 400


class AuthError(ApiError):
    status = 401


class ForbiddenError(ApiError):
    status = 403


class NotFoundError(ApiError):
    status = 404
