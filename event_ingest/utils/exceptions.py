from __future__ import annotations

from typing import Any, Optional

from event_ingest.utils.error_codes import ErrorCode, ERROR_MESSAGES


def _normalize_error_code(value: ErrorCode | str | None) -> ErrorCode:
    if value is None:
        return ErrorCode.E010
    if isinstance(value, ErrorCode):
        return value
    try:
        return ErrorCode(str(value))
    except ValueError:
        return ErrorCode.E010


class IngestException(Exception):
    """Base exception for the event-ingest service.

    API response format is handled by the global exception handler.
    """

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | str = ErrorCode.E010,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500,
    ):
        normalized = _normalize_error_code(code)
        if message is None:
            message = ERROR_MESSAGES.get(normalized, ERROR_MESSAGES[ErrorCode.E010])

        self.message = message
        self.code = normalized.value
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


class EventValidationError(IngestException):
    """Externally submitted event failed decoding or a field rule. Never retried."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message, code=ErrorCode.E001, details={"field": field}, status_code=400)


class BadRequestException(IngestException):
    def __init__(self, message: str | None = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.E002, details=details, status_code=400)


class GenerationStateError(IngestException):
    """start() while running or stop() while idle; state is left unchanged."""

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.E003, details=details, status_code=409)


class BatchLogError(IngestException):
    def __init__(self, message: str | None = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.E004, details=details, status_code=500)


class NotSupportedException(IngestException):
    def __init__(self, message: str | None = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.E005, details=details, status_code=501)
