from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Error codes returned in the ``{"error": {...}}`` envelope."""

    E001 = "E001"  # Validation: event rejected
    E002 = "E002"  # Request: invalid input
    E003 = "E003"  # State: generation state conflict
    E004 = "E004"  # IO: batch log write failed
    E005 = "E005"  # Not supported in file-only mode
    E010 = "E010"  # Internal: Internal error


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.E001: "Event validation failed",
    ErrorCode.E002: "Invalid request",
    ErrorCode.E003: "Generation state conflict",
    ErrorCode.E004: "Batch log write failed",
    ErrorCode.E005: "Not supported",
    ErrorCode.E010: "Internal server error",
}
