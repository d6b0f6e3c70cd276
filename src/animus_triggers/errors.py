"""Trigger engine error hierarchy.

Structured exception types shared by the store, the executor and the
dispatcher.
"""

from __future__ import annotations

from typing import Any


class TriggerError(Exception):
    """Base error for all trigger engine exceptions."""

    code = "TRIGGER_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(TriggerError):
    """Rule, condition or preset data is malformed."""

    code = "CONFIGURATION"


class AddressingError(TriggerError):
    """A preset could not resolve its target channel, message or user."""

    code = "ADDRESSING"

    def __init__(self, message: str, target: str | None = None) -> None:
        super().__init__(message, {"target": target})
        self.target = target


class TransportError(TriggerError):
    """An outbound call failed or timed out."""

    code = "TRANSPORT"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, {"status_code": status_code})
        self.status_code = status_code


class CapacityError(TriggerError):
    """A guild or rule exceeded its configured rule/preset limit."""

    code = "CAPACITY"

    def __init__(self, message: str, limit: int = 0, requested: int = 0) -> None:
        super().__init__(message, {"limit": limit, "requested": requested})
        self.limit = limit
        self.requested = requested


class NotFoundError(TriggerError):
    """A rule referenced by id does not exist."""

    code = "NOT_FOUND"
