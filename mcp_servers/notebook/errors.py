"""
Error taxonomy for the notebook automation driver.

Every classified failure is a DriverError carrying enough context for a caller
to act on it (reason + suggestion) without seeing selectors or stack traces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class CdpError(Exception):
    """Transport-level DevTools failure (closed socket, error reply, reply timeout)."""


@dataclass
class DriverError(Exception):
    """Structured error with context for the caller."""

    component: str
    action: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        text = f"[{self.component}] {self.action} failed: {self.reason}"
        if self.suggestion:
            text += f". Suggestion: {self.suggestion}"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "type": type(self).__name__,
            "component": self.component,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


class SessionError(DriverError):
    """No automation session could be obtained."""


class ProfileInUseError(DriverError):
    """The durable identity is held by another browser process."""


class NavigationTimeout(DriverError):
    """The target page never reached its readiness marker."""


class AffordanceNotFound(DriverError):
    """An expected UI control could not be located."""


class DialogTimeout(DriverError):
    pass


class CreationTimeout(DriverError):
    pass


class ResponseTimeout(DriverError):
    pass


class AuthSessionError(DriverError):
    """Failure attributed to a missing or expired login."""


@dataclass
class OperationFailed(DriverError):
    """Final, caller-facing failure produced by the retry orchestrator."""

    category: str = "unknown"
    attempts: int = 1
    error_type: str = ""

    @property
    def is_auth(self) -> bool:
        return self.category == "auth"

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out.update({"category": self.category, "attempts": self.attempts, "errorType": self.error_type})
        return out


__all__ = [
    "AffordanceNotFound",
    "AuthSessionError",
    "CdpError",
    "CreationTimeout",
    "DialogTimeout",
    "DriverError",
    "NavigationTimeout",
    "OperationFailed",
    "ProfileInUseError",
    "ResponseTimeout",
    "SessionError",
]
