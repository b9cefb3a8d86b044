"""
Call-level retry for transient login/session failures.

Only failures that read like an authentication problem are retried. Anything
else is surfaced at once. Every failure leaves as an OperationFailed so the
caller gets a remediation hint instead of a raw error. Side effects of a failed
attempt are not compensated: a retried artifact insertion can create a
duplicate.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .clock import Clock
from .errors import AuthSessionError, DriverError, NavigationTimeout, OperationFailed, SessionError

logger = logging.getLogger("mcp.notebook.retry")

T = TypeVar("T")

AUTH_VOCABULARY = re.compile(
    r"\b("
    r"authenticat\w*|(?:un)?authori[sz](?:ed|ation)|credentials?|"
    r"log(?:ged)?[\s-]?(?:in|out)|sign(?:ed)?[\s-]?(?:in|out)|"
    r"session (?:has )?expired|expired session|session (?:is )?invalid|invalid session"
    r")\b",
    re.IGNORECASE,
)

AUTH_REMEDY = "Likely a login/session issue: re-authenticate the browser profile with the auth tool, then retry"
UNKNOWN_REMEDY = "Unknown failure: check the driver configuration (browser binary, profile path, repository URL) and retry"


def failure_text(exc: BaseException) -> str:
    if isinstance(exc, DriverError):
        return exc.reason
    return str(exc)


def is_auth_failure(exc: BaseException) -> bool:
    """True when a failure is eligible for automatic retry."""
    if isinstance(exc, AuthSessionError):
        return True
    if isinstance(exc, SessionError):
        return False
    return AUTH_VOCABULARY.search(failure_text(exc)) is not None


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay: float = 2.5


class RetryOrchestrator:
    def __init__(self, policy: RetryPolicy | None = None, clock: Clock | None = None) -> None:
        self.policy = policy or RetryPolicy()
        self.clock = clock or Clock()

    async def run(self, operation: Callable[[], Awaitable[T]], *, action: str, retry: bool = True) -> T:
        """Run operation with up to max_attempts tries; raise OperationFailed on failure."""
        attempts = max(1, self.policy.max_attempts) if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as exc:  # noqa: BLE001
                auth = is_auth_failure(exc)
                if auth and attempt < attempts:
                    logger.warning(
                        "retryable failure action=%s attempt=%d/%d: %s", action, attempt, attempts, failure_text(exc)
                    )
                    await self.clock.sleep(self.policy.delay)
                    continue
                logger.info("operation failed action=%s attempts=%d type=%s", action, attempt, type(exc).__name__)
                raise self._final_failure(exc, action=action, attempts=attempt, auth=auth) from exc
        raise RuntimeError("Retry exhausted without error")

    @staticmethod
    def _final_failure(exc: Exception, *, action: str, attempts: int, auth: bool) -> OperationFailed:
        # A page that never became ready is most often a silent sign-in redirect.
        # It still gets a single attempt.
        auth = auth or isinstance(exc, NavigationTimeout)
        if isinstance(exc, DriverError):
            reason = exc.reason
            component = exc.component
            details: dict[str, Any] = {k: v for k, v in exc.details.items() if k != "logTail"}
        else:
            reason = f"Unexpected automation failure ({type(exc).__name__})"
            component = "driver"
            details = {}
        if attempts > 1:
            reason = f"{reason} (after {attempts} attempts)"
        return OperationFailed(
            component=component,
            action=action,
            reason=reason,
            suggestion=AUTH_REMEDY if auth else UNKNOWN_REMEDY,
            details=details,
            category="auth" if auth else "unknown",
            attempts=attempts,
            error_type=type(exc).__name__,
        )


__all__ = [
    "AUTH_REMEDY",
    "AUTH_VOCABULARY",
    "UNKNOWN_REMEDY",
    "RetryOrchestrator",
    "RetryPolicy",
    "failure_text",
    "is_auth_failure",
]
