"""Injectable time source so settle delays and polls can be simulated in tests."""

from __future__ import annotations

import asyncio
import time


class Clock:
    """Real wall-clock implementation."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    def deadline(self, timeout: float) -> float:
        return self.monotonic() + max(0.0, float(timeout))

    def remaining(self, deadline: float) -> float:
        return deadline - self.monotonic()


__all__ = ["Clock"]
