from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from portal.core.config import settings

log = logging.getLogger(__name__)


def tick_delay(origin: float, ticks: int, tick: float, now: float) -> float:
    """Seconds until tick number ``ticks`` is due; ticks are pinned to ``origin``, not chained."""
    return max(0.0, origin + ticks * tick - now)


class ExamCountdown:
    """Single countdown bound to one active attempt.

    Counts ``seconds`` down by one per tick and awaits ``on_expire`` once at
    zero. ``disarm`` stops every further callback, including from inside the
    countdown task itself (the expiry path ends up calling it through
    ``finish``).
    """

    def __init__(
        self,
        seconds: int,
        on_expire: Callable[[], Awaitable[Any]],
        *,
        tick_seconds: float | None = None,
        on_tick: Callable[[int], Any] | None = None,
        attempt_id: str | None = None,
    ):
        if int(seconds) <= 0:
            raise ValueError("countdown needs a positive duration")
        self._total = int(seconds)
        self._remaining = int(seconds)
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._tick = float(settings.exam_tick_seconds) if tick_seconds is None else float(tick_seconds)
        self._attempt_id = attempt_id
        self._task: asyncio.Task | None = None
        self._disarmed = False
        self._expired = False

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def total(self) -> int:
        return self._total

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._disarmed

    @property
    def disarmed(self) -> bool:
        return self._disarmed

    @property
    def expired(self) -> bool:
        return self._expired

    def arm(self) -> None:
        if self._task is not None or self._disarmed:
            raise RuntimeError("countdown can only be armed once")
        self._task = asyncio.get_running_loop().create_task(self._run())
        log.info(
            "countdown armed attempt=%s seconds=%d",
            self._attempt_id,
            self._total,
            extra={"event_type": "countdown_armed", "attempt_id": self._attempt_id, "duration": self._total},
        )

    def disarm(self) -> bool:
        """Stop the countdown; True when this call stopped a running one."""
        if self._disarmed:
            return False
        self._disarmed = True

        task = self._task
        stopped = task is not None and not task.done()
        # Never cancel the task we are running in: expiry awaits finish() from it.
        if stopped and task is not asyncio.current_task():
            task.cancel()

        log.info(
            "countdown disarmed attempt=%s remaining=%d",
            self._attempt_id,
            self._remaining,
            extra={
                "event_type": "countdown_disarmed",
                "attempt_id": self._attempt_id,
                "remaining": self._remaining,
                "expired": self._expired,
            },
        )
        return stopped

    async def wait(self) -> None:
        if self._task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    def _log_tick(self) -> None:
        if self._remaining % 60 == 0 or self._remaining <= 10:
            log.debug(
                "countdown tick attempt=%s remaining=%d",
                self._attempt_id,
                self._remaining,
                extra={
                    "event_type": "countdown_tick",
                    "attempt_id": self._attempt_id,
                    "remaining": self._remaining,
                    "total": self._total,
                },
            )

    async def _run(self) -> None:
        started = time.monotonic()
        loop = asyncio.get_running_loop()
        origin = loop.time()
        ticks = 0
        try:
            while self._remaining > 0:
                ticks += 1
                await asyncio.sleep(tick_delay(origin, ticks, self._tick, loop.time()))
                if self._disarmed:
                    return
                self._remaining -= 1
                self._log_tick()
                if self._on_tick is not None:
                    self._on_tick(self._remaining)

            if self._disarmed:
                return
            self._expired = True
            log.info(
                "countdown expired attempt=%s after %.1fs",
                self._attempt_id,
                time.monotonic() - started,
                extra={"event_type": "countdown_expired", "attempt_id": self._attempt_id, "duration": self._total},
            )
            await self._on_expire()
        except asyncio.CancelledError:
            log.debug(
                "countdown task cancelled attempt=%s",
                self._attempt_id,
                extra={"event_type": "countdown_cancelled", "attempt_id": self._attempt_id},
            )
            raise
        except Exception:
            log.exception(
                "countdown expiry callback failed attempt=%s",
                self._attempt_id,
                extra={"event_type": "countdown_error", "attempt_id": self._attempt_id},
            )
            raise
