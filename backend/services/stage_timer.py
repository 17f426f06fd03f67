# services/stage_timer.py
"""
Monotonic stage clock and the tick source that drives it.

The Ticker is the only component that produces scheduled ticks. Everything
downstream (forced question advance, coaching cues, demo auto-stop) is a pure
function of the elapsed value carried by each tick.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

Clock = Callable[[], float]


@dataclass(frozen=True)
class Tick:
    elapsed: float

    @property
    def whole_seconds(self) -> int:
        return int(self.elapsed)


class StageTimer:
    """Elapsed/remaining clock. A limit of 0 means no limit."""

    def __init__(self, limit_seconds: float = 0, clock: Clock = time.monotonic):
        self.limit_seconds = limit_seconds
        self._clock = clock
        self._started_at: Optional[float] = None
        self._stopped_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._started_at is not None and self._stopped_at is None

    def start(self) -> None:
        self._started_at = self._clock()
        self._stopped_at = None

    def stop(self) -> float:
        if self._started_at is None:
            return 0.0
        if self._stopped_at is None:
            self._stopped_at = self._clock()
        return self.elapsed()

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        return max(0.0, end - self._started_at)

    def remaining(self) -> float:
        if not self.limit_seconds:
            return float("inf")
        return max(0.0, self.limit_seconds - self.elapsed())

    def expired(self) -> bool:
        return bool(self.limit_seconds) and self.elapsed() >= self.limit_seconds

    def tick(self) -> Tick:
        return Tick(elapsed=self.elapsed())


class Ticker:
    """Async iterator yielding a Tick per interval until stopped."""

    def __init__(
        self,
        timer: StageTimer,
        interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.timer = timer
        self.interval = interval
        self._sleep = sleep
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    def __aiter__(self) -> AsyncIterator[Tick]:
        return self._run()

    async def _run(self) -> AsyncIterator[Tick]:
        if not self.timer.running:
            self.timer.start()
        while not self._stopped:
            await self._sleep(self.interval)
            if self._stopped:
                break
            yield self.timer.tick()


def format_clock(seconds: float) -> str:
    """m:ss, as shown next to the countdown."""
    whole = max(0, int(seconds))
    return f"{whole // 60}:{whole % 60:02d}"
