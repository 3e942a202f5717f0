"""Countdown for the provisional hold on a reserved slot."""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from loguru import logger

from ...constants.timing import HoldWindow
from ...core.tasks import BackgroundTasks

ExpiryCallback = Callable[[int], Awaitable[None]]


class TimerPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    EXPIRED = "expired"


def format_remaining(seconds: int) -> str:
    """Render seconds as ``M:SS``."""
    minutes, rest = divmod(max(seconds, 0), 60)
    return f"{minutes}:{rest:02d}"


class HoldTimer:
    """
    Single countdown clock for the current hold.

    Each ``start()``/``reset()`` opens a new cycle identified by
    ``generation``. A cycle ends in exactly one of: ``stop()``, a later
    ``reset()``, or expiry. Expiry invokes the callback once, on its own task,
    with the generation that expired.
    """

    def __init__(
        self,
        on_expire: Optional[ExpiryCallback] = None,
        duration_seconds: int = HoldWindow.DURATION_SECONDS,
        tick_seconds: float = HoldWindow.TICK_SECONDS,
        tasks: Optional[BackgroundTasks] = None,
    ):
        """
        Initialize hold timer.

        Args:
            on_expire: Coroutine function called with the expired generation
            duration_seconds: Countdown length
            tick_seconds: Real time between two decrements (tests shrink it)
            tasks: Registry for the expiry callback task
        """
        self.on_expire = on_expire
        self.duration_seconds = duration_seconds
        self.tick_seconds = tick_seconds
        self.tasks = tasks or BackgroundTasks()

        self.remaining_seconds = duration_seconds
        self.phase = TimerPhase.IDLE
        self.is_visible = False
        self.generation = 0
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_active(self) -> bool:
        return self.phase is TimerPhase.RUNNING

    @property
    def is_expired(self) -> bool:
        """True once the countdown hit zero and the timer is still shown."""
        return self.phase is TimerPhase.EXPIRED and self.is_visible

    @property
    def display(self) -> str:
        return format_remaining(self.remaining_seconds)

    def start(self) -> bool:
        """
        Start a new countdown unless one is already running.

        Returns:
            True if a new cycle was armed, False if the call was a no-op
        """
        if self.phase is TimerPhase.RUNNING:
            logger.debug("Hold timer already running, start ignored")
            return False
        self._arm()
        logger.info(f"Hold timer started ({self.duration_seconds}s, cycle {self.generation})")
        return True

    def reset(self) -> None:
        """Cancel the current countdown and re-arm the full duration."""
        self._cancel_tick()
        self._arm()
        logger.info(f"Hold timer reset ({self.duration_seconds}s, cycle {self.generation})")

    def stop(self) -> None:
        """Stop and hide the timer. A pending expiry of this cycle is dropped."""
        self._cancel_tick()
        self.generation += 1
        self.phase = TimerPhase.IDLE
        self.is_visible = False
        logger.info("Hold timer stopped")

    def _arm(self) -> None:
        self.generation += 1
        self.remaining_seconds = self.duration_seconds
        self.phase = TimerPhase.RUNNING
        self.is_visible = True
        self._schedule_tick()

    def _schedule_tick(self) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.tick_seconds, self._tick, self.generation)

    def _cancel_tick(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _tick(self, generation: int) -> None:
        if generation != self.generation or self.phase is not TimerPhase.RUNNING:
            return

        self.remaining_seconds -= 1
        if self.remaining_seconds > 0:
            self._schedule_tick()
            return

        self.remaining_seconds = 0
        self.phase = TimerPhase.EXPIRED
        self._handle = None
        logger.warning(f"Hold timer expired (cycle {generation})")
        # Decoupled from the tick
        asyncio.get_running_loop().call_soon(self._fire_expiry, generation)

    def _fire_expiry(self, generation: int) -> None:
        if generation != self.generation:
            logger.debug(f"Dropping expiry of superseded cycle {generation}")
            return
        if self.on_expire is None:
            return
        self.tasks.spawn(self.on_expire(generation), name=f"hold-expiry-{generation}")
