"""Timing-related constants (timeouts, intervals, hold window)."""

from typing import Final


class Timeouts:
    """Timeout values in SECONDS."""

    GATEWAY_REQUEST_SECONDS: Final[int] = 10
    GATEWAY_CONNECT_SECONDS: Final[int] = 5
    # Delay between the hold expiring and the release being read from the session
    EXPIRY_SETTLE_SECONDS: Final[float] = 0.1


class HoldWindow:
    """Slot hold countdown."""

    DURATION_SECONDS: Final[int] = 180
    TICK_SECONDS: Final[float] = 1.0
