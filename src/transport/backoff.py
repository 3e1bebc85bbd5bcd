"""
Exponential backoff for the reconnecting notification client.

Delays double from the base up to the cap (1s, 2s, 4s ... 30s). Jitter is
off by default so the schedule is exact; enable it to spread reconnect
storms after a server restart.
"""

import random


class ReconnectBackoff:
    """
    Exponential backoff with optional jitter.

    Computes delays as: min(base * multiplier^attempt, max_delay) +/- jitter.
    Call reset() once a connection has proven healthy to start over from
    the base.

    Usage:
        backoff = ReconnectBackoff(base_delay=1.0, max_delay=30.0)
        while True:
            try:
                await connect_and_wait_for_first_frame()
                backoff.reset()
            except TransportDisconnected:
                await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.0,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Number of delays handed out since the last reset."""
        return self._attempt

    def peek(self) -> float:
        """Next delay without jitter and without advancing."""
        return min(
            self.base_delay * (self.multiplier ** min(self._attempt, 64)),
            self.max_delay,
        )

    def next_delay(self) -> float:
        """Return the next delay and advance the attempt counter."""
        delay = self.peek()
        if self.jitter_range:
            delay += delay * random.uniform(-self.jitter_range, self.jitter_range)
            delay = min(max(0.0, delay), self.max_delay)
        self._attempt += 1
        return delay

    def reset(self) -> None:
        """Start the schedule over from the base delay."""
        self._attempt = 0
