"""Compact, time-ordered identifiers for trips, days, events and locations.

An id is the low-order digits of the Unix time in seconds followed by a
zero-padded per-second sequence number::

    <timestamp_digits><sequence_digits>   e.g. 760912345 + 0042 -> '7609123450042'

With the default 9 + 4 layout a single process can issue 10,000 ids per
second. When the sequence for the current second is exhausted the
generator moves on to the next logical second instead of waiting for the
wall clock, so ids stay unique and increasing without blocking. Once the
wall clock catches up the two agree again.

Uniqueness holds within one process only; the storage primary keys catch
collisions between processes.
"""

import logging
import threading
import time
from collections.abc import Callable

import fastapi

logger = logging.getLogger(__name__)


class IdGenerator:
    """Thread-safe generator of decimal string ids."""

    def __init__(
        self,
        timestamp_digits: int = 9,
        sequence_digits: int = 4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if timestamp_digits < 1 or sequence_digits < 1:
            raise ValueError('timestamp_digits and sequence_digits must be >= 1')
        self.timestamp_digits = timestamp_digits
        self.sequence_digits = sequence_digits
        self.capacity = 10**sequence_digits
        self._clock = clock
        self._lock = threading.Lock()
        self._last_second = -1
        self._sequence = 0

    def next_id(self) -> str:
        """Return the next id."""
        with self._lock:
            now = int(self._clock())
            if now > self._last_second:
                self._last_second = now
                self._sequence = 0
            else:
                # Same second, or the clock is behind a borrowed second.
                self._sequence += 1
                if self._sequence >= self.capacity:
                    self._last_second += 1
                    self._sequence = 0
                    logger.debug(
                        'Id sequence exhausted; advancing to second %d',
                        self._last_second,
                    )
            second, sequence = self._last_second, self._sequence

        timestamp = str(second)[-self.timestamp_digits :].zfill(self.timestamp_digits)
        return timestamp + str(sequence).zfill(self.sequence_digits)

    def reset(self) -> None:
        """Forget the last second and sequence (for tests)."""
        with self._lock:
            self._last_second = -1
            self._sequence = 0

    # Named wrappers so call sites read by entity kind.

    def trip_id(self) -> str:
        """Id for a new trip."""
        return self.next_id()

    def day_id(self) -> str:
        """Id for a new day."""
        return self.next_id()

    def event_id(self) -> str:
        """Id for a new event."""
        return self.next_id()

    def location_id(self) -> str:
        """Id for a new location."""
        return self.next_id()

    def user_id(self) -> str:
        """Id for a new user."""
        return self.next_id()

    def session_id(self) -> str:
        """Id for a new session."""
        return self.next_id()


def get_id_generator(request: fastapi.Request) -> IdGenerator:
    """Return the application's shared id generator."""
    return request.app.state.id_generator
