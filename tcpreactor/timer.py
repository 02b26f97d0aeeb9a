"""Timer events and the opaque ids used to cancel them."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional


class Timer:
    """A callback due at an expiration time, optionally repeating.

    Times are seconds as floats; an expiration of None means the timer
    will not fire again.
    """

    _lock = threading.Lock()
    _num_created = 0

    def __init__(self, callback: Callable[[], None], when: float, interval: float) -> None:
        self._callback = callback
        self._expiration: Optional[float] = when
        self._interval = interval
        self._repeat = interval > 0.0
        with Timer._lock:
            Timer._num_created += 1
            self._sequence = Timer._num_created

    def __repr__(self) -> str:
        return (
            f"Timer(sequence={self._sequence}, expiration={self._expiration}, "
            f"interval={self._interval})"
        )

    def run(self) -> None:
        self._callback()

    def expiration(self) -> Optional[float]:
        return self._expiration

    def repeat(self) -> bool:
        return self._repeat

    def sequence(self) -> int:
        return self._sequence

    def restart(self, now: float) -> None:
        """Schedule the next run one interval after ``now``, or retire the timer."""
        self._expiration = now + self._interval if self._repeat else None

    @classmethod
    def num_created(cls) -> int:
        return Timer._num_created


@dataclass(frozen=True)
class TimerId:
    """Opaque handle identifying a scheduled timer, for cancelling it."""

    timer: Optional[Timer] = None
    sequence: int = 0