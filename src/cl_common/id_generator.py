"""Snowflake-style ID generator for ledger row IDs (cycles, lines, participations, ...).

IDs are short sortable strings, optionally prefixed with the entity kind
(``cyc_``, ``line_``, ``part_``) so log lines stay readable.
Single-process generator; uniqueness across workers comes from ``worker_id``.
"""

import threading
import time


class SnowflakeIdGenerator:
    """Layout (63 bits): 41 bits ms since epoch | 10 bits worker | 12 bits sequence."""

    _EPOCH_MS = 1_735_689_600_000  # 2025-01-01T00:00:00Z
    _WORKER_BITS = 10
    _SEQUENCE_BITS = 12
    _SEQUENCE_MASK = (1 << _SEQUENCE_BITS) - 1

    def __init__(self, worker_id: int = 0) -> None:
        if not (0 <= worker_id < (1 << self._WORKER_BITS)):
            raise ValueError(f"worker_id must be 0-{(1 << self._WORKER_BITS) - 1}")
        self._worker_id = worker_id
        self._sequence = 0
        self._last_ms = -1
        self._lock = threading.Lock()

    def next_int(self) -> int:
        with self._lock:
            now = self._now_ms()
            if now < self._last_ms:
                # clock stepped backwards: keep issuing from the last timestamp
                now = self._last_ms
            if now == self._last_ms:
                self._sequence = (self._sequence + 1) & self._SEQUENCE_MASK
                if self._sequence == 0:
                    while now <= self._last_ms:
                        now = self._now_ms()
            else:
                self._sequence = 0
            self._last_ms = now
            return (
                ((now - self._EPOCH_MS) << (self._WORKER_BITS + self._SEQUENCE_BITS))
                | (self._worker_id << self._SEQUENCE_BITS)
                | self._sequence
            )

    def next_id(self, prefix: str = "") -> str:
        return f"{prefix}{self.next_int()}"

    @staticmethod
    def _now_ms() -> int:
        return time.time_ns() // 1_000_000


_default_generator = SnowflakeIdGenerator()


def generate_id(prefix: str = "") -> str:
    """Generate a unique, time-sortable string ID, e.g. ``generate_id("cyc_")``."""
    return _default_generator.next_id(prefix)
