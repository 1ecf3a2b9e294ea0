"""
Atomic Counter Word for sharedref
=================================

A single integer cell with read-modify-write operations that are atomic
with respect to every other operation on the same cell. Control blocks
build their strong/weak bookkeeping out of these cells.

CPython does not expose a hardware compare-and-swap to Python code, so
each cell carries its own ``threading.Lock`` that is held for exactly one
compare-and-store and never across user code. Algorithms built on top of
the cell, ``fetch_add`` included, are written as CAS retry loops, which
keeps them correct regardless of how the cell is realized.

The cell is therefore not lock-free. Its critical section only compares
and stores ints, which never allocates a tracked object, so collector
driven ``__del__`` methods cannot run inside it. A signal handler can:
one that drops a handle on the same block while the interrupted thread
holds the cell's lock deadlocks, because the lock is not reentrant.
Do not release handles from signal handlers.
"""

import threading


class AtomicCounter:
    """
    Integer cell with load/store/fetch_add/compare_and_swap.

    Not lock-free: every update takes the cell's own non-reentrant lock
    for a single compare-and-store.
    """

    __slots__ = ('_value', '_lock')

    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    def load(self) -> int:
        """Read the current value"""
        return self._value

    def store(self, value: int):
        """Overwrite the current value"""
        with self._lock:
            self._value = value

    def fetch_add(self, delta: int) -> int:
        """Add ``delta`` and return the value held *before* the addition"""
        while True:
            previous = self._value
            if self.compare_and_swap(previous, previous + delta):
                return previous

    def fetch_sub(self, delta: int) -> int:
        """Subtract ``delta`` and return the previous value"""
        return self.fetch_add(-delta)

    def compare_and_swap(self, expected: int, desired: int) -> bool:
        """
        Replace the value with ``desired`` only if it still equals
        ``expected``. Returns True when the swap happened.
        """
        with self._lock:
            if self._value != expected:
                return False
            self._value = desired
            return True

    def __int__(self) -> int:
        return self._value

    def __repr__(self) -> str:
        return f"AtomicCounter({self._value})"
