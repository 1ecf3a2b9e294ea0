"""
Error types for sharedref handle management.

Expiry of a weak handle is not an error: ``WeakHandle.upgrade()`` reports
it with ``None``. The exceptions here cover bookkeeping bugs, the
throwing promotion path, and debug-mode misuse detection.

Author: xwest
"""

from typing import Any, Optional


class HandleError(Exception):
    """Base class for all handle management errors."""

    def __init__(self, message: str, block: Optional[Any] = None):
        super().__init__(message)
        self.block = block


class RefCountError(HandleError):
    """
    Raised when a strong or weak count would drop below zero.

    This always indicates a bookkeeping bug: some handle released a
    reference it did not hold.
    """


class BadWeakHandleError(HandleError):
    """Raised by ``StrongHandle.from_weak`` when the weak handle has expired."""

    def __init__(self, message: str = "weak handle has expired", block: Optional[Any] = None):
        super().__init__(message, block)


class EmptyHandleError(HandleError):
    """Raised when an operation needs an owning block and there is none."""


class DoubleOwnershipError(HandleError):
    """
    Raised in debug mode when an object that is already owned by a live
    control block is wrapped into a second one.

    Two blocks over one object means two independent strong counts, and
    each would eventually destroy the object. Derive further handles with
    ``StrongHandle.clone()`` instead of wrapping the object again.
    """

    def __init__(self, payload: Any, block: Optional[Any] = None):
        super().__init__(
            f"object {type(payload).__name__} at 0x{id(payload):x} is already "
            f"owned by a live control block; clone the existing handle instead",
            block,
        )
        self.payload = payload
