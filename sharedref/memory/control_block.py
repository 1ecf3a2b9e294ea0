"""
Control Blocks for Shared Ownership
===================================

A control block is the bookkeeping record shared by every strong and
weak handle to one managed object. It owns the strong count, the weak
count, the payload and the destruction capability.

Count protocol:
- ``strong_count`` starts at 1 (the handle produced with the block).
- The internal weak counter starts at 1 as well: the whole group of strong
  handles holds one implicit weak unit while ``strong_count > 0``. The
  ``weak_count`` property reports observers only, so a fresh block
  reports 0.
- When ``strong_count`` drops to 0 the destroyer runs exactly once and the
  implicit weak unit is released. When the internal weak counter then
  drops to 0 the block is reclaimed.

Layouts:
- ``InplaceControlBlock`` constructs the payload itself (``make_shared``),
  so counts and payload live in one object.
- ``PointerControlBlock`` adopts an object that was built elsewhere and
  may carry a caller-supplied destroyer.

Wrapping one object in two pointer blocks gives it two independent strong
counts and it will be destroyed twice. This is unsupported; in debug mode
the second wrap raises ``DoubleOwnershipError``.

Author: xwest
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple, Union

from .atomics import AtomicCounter
from .config import HandleConfiguration, get_configuration
from .errors import DoubleOwnershipError, RefCountError
from .monitor import HandleStatistics, get_statistics

logger = logging.getLogger(__name__)


class Destroyer(ABC):
    """Destruction capability stored in a control block"""

    __slots__ = ()

    @abstractmethod
    def destroy(self, payload: Any):
        """Destroy ``payload``. Called exactly once per control block."""


class DefaultDestroyer(Destroyer):
    """
    Default destruction: the block drops its reference to the payload and
    the interpreter reclaims the object once nothing else refers to it.
    """

    __slots__ = ()

    def destroy(self, payload: Any):
        pass

    def __repr__(self) -> str:
        return "DefaultDestroyer()"


class CallableDestroyer(Destroyer):
    """Caller-supplied destruction routine"""

    __slots__ = ('function',)

    def __init__(self, function: Callable[[Any], Any]):
        if not callable(function):
            raise TypeError(f"destroyer must be callable, got {type(function).__name__}")
        self.function = function

    def destroy(self, payload: Any):
        self.function(payload)

    def __repr__(self) -> str:
        name = getattr(self.function, '__qualname__', repr(self.function))
        return f"CallableDestroyer({name})"


DEFAULT_DESTROYER = DefaultDestroyer()

DestroyerLike = Union[None, Destroyer, Callable[[Any], Any]]


def as_destroyer(destroyer: DestroyerLike) -> Destroyer:
    """Normalize ``None`` / a Destroyer / a plain callable into a Destroyer"""
    if destroyer is None:
        return DEFAULT_DESTROYER
    if isinstance(destroyer, Destroyer):
        return destroyer
    return CallableDestroyer(destroyer)


class OwnershipRegistry:
    """
    Debug-mode registry of objects currently owned by pointer blocks.

    Keyed by ``id(payload)``; the owning block keeps the payload alive
    until it unregisters, so ids are not reused while registered.
    """

    def __init__(self):
        self._owners: Dict[int, 'ControlBlock'] = {}
        self._lock = threading.Lock()

    def register(self, payload: Any, block: 'ControlBlock'):
        with self._lock:
            owner = self._owners.get(id(payload))
            if owner is not None:
                raise DoubleOwnershipError(payload, owner)
            self._owners[id(payload)] = block

    def unregister(self, payload: Any, block: 'ControlBlock'):
        with self._lock:
            if self._owners.get(id(payload)) is block:
                del self._owners[id(payload)]

    def owner_of(self, payload: Any) -> Optional['ControlBlock']:
        with self._lock:
            return self._owners.get(id(payload))

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)


_ownership_registry = OwnershipRegistry()


def get_ownership_registry() -> OwnershipRegistry:
    return _ownership_registry


def _increment_if_nonzero(counter: AtomicCounter) -> bool:
    """CAS loop: add one unless the counter is zero"""
    while True:
        current = counter.load()
        if current == 0:
            return False
        if counter.compare_and_swap(current, current + 1):
            return True


def _decrement(counter: AtomicCounter, name: str, block: 'ControlBlock') -> bool:
    """CAS loop: subtract one, returning True when this call reached zero"""
    while True:
        current = counter.load()
        if current <= 0:
            raise RefCountError(f"{name} count of {block!r} is already zero", block)
        if counter.compare_and_swap(current, current - 1):
            return current == 1


class ControlBlock(ABC):
    """
    Shared bookkeeping for one managed object.

    Handles call ``release_strong`` / ``release_weak`` to drop a
    reference; the primitive increment/decrement methods are exposed for
    callers that build their own handle types.
    """

    __slots__ = ('_strong', '_weak', '_destroyer', '_config', '_stats',
                 '_payload_destroyed', '_reclaimed')

    def __init__(self, destroyer: Destroyer,
                 config: Optional[HandleConfiguration] = None):
        self._strong = AtomicCounter(1)
        self._weak = AtomicCounter(1)
        self._destroyer = destroyer
        self._config = config or get_configuration()
        self._stats: Optional[HandleStatistics] = (
            get_statistics() if self._config.track_statistics else None
        )
        self._payload_destroyed = False
        self._reclaimed = False

    # Layout specific

    @property
    @abstractmethod
    def payload(self) -> Any:
        """The managed object, or None once it has been destroyed"""

    @abstractmethod
    def _take_payload(self) -> Any:
        """Detach the payload from the block and return it"""

    @property
    def is_inplace(self) -> bool:
        return False

    # Observers

    @property
    def strong_count(self) -> int:
        return self._strong.load()

    @property
    def weak_count(self) -> int:
        """Number of weak observers, excluding the strong group's implicit unit"""
        strong = self._strong.load()
        weak = self._weak.load()
        if strong > 0:
            weak -= 1
        return max(weak, 0)

    @property
    def destroyer(self) -> Destroyer:
        return self._destroyer

    @property
    def config(self) -> HandleConfiguration:
        return self._config

    @property
    def is_expired(self) -> bool:
        return self._strong.load() == 0

    @property
    def is_payload_destroyed(self) -> bool:
        return self._payload_destroyed

    @property
    def is_reclaimed(self) -> bool:
        return self._reclaimed

    # Count primitives

    def increment_strong(self):
        """Add a strong reference. The caller must already hold one."""
        if not _increment_if_nonzero(self._strong):
            raise RefCountError(f"cannot add a strong reference to expired {self!r}", self)

    def decrement_strong(self) -> bool:
        """Drop a strong reference; True when this call drove the count to zero"""
        return _decrement(self._strong, "strong", self)

    def increment_weak(self):
        """Add a weak reference. The caller must hold a strong or weak one."""
        if not _increment_if_nonzero(self._weak):
            raise RefCountError(f"cannot add a weak reference to reclaimed {self!r}", self)

    def decrement_weak(self) -> bool:
        """Drop a weak reference; True when the block must now be reclaimed"""
        return _decrement(self._weak, "weak", self)

    def try_increment_strong_if_nonzero(self) -> bool:
        """
        Add a strong reference only if the object is still alive.

        The check and the increment are one compare-and-swap, so a
        concurrent final ``release_strong`` either happens entirely before
        (and this returns False) or entirely after this call.
        """
        return _increment_if_nonzero(self._strong)

    def record_failed_upgrade(self):
        if self._stats is not None:
            self._stats.record_failed_upgrade()

    # Drop sequences

    def release_strong(self) -> bool:
        """
        Drop a strong reference and run whatever destruction it triggers.

        Returns True when this call destroyed the payload. If the
        destroyer raises, the implicit weak unit is still released (and
        the block reclaimed when due) before the exception propagates.
        """
        if not self.decrement_strong():
            return False
        try:
            self._destroy_payload()
        finally:
            if self.decrement_weak():
                self._reclaim()
        return True

    def release_weak(self) -> bool:
        """Drop a weak reference; returns True when the block was reclaimed"""
        if self.decrement_weak():
            self._reclaim()
            return True
        return False

    def _destroy_payload(self):
        payload = self._take_payload()
        self._payload_destroyed = True
        if self._stats is not None:
            self._stats.record_payload_destroyed()
        if self._config.log_lifecycle:
            logger.debug("Destroying %s payload of %r with %r",
                         type(payload).__name__, self, self._destroyer)
        self._destroyer.destroy(payload)

    def _reclaim(self):
        self._reclaimed = True
        if self._stats is not None:
            self._stats.record_block_reclaimed()
        if self._config.log_lifecycle:
            logger.debug("Reclaimed %r", self)

    def _record_created(self):
        if self._stats is not None:
            self._stats.record_block_created(self.is_inplace)
        if self._config.log_lifecycle:
            logger.debug("Created %r", self)

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(strong={self._strong.load()}, "
                f"weak={self.weak_count}, at=0x{id(self):x})")


class InplaceControlBlock(ControlBlock):
    """
    Control block that constructs its own payload.

    The payload is built before any counts exist, so a factory that raises
    leaves nothing behind.
    """

    __slots__ = ('_payload',)

    def __init__(self, factory: Callable[..., Any], args: Tuple = (),
                 kwargs: Optional[Dict[str, Any]] = None,
                 config: Optional[HandleConfiguration] = None):
        if not callable(factory):
            raise TypeError(f"factory must be callable, got {type(factory).__name__}")
        self._payload = factory(*args, **(kwargs or {}))
        super().__init__(DEFAULT_DESTROYER, config)
        self._record_created()

    @property
    def payload(self) -> Any:
        return self._payload

    @property
    def is_inplace(self) -> bool:
        return True

    def _take_payload(self) -> Any:
        payload, self._payload = self._payload, None
        return payload


class PointerControlBlock(ControlBlock):
    """Control block adopting an externally constructed object"""

    __slots__ = ('_payload', '_registered')

    def __init__(self, payload: Any, destroyer: DestroyerLike = None,
                 config: Optional[HandleConfiguration] = None):
        super().__init__(as_destroyer(destroyer), config)
        self._payload = payload
        self._registered = False
        if self._config.debug_mode:
            _ownership_registry.register(payload, self)
            self._registered = True
        try:
            self._record_created()
        except BaseException:
            if self._registered:
                _ownership_registry.unregister(payload, self)
                self._registered = False
            raise

    @property
    def payload(self) -> Any:
        return self._payload

    def _take_payload(self) -> Any:
        payload, self._payload = self._payload, None
        if self._registered:
            _ownership_registry.unregister(payload, self)
            self._registered = False
        return payload


def create_control_block(source: Any, destroyer: DestroyerLike = None, *,
                         construct: bool = False, args: Tuple = (),
                         kwargs: Optional[Dict[str, Any]] = None,
                         config: Optional[HandleConfiguration] = None) -> ControlBlock:
    """
    Create a control block with ``strong_count == 1``.

    With ``construct=True`` ``source`` is a factory called with
    ``args``/``kwargs`` and the result lives inside the block. Otherwise
    ``source`` is an already built object adopted together with
    ``destroyer``; if the block itself cannot be allocated the object is
    handed to the destroyer before ``MemoryError`` propagates.
    """
    if construct:
        if destroyer is not None:
            raise ValueError("in-place construction always uses the default destroyer")
        return InplaceControlBlock(source, args, kwargs, config)

    destroyer = as_destroyer(destroyer)
    try:
        return PointerControlBlock(source, destroyer, config)
    except MemoryError:
        destroyer.destroy(source)
        raise
