"""
Shared, Weak and Unique Handles for sharedref
=============================================

Deterministic ownership of arbitrary Python objects on top of control
blocks. The managed object is destroyed (its destroyer runs) the moment
the last strong handle goes away, independent of when the interpreter
collects the Python object itself.

Features:
- StrongHandle: shared ownership, clone/move/alias/reset
- WeakHandle: non-owning observer with atomic upgrade
- UniqueHandle: exclusive, move-only ownership convertible to shared
- SharedFromThis: managed objects that can hand out handles to themselves
- Thread-safe count updates through compare-and-swap loops

Handles release their reference in ``reset()``, on leaving a ``with``
block, or when the handle object itself is collected.

A cycle of strong handles never reaches zero and leaks; break cycles with
weak handles.
"""

from typing import Any, Callable, Generic, Optional, TypeVar

from .control_block import (
    ControlBlock, DestroyerLike, InplaceControlBlock, as_destroyer,
    create_control_block
)
from .errors import BadWeakHandleError, EmptyHandleError

T = TypeVar('T')

# Marks a weak handle that upgrades to the block's own payload
_OWNER_PAYLOAD = object()


class StrongHandle(Generic[T]):
    """
    Owning handle. While any strong handle to a control block exists the
    payload is alive.

    Similar to C++ shared_ptr: copies share one control block, and an
    aliasing handle can point at a sub-object while keeping the whole
    owner alive.
    """

    __slots__ = ('_block', '_target', '__weakref__')

    def __init__(self):
        """Create an empty handle. Use make_shared to own an object."""
        self._block: Optional[ControlBlock] = None
        self._target: Optional[T] = None

    @classmethod
    def _adopt(cls, block: Optional[ControlBlock], target: Any) -> 'StrongHandle':
        # Takes over one strong reference the caller already accounted for
        handle = cls.__new__(cls)
        handle._block = block
        handle._target = target
        return handle

    @classmethod
    def from_weak(cls, weak: 'WeakHandle') -> 'StrongHandle':
        """Promote ``weak``, raising BadWeakHandleError if it has expired"""
        handle = weak.upgrade()
        if handle is None:
            raise BadWeakHandleError(block=weak._block)
        return handle

    def get(self) -> Optional[T]:
        """Get the target object (None for an empty handle)"""
        return self._target

    @property
    def control_block(self) -> Optional[ControlBlock]:
        return self._block

    def clone(self) -> 'StrongHandle[T]':
        """Return another handle sharing this one's ownership"""
        block = self._block
        if block is None:
            return StrongHandle()
        block.increment_strong()
        return StrongHandle._adopt(block, self._target)

    def move(self) -> 'StrongHandle[T]':
        """Transfer ownership to a new handle and leave this one empty"""
        moved = StrongHandle._adopt(self._block, self._target)
        self._block = None
        self._target = None
        return moved

    def alias(self, target: Any) -> 'StrongHandle':
        """
        Return a handle that shares this handle's ownership but points at
        ``target``, typically a member of the owned object. The owner stays
        alive as long as the alias does.
        """
        block = self._block
        if block is None:
            raise EmptyHandleError("cannot alias an empty handle")
        block.increment_strong()
        return StrongHandle._adopt(block, target)

    def downgrade(self) -> 'WeakHandle[T]':
        """Create a weak observer of this handle's control block"""
        block = self._block
        if block is None:
            return WeakHandle()
        block.increment_weak()
        if self._target is block.payload:
            return WeakHandle._adopt(block)
        return WeakHandle._adopt(block, self._target)

    def reset(self):
        """Release ownership; destroys the payload if this was the last owner"""
        block = self._block
        if block is None:
            return
        self._block = None
        self._target = None
        block.release_strong()

    def use_count(self) -> int:
        """Get the number of strong handles sharing ownership"""
        return self._block.strong_count if self._block is not None else 0

    def unique(self) -> bool:
        """Check if this is the only strong handle"""
        return self.use_count() == 1

    def same_owner(self, other: Any) -> bool:
        """True when both handles share one control block (aliases included)"""
        return (isinstance(other, (StrongHandle, WeakHandle))
                and self._block is not None and self._block is other._block)

    def __bool__(self) -> bool:
        return self._block is not None

    def __eq__(self, other) -> bool:
        if isinstance(other, StrongHandle):
            return self._target is other._target
        return NotImplemented

    def __hash__(self) -> int:
        return id(self._target)

    def __copy__(self) -> 'StrongHandle[T]':
        return self.clone()

    def __enter__(self) -> 'StrongHandle[T]':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.reset()

    def __del__(self):
        if getattr(self, '_block', None) is not None:
            self.reset()

    def __repr__(self) -> str:
        if self._block is None:
            return "StrongHandle(empty)"
        return f"StrongHandle({type(self._target).__name__}, use_count={self.use_count()})"


class WeakHandle(Generic[T]):
    """
    Non-owning observer of a control block.

    Similar to C++ weak_ptr: it never keeps the payload alive and never
    exposes it directly; ``upgrade()`` is the only way to reach it.

    A weak handle taken from an aliasing handle remembers the alias
    target and upgrades to it. The target reference does not own
    anything: once the block expires the target is never handed out.
    """

    __slots__ = ('_block', '_target', '__weakref__')

    def __init__(self):
        """Create an empty (permanently expired) weak handle"""
        self._block: Optional[ControlBlock] = None
        self._target: Any = _OWNER_PAYLOAD

    @classmethod
    def _adopt(cls, block: Optional[ControlBlock],
               target: Any = _OWNER_PAYLOAD) -> 'WeakHandle':
        handle = cls.__new__(cls)
        handle._block = block
        handle._target = target
        return handle

    def upgrade(self) -> Optional[StrongHandle[T]]:
        """Get a StrongHandle to the object if it's still alive"""
        block = self._block
        if block is None:
            return None
        if not block.try_increment_strong_if_nonzero():
            block.record_failed_upgrade()
            return None
        target = self._target
        if target is _OWNER_PAYLOAD:
            target = block.payload
        return StrongHandle._adopt(block, target)

    def lock(self) -> Optional[StrongHandle[T]]:
        """Alias of upgrade()"""
        return self.upgrade()

    def is_expired(self) -> bool:
        """
        Check if the referenced object has been destroyed.

        The answer may be stale as soon as it is returned; only
        ``upgrade()`` gives a usable result.
        """
        return self._block is None or self._block.is_expired

    def use_count(self) -> int:
        """Get the number of strong handles to the observed object"""
        return self._block.strong_count if self._block is not None else 0

    @property
    def control_block(self) -> Optional[ControlBlock]:
        return self._block

    def clone(self) -> 'WeakHandle[T]':
        block = self._block
        if block is None:
            return WeakHandle()
        block.increment_weak()
        return WeakHandle._adopt(block, self._target)

    def reset(self):
        """Stop observing; reclaims the control block if nothing else uses it"""
        block = self._block
        if block is None:
            return
        self._block = None
        self._target = _OWNER_PAYLOAD
        block.release_weak()

    def same_owner(self, other: Any) -> bool:
        return (isinstance(other, (StrongHandle, WeakHandle))
                and self._block is not None and self._block is other._block)

    def __copy__(self) -> 'WeakHandle[T]':
        return self.clone()

    def __enter__(self) -> 'WeakHandle[T]':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.reset()

    def __del__(self):
        if getattr(self, '_block', None) is not None:
            self.reset()

    def __repr__(self) -> str:
        if self._block is None:
            return "WeakHandle(empty)"
        state = "expired" if self.is_expired() else f"use_count={self.use_count()}"
        return f"WeakHandle({state})"


class UniqueHandle(Generic[T]):
    """
    Exclusive owner of one object, similar to C++ unique_ptr.

    Move-only: ``copy.copy`` raises TypeError. Not synchronized; an
    exclusive owner is used by one thread at a time.
    """

    __slots__ = ('_payload', '_destroyer', '_owned')

    def __init__(self, payload: Optional[T] = None, destroyer: DestroyerLike = None):
        self._payload = payload
        self._destroyer = as_destroyer(destroyer)
        self._owned = payload is not None

    def get(self) -> Optional[T]:
        return self._payload

    @property
    def destroyer(self):
        return self._destroyer

    def release(self) -> Optional[T]:
        """Give up ownership without destroying; returns the object"""
        payload = self._payload
        self._payload = None
        self._owned = False
        return payload

    def reset(self, payload: Optional[T] = None):
        """Destroy the current object (if any) and take ownership of ``payload``"""
        old, owned = self._payload, self._owned
        self._payload = payload
        self._owned = payload is not None
        if owned:
            self._destroyer.destroy(old)

    def move(self) -> 'UniqueHandle[T]':
        """Transfer ownership to a new handle and leave this one empty"""
        moved = UniqueHandle(destroyer=self._destroyer)
        moved._payload = self._payload
        moved._owned = self._owned
        self._payload = None
        self._owned = False
        return moved

    def share(self) -> StrongHandle[T]:
        """Convert into shared ownership, keeping the destroyer"""
        if not self._owned:
            return StrongHandle()
        destroyer = self._destroyer
        payload = self.release()
        return make_shared_with_deleter(payload, destroyer)

    def __bool__(self) -> bool:
        return self._owned

    def __copy__(self):
        raise TypeError("UniqueHandle cannot be copied; use move() or share()")

    def __deepcopy__(self, memo):
        raise TypeError("UniqueHandle cannot be copied; use move() or share()")

    def __enter__(self) -> 'UniqueHandle[T]':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.reset()

    def __del__(self):
        if getattr(self, '_owned', False):
            self.reset()

    def __repr__(self) -> str:
        if not self._owned:
            return "UniqueHandle(empty)"
        return f"UniqueHandle({type(self._payload).__name__})"


class SharedFromThis:
    """
    Mixin for objects that need a strong handle to themselves.

    ``make_shared`` / ``make_shared_with_deleter`` record a weak handle in
    the object, so ``shared_from_this()`` shares the existing control
    block instead of creating a second one.
    """

    _weak_this: Optional[WeakHandle] = None

    def shared_from_this(self) -> StrongHandle:
        weak = self._weak_this
        if weak is None:
            raise EmptyHandleError(
                f"{type(self).__name__} is not owned by any StrongHandle")
        return StrongHandle.from_weak(weak)

    def weak_from_this(self) -> WeakHandle:
        weak = self._weak_this
        return weak.clone() if weak is not None else WeakHandle()


def _enable_shared_from_this(handle: StrongHandle):
    payload = handle.get()
    if isinstance(payload, SharedFromThis):
        current = payload._weak_this
        if current is None or current.is_expired():
            payload._weak_this = handle.downgrade()


# Utility functions for creating handles

def make_shared(factory: Callable[..., T], *args, **kwargs) -> StrongHandle[T]:
    """
    Construct ``factory(*args, **kwargs)`` inside a new control block and
    return the first strong handle to it.
    """
    block = InplaceControlBlock(factory, args, kwargs)
    handle = StrongHandle._adopt(block, block.payload)
    _enable_shared_from_this(handle)
    return handle


def make_shared_with_deleter(obj: T, destroyer: DestroyerLike = None) -> StrongHandle[T]:
    """
    Take shared ownership of an already built ``obj``.

    ``destroyer`` (a callable or Destroyer) runs once when the last strong
    handle goes away. Never wrap the same object twice; clone the returned
    handle instead.
    """
    block = create_control_block(obj, destroyer)
    handle = StrongHandle._adopt(block, obj)
    _enable_shared_from_this(handle)
    return handle


def make_unique(factory: Callable[..., T], *args, **kwargs) -> UniqueHandle[T]:
    """Construct ``factory(*args, **kwargs)`` under exclusive ownership"""
    return UniqueHandle(factory(*args, **kwargs))


def make_weak(handle: StrongHandle[T]) -> WeakHandle[T]:
    """Create a WeakHandle from a StrongHandle"""
    return handle.downgrade()
