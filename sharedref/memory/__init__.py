"""
sharedref Memory Management System

Reference-counted shared handles, weak observers and an expiring cache
for deterministic ownership of Python objects.

Author: xwest
"""

from .atomics import AtomicCounter
from .config import HandleConfiguration, get_configuration, configure, reset_configuration
from .errors import (
    HandleError, RefCountError, BadWeakHandleError, EmptyHandleError,
    DoubleOwnershipError
)
from .monitor import (
    HandleStats, HandleStatistics, SystemMonitor, get_statistics,
    get_system_monitor, get_handle_stats
)
from .control_block import (
    ControlBlock, InplaceControlBlock, PointerControlBlock, Destroyer,
    DefaultDestroyer, CallableDestroyer, OwnershipRegistry,
    create_control_block, get_ownership_registry
)
from .ref_counting import (
    StrongHandle, WeakHandle, UniqueHandle, SharedFromThis,
    make_shared, make_shared_with_deleter, make_unique, make_weak
)
from .expiring_cache import ExpiringCache, CacheStore, DictStore

__all__ = [
    # Atomics and configuration
    'AtomicCounter', 'HandleConfiguration', 'get_configuration', 'configure',
    'reset_configuration',

    # Errors
    'HandleError', 'RefCountError', 'BadWeakHandleError', 'EmptyHandleError',
    'DoubleOwnershipError',

    # Monitoring
    'HandleStats', 'HandleStatistics', 'SystemMonitor', 'get_statistics',
    'get_system_monitor', 'get_handle_stats',

    # Control blocks
    'ControlBlock', 'InplaceControlBlock', 'PointerControlBlock', 'Destroyer',
    'DefaultDestroyer', 'CallableDestroyer', 'OwnershipRegistry',
    'create_control_block', 'get_ownership_registry',

    # Handles
    'StrongHandle', 'WeakHandle', 'UniqueHandle', 'SharedFromThis',
    'make_shared', 'make_shared_with_deleter', 'make_unique', 'make_weak',

    # Cache
    'ExpiringCache', 'CacheStore', 'DictStore'
]
