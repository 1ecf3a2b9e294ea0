"""
sharedref Package

Shared-ownership handles for Python: reference-counted strong handles
with deterministic destruction, weak observers with atomic upgrade, and a
cache of objects that expire once nobody else needs them.

Architecture:
    sharedref/
    └── memory/
        ├── atomics.py         # Compare-and-swap counter word
        ├── control_block.py   # Counts, payload and destroyer
        ├── ref_counting.py    # Strong, weak and unique handles
        ├── expiring_cache.py  # Weak-handle keyed cache
        ├── config.py          # HandleConfiguration
        ├── monitor.py         # Lifecycle counters and psutil sampling
        └── errors.py          # Exception taxonomy

Author: xwest
License: MIT
"""

__version__ = "0.1.0-alpha"
__author__ = "xwest"
__email__ = "dev@neuralscript.org"
__license__ = "MIT"

from .memory import (
    StrongHandle, WeakHandle, UniqueHandle, SharedFromThis, ExpiringCache,
    make_shared, make_shared_with_deleter, make_unique, make_weak,
    HandleConfiguration, configure, get_handle_stats
)

__all__ = [
    # Handles
    "StrongHandle",
    "WeakHandle",
    "UniqueHandle",
    "SharedFromThis",
    "ExpiringCache",

    # Constructors
    "make_shared",
    "make_shared_with_deleter",
    "make_unique",
    "make_weak",

    # Configuration and monitoring
    "HandleConfiguration",
    "configure",
    "get_handle_stats",

    # Version info
    "__version__",
]
