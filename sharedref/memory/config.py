"""
Configuration for sharedref handle management.

Author: xwest
"""

import threading
from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class HandleConfiguration:
    """Configuration parameters read by control blocks at creation time"""

    # Misuse detection
    debug_mode: bool = False            # Detect double wrapping of one object

    # Monitoring
    track_statistics: bool = True       # Update HandleStatistics counters
    log_lifecycle: bool = False         # DEBUG records for create/destroy/reclaim


_config_lock = threading.Lock()
_global_config: Optional[HandleConfiguration] = None


def get_configuration() -> HandleConfiguration:
    """Get the global handle configuration"""
    global _global_config
    if _global_config is None:
        with _config_lock:
            if _global_config is None:
                _global_config = HandleConfiguration()
    return _global_config


def configure(**overrides) -> HandleConfiguration:
    """
    Replace fields of the global configuration.

    Blocks that already exist keep the configuration they were created
    with; only blocks created afterwards see the change.
    """
    global _global_config
    with _config_lock:
        base = _global_config or HandleConfiguration()
        _global_config = replace(base, **overrides)
        return _global_config


def reset_configuration() -> HandleConfiguration:
    """Restore the default configuration"""
    global _global_config
    with _config_lock:
        _global_config = HandleConfiguration()
        return _global_config
