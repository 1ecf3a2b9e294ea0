"""
Handle Lifecycle Monitoring for sharedref

Counts control block lifecycle events (creation, payload destruction,
block reclamation, failed upgrades) and samples process memory through
psutil so leaks of strong handles show up as a growing ``live_blocks``
figure next to the process RSS.
"""

import threading
import time
import psutil
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict


@dataclass
class HandleStats:
    """Snapshot of control block lifecycle counters"""
    blocks_created: int = 0
    inplace_blocks: int = 0
    pointer_blocks: int = 0
    payloads_destroyed: int = 0
    blocks_reclaimed: int = 0
    failed_upgrades: int = 0

    @property
    def live_blocks(self) -> int:
        return self.blocks_created - self.blocks_reclaimed

    @property
    def live_payloads(self) -> int:
        return self.blocks_created - self.payloads_destroyed


class HandleStatistics:
    """Thread-safe lifecycle counters shared by all control blocks"""

    def __init__(self):
        self._stats = HandleStats()
        self._lock = threading.Lock()
        self._started_at = time.time()

    def record_block_created(self, inplace: bool):
        with self._lock:
            self._stats.blocks_created += 1
            if inplace:
                self._stats.inplace_blocks += 1
            else:
                self._stats.pointer_blocks += 1

    def record_payload_destroyed(self):
        with self._lock:
            self._stats.payloads_destroyed += 1

    def record_block_reclaimed(self):
        with self._lock:
            self._stats.blocks_reclaimed += 1

    def record_failed_upgrade(self):
        with self._lock:
            self._stats.failed_upgrades += 1

    def snapshot(self) -> HandleStats:
        """Return a copy of the current counters"""
        with self._lock:
            return HandleStats(**asdict(self._stats))

    def reset(self):
        with self._lock:
            self._stats = HandleStats()
            self._started_at = time.time()

    def get_statistics(self) -> Dict[str, Any]:
        stats = self.snapshot()
        return {
            **asdict(stats),
            'live_blocks': stats.live_blocks,
            'live_payloads': stats.live_payloads,
            'uptime_seconds': time.time() - self._started_at,
        }


class SystemMonitor:
    """Process and system memory figures from psutil"""

    def __init__(self):
        self.process = psutil.Process()

    def get_memory_pressure(self) -> float:
        """Get system memory pressure (0.0 to 1.0)"""
        return psutil.virtual_memory().percent / 100.0

    def get_system_statistics(self) -> Dict[str, Any]:
        memory = psutil.virtual_memory()
        process_memory = self.process.memory_info()

        return {
            'system_memory_total': memory.total,
            'system_memory_available': memory.available,
            'system_memory_percent': memory.percent,
            'process_memory_rss': process_memory.rss,
            'process_memory_vms': process_memory.vms,
        }


# Global monitoring instances
_global_statistics: Optional[HandleStatistics] = None
_global_monitor: Optional[SystemMonitor] = None
_instance_lock = threading.Lock()


def get_statistics() -> HandleStatistics:
    """Get the global lifecycle counters"""
    global _global_statistics
    if _global_statistics is None:
        with _instance_lock:
            if _global_statistics is None:
                _global_statistics = HandleStatistics()
    return _global_statistics


def get_system_monitor() -> SystemMonitor:
    global _global_monitor
    if _global_monitor is None:
        with _instance_lock:
            if _global_monitor is None:
                _global_monitor = SystemMonitor()
    return _global_monitor


def get_handle_stats() -> Dict[str, Any]:
    """Lifecycle counters merged with a process memory sample"""
    return {
        **get_statistics().get_statistics(),
        **get_system_monitor().get_system_statistics(),
    }
