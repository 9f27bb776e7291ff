import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger

from .config import mask_key
from .keys import KeyRegistry, isoformat, utcnow


@dataclass
class GlobalStats:
    """Aggregate request counters since the last reset."""
    total_requests: int = 0
    total_errors: int = 0
    success_rate: float = 100.0
    last_reset_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "totalErrors": self.total_errors,
            "successRate": self.success_rate,
            "lastReset": isoformat(self.last_reset_at),
        }


def calculate_success_rate(total_requests: int, total_errors: int) -> float:
    """Percentage of successful requests; 100 when nothing was recorded."""
    if total_requests == 0:
        return 100.0
    return (total_requests - total_errors) / total_requests * 100


class StatsAggregator:
    """Keeps per-key and global counters in step."""

    def __init__(self, registry: KeyRegistry, lock: Optional[threading.RLock] = None):
        self.registry = registry
        self._stats = GlobalStats()
        self._lock = lock or threading.RLock()

    def record(self, key: str, success: bool) -> None:
        """Count one request outcome against a key and the global totals."""
        with self._lock:
            if not self.registry.record_use(key, success, utcnow()):
                logger.warning(f"API key {mask_key(key)} was removed before its outcome was recorded")
            self._stats.total_requests += 1
            if not success:
                self._stats.total_errors += 1
            self._stats.success_rate = calculate_success_rate(
                self._stats.total_requests, self._stats.total_errors
            )

    def reset(self) -> None:
        """Zero every counter without touching key identity or enablement."""
        with self._lock:
            self._stats = GlobalStats()
            self.registry.reset_counters()
        logger.info("Statistics have been reset")

    def snapshot(self) -> GlobalStats:
        with self._lock:
            return replace(self._stats)
