import threading
from typing import Iterable, Optional

from loguru import logger

from .config import Constants, mask_key
from .error_log import ErrorLog
from .errors import DuplicateKeyError
from .keys import KeyRegistry
from .stats import StatsAggregator


class PoolState:
    """
    In-memory state shared by every request.

    The registry, the statistics and the error log all use one re-entrant
    lock, so a request outcome (counters plus log entry) is applied as a
    single unit and readers never observe half of it. Nothing is awaited
    while the lock is held.
    """

    def __init__(self, error_log_capacity: int = Constants.ERROR_LOG_CAPACITY):
        self._lock = threading.RLock()
        self.registry = KeyRegistry(self._lock)
        self.stats = StatsAggregator(self.registry, self._lock)
        self.error_log = ErrorLog(error_log_capacity, self._lock)

    def seed_keys(self, keys: Iterable[str]) -> int:
        """Register keys from configuration, skipping duplicates."""
        added = 0
        for key in keys:
            try:
                self.registry.add(key)
                added += 1
            except DuplicateKeyError:
                logger.warning(f"Skipping duplicate configured key {mask_key(key)}")
        return added

    def report_outcome(
        self,
        key_id: str,
        success: bool,
        message: Optional[str] = None,
        request_path: str = "",
        response_body: Optional[str] = None,
    ) -> None:
        """Record one proxied request; failures also land in the error log."""
        with self._lock:
            self.stats.record(key_id, success)
            if not success:
                self.error_log.append(key_id, message or "Unknown error", request_path, response_body)
