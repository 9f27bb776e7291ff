import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from .config import mask_key
from .errors import DuplicateKeyError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp the way the admin API exposes it."""
    return value.isoformat() if value else None


# ===========================
# API Key Management
# ===========================

@dataclass
class KeyRecord:
    """Represents an API key in the pool with its usage counters."""
    key: str
    name: str
    enabled: bool = True
    request_count: int = 0
    error_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize key record to the admin API shape."""
        return {
            "key": self.key,
            "name": self.name,
            "enabled": self.enabled,
            "requests": self.request_count,
            "errors": self.error_count,
            "lastUsed": isoformat(self.last_used_at),
            "created": isoformat(self.created_at),
        }


class KeyRegistry:
    """Owns the pool of key records, in insertion order."""

    def __init__(self, lock: Optional[threading.RLock] = None):
        self._records: Dict[str, KeyRecord] = {}
        self._lock = lock or threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def add(self, key: str, name: Optional[str] = None) -> KeyRecord:
        """Register a new enabled key with zeroed counters."""
        if not key or not key.strip():
            raise ValueError("API key must be a non-empty string")

        with self._lock:
            if key in self._records:
                raise DuplicateKeyError(key)
            record = KeyRecord(key=key, name=name or f"Key {len(self._records) + 1}")
            self._records[key] = record
            logger.info(f"Added API key {mask_key(key)} as '{record.name}'")
            return replace(record)

    def remove(self, key: str) -> bool:
        """Remove a key. Returns False if it was not registered."""
        with self._lock:
            record = self._records.pop(key, None)
        if record is None:
            logger.warning(f"Cannot remove unknown API key {mask_key(key)}")
            return False
        logger.info(f"Removed API key {mask_key(key)}")
        return True

    def set_enabled(self, key: str, enabled: bool) -> bool:
        """Enable or disable a key. Returns False if it was not registered."""
        with self._lock:
            record = self._records.get(key)
            if record is not None:
                record.enabled = enabled
        if record is None:
            logger.warning(f"Cannot change status of unknown API key {mask_key(key)}")
            return False
        logger.info(f"API key {mask_key(key)} is now {'enabled' if enabled else 'disabled'}")
        return True

    def get(self, key: str) -> Optional[KeyRecord]:
        with self._lock:
            record = self._records.get(key)
            return replace(record) if record else None

    def list(self) -> List[KeyRecord]:
        with self._lock:
            return [replace(record) for record in self._records.values()]

    def enabled(self) -> List[KeyRecord]:
        """Snapshot of the keys currently eligible for selection."""
        with self._lock:
            return [replace(record) for record in self._records.values() if record.enabled]

    def record_use(self, key: str, success: bool, when: datetime) -> bool:
        """Bump a key's counters. Returns False if the key is gone."""
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return False
            record.request_count += 1
            if not success:
                record.error_count += 1
            record.last_used_at = when
            return True

    def reset_counters(self) -> None:
        with self._lock:
            for record in self._records.values():
                record.request_count = 0
                record.error_count = 0
                record.last_used_at = None
