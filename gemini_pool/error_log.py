import itertools
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Tuple

from .config import Constants
from .keys import isoformat, utcnow


@dataclass(frozen=True)
class ErrorLogEntry:
    """A single failed request, immutable once logged."""
    id: str
    key_id: str
    message: str
    request_path: str
    response_body: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": isoformat(self.timestamp),
            "apiKey": self.key_id,
            "error": self.message,
            "request": self.request_path,
            "response": self.response_body,
        }


class ErrorLog:
    """Bounded failure history, newest entry first."""

    def __init__(self, capacity: int = Constants.ERROR_LOG_CAPACITY, lock: Optional[threading.RLock] = None):
        if capacity < 1:
            raise ValueError("Error log capacity must be positive")
        self.capacity = capacity
        # appendleft on a full deque drops the rightmost (oldest) entry
        self._entries: Deque[ErrorLogEntry] = deque(maxlen=capacity)
        self._sequence = itertools.count(1)
        self._lock = lock or threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(
        self,
        key_id: str,
        message: str,
        request_path: str,
        response_body: Optional[str] = None,
    ) -> ErrorLogEntry:
        with self._lock:
            entry = ErrorLogEntry(
                id=f"{int(time.time() * 1000)}-{next(self._sequence)}",
                key_id=key_id,
                message=message,
                request_path=request_path,
                response_body=response_body,
            )
            self._entries.appendleft(entry)
            return entry

    def page(self, page_number: int, page_size: int) -> Tuple[List[ErrorLogEntry], int]:
        """Return one page of entries plus the total entry count."""
        if page_number < 1 or page_size < 1:
            raise ValueError("page_number and page_size must be positive")

        start = (page_number - 1) * page_size
        with self._lock:
            total = len(self._entries)
            entries = list(itertools.islice(self._entries, start, start + page_size))
        return entries, total

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
