from __future__ import annotations

import time
import threading


class RateLimiter:
    """Spaces out API calls to stay under a requests-per-minute budget."""

    def __init__(self, requests_per_minute: int = 60):
        self.interval = 60.0 / requests_per_minute if requests_per_minute > 0 else 0.0
        self.last_request = 0.0
        self._lock = threading.Lock()

    def wait_if_needed(self):
        """Block until the next request is allowed."""
        with self._lock:
            elapsed = time.monotonic() - self.last_request
            if elapsed < self.interval:
                time.sleep(self.interval - elapsed)
            self.last_request = time.monotonic()
