import time
from threading import Lock
from typing import Any, Dict, Optional


class RateLimiter:
    """Thread-safe limiter driven by X-RateLimit-* and Retry-After headers.

    ``acquire`` blocks until the earliest time the API allows another call;
    ``update`` pushes that time forward from each response.
    """

    def __init__(self, cooldown_seconds: float = 60.0) -> None:
        self._lock = Lock()
        self._next_ts = 0.0
        self.cooldown_seconds = cooldown_seconds
        self.last_remaining: Optional[int] = None
        self.last_reset_epoch: Optional[float] = None
        self.last_wait: float = 0.0

    def acquire(self) -> None:
        while True:
            with self._lock:
                wait = self._next_ts - time.time()
            if wait <= 0:
                return
            time.sleep(min(wait, 2.0))

    def update(self, headers: Dict[str, Any], errors: Optional[Any] = None) -> None:
        remaining = _header(headers, "X-RateLimit-Remaining")
        reset = _header(headers, "X-RateLimit-Reset")
        retry_after = _header(headers, "Retry-After")
        with self._lock:
            now = time.time()
            if retry_after:
                delay = _to_float(retry_after)
                if delay is not None:
                    self._next_ts = max(self._next_ts, now + delay)
            rem = _to_int(remaining)
            if rem is not None:
                self.last_remaining = rem
                if rem <= 1:
                    reset_ts = _to_float(reset)
                    if reset_ts is not None and reset_ts > now:
                        self._next_ts = max(self._next_ts, reset_ts)
                        self.last_reset_epoch = reset_ts
                    else:
                        self._next_ts = max(self._next_ts, now + self.cooldown_seconds)
            if reset and self.last_reset_epoch is None:
                self.last_reset_epoch = _to_float(reset)
            if errors and looks_like_rate_limit(errors):
                self._next_ts = max(self._next_ts, now + self.cooldown_seconds)
            self.last_wait = max(0.0, self._next_ts - now)


def _header(headers: Dict[str, Any], name: str) -> Optional[Any]:
    return headers.get(name) or headers.get(name.lower())


def _to_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if result != result else result


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def looks_like_rate_limit(errors: Any) -> bool:
    if not errors:
        return False
    for err in errors:
        message = str(err.get("message", "")).lower() if isinstance(err, dict) else str(err).lower()
        if "rate limit" in message or "too many requests" in message:
            return True
    return False
