from __future__ import annotations

import threading
import time
from collections import deque

from fastapi import HTTPException, Request

from registry import config

_WINDOW_SECONDS = 60.0

_lock = threading.Lock()
_hits: dict[str, deque[float]] = {}


def reset() -> None:
    with _lock:
        _hits.clear()


def check_verify_rate_limit(request: Request) -> None:
    """FastAPI dependency that limits public verification calls per client IP."""
    limit = config.settings.verify_rate_limit_per_minute
    if limit <= 0:
        return

    ip = request.client.host if request.client else "unknown"
    now = time.monotonic()

    with _lock:
        window = _hits.setdefault(ip, deque())
        while window and window[0] <= now - _WINDOW_SECONDS:
            window.popleft()
        if len(window) >= limit:
            raise HTTPException(
                status_code=429,
                detail="Verification rate limit exceeded. Try again later.",
                headers={"Retry-After": str(int(_WINDOW_SECONDS))},
            )
        window.append(now)
        # Purge idle clients.
        if len(_hits) > 10_000:
            for stale in [k for k, v in _hits.items() if not v or v[-1] <= now - _WINDOW_SECONDS]:
                del _hits[stale]
