import time
from collections import defaultdict
from typing import Callable, Optional

from fastapi import Request

from .config import get_config
from .errors import WorkerError

# { "bucket:client": [timestamp1, timestamp2, ...] }
request_usage = defaultdict(list)
_last_sweep = 0.0


def get_client_key(request: Request, *, trust_proxy: bool = True) -> str:
    # One proxy hop in front of the worker (hosting load balancer). It appends the
    # address it saw, so only the last entry is trustworthy.
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for") or ""
        last = forwarded.split(",")[-1].strip()
        if last:
            return last
    client = request.client
    return client.host if client else "unknown"


def _sweep_expired(current_time: float, window_seconds: int) -> None:
    """Drop clients whose newest request has left the window."""
    global _last_sweep
    if current_time - _last_sweep < window_seconds:
        return
    _last_sweep = current_time
    for key in [k for k, stamps in request_usage.items() if not stamps or current_time - max(stamps) >= window_seconds]:
        del request_usage[key]


def check_rate_limit(key: str, limit: int, window_seconds: int, now: Optional[float] = None) -> None:
    """Sliding-window limiter. Raises a 429 `WorkerError` with a Retry-After header when exhausted."""
    current_time = time.time() if now is None else float(now)

    _sweep_expired(current_time, window_seconds)

    recent = [t for t in request_usage.get(key, ()) if current_time - t < window_seconds]
    request_usage[key] = recent

    if len(recent) >= limit:
        oldest_timestamp = min(recent)
        retry_after = max(1, int(window_seconds - (current_time - oldest_timestamp)))
        raise WorkerError(
            "Too many requests, please try again later.",
            status_code=429,
            headers={"Retry-After": str(retry_after)},
        )

    recent.append(current_time)


def rate_limiter(bucket: str, limit_key: str) -> Callable:
    """Build a FastAPI dependency enforcing `config[limit_key]` requests per window for `bucket`."""

    async def _dependency(request: Request) -> None:
        config = get_config()
        client = get_client_key(request, trust_proxy=bool(config.get("trust_proxy", True)))
        check_rate_limit(
            f"{bucket}:{client}",
            int(config[limit_key]),
            int(config["rate_limit_window_seconds"]),
        )

    return _dependency
