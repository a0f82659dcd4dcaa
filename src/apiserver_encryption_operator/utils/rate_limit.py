"""Rate limiting utilities for Kubernetes API calls."""

from __future__ import annotations

import os
import threading
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from kubernetes.client.exceptions import ApiException

from .. import metrics

_F = TypeVar("_F", bound=Callable[..., Any])

# Rate limit configuration
_K8S_RATE_LIMIT_PER_SECOND = float(os.getenv("K8S_RATE_LIMIT_PER_SECOND", "10.0"))

# Track last call time; the controllers share one client
_k8s_last_call_time: float = 0.0
_k8s_lock = threading.Lock()


def rate_limit_k8s(func: _F) -> _F:
    """Decorator to rate limit Kubernetes API calls.

    Spaces calls of all controllers evenly so they do not overwhelm the
    Kubernetes API server.
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        global _k8s_last_call_time
        min_interval = 1.0 / _K8S_RATE_LIMIT_PER_SECOND
        with _k8s_lock:
            time_since_last_call = time.time() - _k8s_last_call_time
            if time_since_last_call < min_interval:
                time.sleep(min_interval - time_since_last_call)
            _k8s_last_call_time = time.time()
        return func(*args, **kwargs)

    return wrapper  # type: ignore


def is_rate_limit_error(e: BaseException) -> bool:
    # Kubernetes API rate limit errors typically return 429 or 503
    return isinstance(e, ApiException) and (
        e.status == 429 or (e.status == 503 and "rate limit" in str(e).lower())
    )


def handle_rate_limit_error(e: BaseException, attempt: int = 0, max_retries: int = 3) -> bool:
    """Check if an API exception is a rate limit error and back off.

    Args:
        e: Exception raised by the API call
        attempt: Number of retries already made for this call
        max_retries: Maximum number of retries

    Returns:
        True if the call should be retried, False otherwise
    """
    if not is_rate_limit_error(e):
        return False
    metrics.rate_limit_hits_total.inc()
    if attempt >= max_retries:
        return False
    # Exponential backoff: 1s, 2s, 4s
    time.sleep(2 ** attempt)
    return True


def call_k8s(operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call the Kubernetes API with rate limiting, 429 back-off and metrics.

    Args:
        operation: Operation name for metrics
        func: API client method
        *args: Positional arguments for ``func``
        **kwargs: Keyword arguments for ``func``

    Returns:
        Result of the API call
    """
    attempt = 0
    while True:
        start_time = time.time()
        try:
            result = rate_limit_k8s(func)(*args, **kwargs)
            metrics.api_call_total.labels(operation=operation, result="success").inc()
            return result
        except Exception as e:
            metrics.api_call_total.labels(operation=operation, result="error").inc()
            if handle_rate_limit_error(e, attempt):
                attempt += 1
                continue
            raise
        finally:
            duration = time.time() - start_time
            metrics.api_call_duration_seconds.labels(operation=operation).observe(duration)
