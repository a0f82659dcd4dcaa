"""Utility functions for the encryption operator."""

from .cache import (
    get_cached_object,
    invalidate_cache,
    make_cache_key,
    set_cached_object,
)
from .conditions import (
    set_degraded_condition,
    set_progressing_condition,
    update_condition,
)
from .context import (
    get_context_dict,
    get_correlation_id,
    propagate_trace_context,
    with_correlation_id,
)
from .events import emit_event
from .rate_limit import call_k8s, handle_rate_limit_error, rate_limit_k8s
from .secrets import apply_secret, delete_secret, list_secrets, remove_finalizer
from .workqueue import WorkQueue

__all__ = [
    "update_condition",
    "set_degraded_condition",
    "set_progressing_condition",
    "emit_event",
    "list_secrets",
    "apply_secret",
    "delete_secret",
    "remove_finalizer",
    "get_cached_object",
    "set_cached_object",
    "invalidate_cache",
    "make_cache_key",
    "rate_limit_k8s",
    "call_k8s",
    "handle_rate_limit_error",
    "get_correlation_id",
    "with_correlation_id",
    "get_context_dict",
    "propagate_trace_context",
    "WorkQueue",
]
