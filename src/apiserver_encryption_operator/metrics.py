"""Prometheus metrics for the encryption operator."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "encryption_operator_reconcile_total",
    "Total number of reconciliations",
    ["controller", "result"],
)

reconcile_duration_seconds = Histogram(
    "encryption_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["controller"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 60.0, 300.0],
)

# Key lifecycle metrics
keys_created_total = Counter(
    "encryption_operator_keys_created_total",
    "Total number of encryption keys created",
    ["resource"],
)

keys_pruned_total = Counter(
    "encryption_operator_keys_pruned_total",
    "Total number of encryption keys deleted by the prune controller",
)

key_annotations_total = Counter(
    "encryption_operator_key_annotations_total",
    "Total number of lifecycle annotations stamped on encryption keys",
    ["annotation"],
)

# Storage migration metrics
migrated_objects_total = Counter(
    "encryption_operator_migrated_objects_total",
    "Total number of objects rewritten during storage migration",
    ["resource", "result"],
)

storage_migrations_total = Counter(
    "encryption_operator_storage_migrations_total",
    "Total number of storage migrations per resource",
    ["resource", "result"],
)

# API call metrics
api_call_total = Counter(
    "encryption_operator_api_call_total",
    "Total number of Kubernetes API calls",
    ["operation", "result"],
)

api_call_duration_seconds = Histogram(
    "encryption_operator_api_call_duration_seconds",
    "Duration of Kubernetes API calls in seconds",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

error_total = Counter(
    "encryption_operator_error_total",
    "Total number of reconciliation errors",
    ["controller", "error_type"],
)

rate_limit_hits_total = Counter(
    "encryption_operator_rate_limit_hits_total",
    "Total number of Kubernetes API rate limit hits",
)
