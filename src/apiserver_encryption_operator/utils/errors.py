"""Error types and sanitization utilities for the encryption controllers."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from typing import Any

from kubernetes.client.exceptions import ApiException


class EncryptionError(Exception):
    """Base class for errors raised by the encryption controllers."""


class KeyStateInvalidError(EncryptionError):
    """A key secret does not match what the key controller would have created.

    Guessing how to repair such a key could lose data, so this is never retried
    automatically and requires manual intervention.
    """


class AggregateError(EncryptionError):
    """Several independent errors reported as one."""

    def __init__(self, errors: Iterable[Exception]) -> None:
        self.errors: list[Exception] = list(errors)
        super().__init__(self._format())

    def _format(self) -> str:
        if len(self.errors) == 1:
            return str(self.errors[0])
        return "[" + ", ".join(str(e) for e in self.errors) + "]"

    def filter_out(self, predicate: Callable[[Exception], bool]) -> AggregateError | None:
        """Return the errors not matching ``predicate``, or None if none are left."""
        return new_aggregate(e for e in self.errors if not predicate(e))


def new_aggregate(errors: Iterable[Exception | None]) -> AggregateError | None:
    """Aggregate the given errors, ignoring None. Returns None if there are no errors."""
    remaining = [e for e in errors if e is not None]
    if not remaining:
        return None
    return AggregateError(remaining)


def _status(error: BaseException) -> int | None:
    if isinstance(error, ApiException):
        return error.status
    return None


def is_not_found(error: BaseException) -> bool:
    return _status(error) == 404


def is_conflict(error: BaseException) -> bool:
    return _status(error) == 409


def is_already_exists(error: BaseException) -> bool:
    # creates report existing objects as a conflict
    if _status(error) != 409:
        return False
    body = getattr(error, "body", None)
    return not body or "AlreadyExists" in str(body)


def is_not_found_or_conflict(error: BaseException) -> bool:
    return is_not_found(error) or is_conflict(error)


# Patterns that might expose key material
SENSITIVE_PATTERNS = [
    r"secret[\"']?[:=\s]+[\"']?([A-Za-z0-9/+=]{16,})",
    r"encryption\.apiserver\.operator\.openshift\.io-key[\"']?[:=\s]+[\"']?([A-Za-z0-9/+=]+)",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "secret",
    "key_material",
    "material",
    "token",
    "password",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove key material.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(
            pattern,
            lambda m: m.group(0).replace(m.group(1), "[REDACTED]"),
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: BaseException) -> str:
    """Sanitize exception message.

    Args:
        error: Exception object

    Returns:
        Sanitized error message
    """
    if isinstance(error, ApiException):
        # the body may echo the whole object including its data
        return sanitize_error_message(f"({error.status}) {error.reason}")
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    if sensitive_keys is None:
        sensitive_keys = set()

    all_sensitive = SENSITIVE_FIELDS | sensitive_keys
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in all_sensitive):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value

    return sanitized
