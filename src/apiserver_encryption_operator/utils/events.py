"""Utilities for emitting Kubernetes events on the operator object."""

from __future__ import annotations

import logging
from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_CONFIG_APPLIED,
    EVENT_REASON_KEY_CREATE_FAILED,
    EVENT_REASON_KEY_CREATED,
    EVENT_REASON_KEY_OBSERVED,
    EVENT_REASON_KEY_PRUNED,
    EVENT_REASON_MIGRATION_FAILED,
    EVENT_REASON_MIGRATION_STARTED,
    EVENT_REASON_MIGRATION_SUCCEEDED,
    EVENT_REASON_SYNC_FAILED,
)
from .errors import sanitize_error_message

logger = logging.getLogger(__name__)


def emit_event(
    body: dict[str, Any] | None,
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Events are best effort: without an object to attach them to, or when posting
    fails, they are only logged.

    Args:
        body: Body of the object the event is about
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    message = sanitize_error_message(message)
    if body is None:
        logger.debug(f"no object to attach event {reason} to: {message}")
        return
    try:
        kopf.event(
            body,
            reason=reason,
            message=message,
            type=type_,
        )
    except Exception as e:
        logger.warning(f"Failed to emit event {reason}: {e}")


def emit_key_created(body: dict[str, Any] | None, key_name: str, reasons: str) -> None:
    """Emit key created event."""
    emit_event(body, EVENT_REASON_KEY_CREATED, f"Secret {key_name} successfully created: {reasons}")


def emit_key_create_failed(body: dict[str, Any] | None, key_name: str, message: str) -> None:
    """Emit key creation failed event."""
    emit_event(body, EVENT_REASON_KEY_CREATE_FAILED, f"Secret {key_name} failed to be created: {message}", type_="Warning")


def emit_key_pruned(body: dict[str, Any] | None, key_name: str) -> None:
    emit_event(body, EVENT_REASON_KEY_PRUNED, f"Secret {key_name} deleted")


def emit_key_observed(body: dict[str, Any] | None, key_name: str, annotation: str) -> None:
    emit_event(body, EVENT_REASON_KEY_OBSERVED, f"Secret {key_name} observed by all API servers as {annotation} key")


def emit_config_applied(body: dict[str, Any] | None, config_name: str) -> None:
    emit_event(body, EVENT_REASON_CONFIG_APPLIED, f"Encryption config secret {config_name} updated")


def emit_migration_started(body: dict[str, Any] | None, resource: str, key_name: str) -> None:
    emit_event(body, EVENT_REASON_MIGRATION_STARTED, f"Migration of {resource} to key {key_name} started")


def emit_migration_succeeded(body: dict[str, Any] | None, resource: str, key_name: str) -> None:
    emit_event(body, EVENT_REASON_MIGRATION_SUCCEEDED, f"Migration of {resource} to key {key_name} succeeded")


def emit_migration_failed(body: dict[str, Any] | None, resource: str, message: str) -> None:
    emit_event(body, EVENT_REASON_MIGRATION_FAILED, f"Migration of {resource} failed: {message}", type_="Warning")


def emit_sync_failed(body: dict[str, Any] | None, controller: str, message: str) -> None:
    """Emit sync failed event."""
    emit_event(body, EVENT_REASON_SYNC_FAILED, f"{controller} sync failed: {message}", type_="Warning")
