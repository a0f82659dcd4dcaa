"""Utilities for managing operator conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"


def degraded_condition_type(controller: str) -> str:
    """E.g. ``EncryptionKeyControllerDegraded``."""
    return f"{controller}Degraded"


def progressing_condition_type(controller: str) -> str:
    return f"{controller}Progressing"


def find_condition(conditions: list[dict[str, Any]], condition_type: str) -> dict[str, Any] | None:
    for cond in conditions:
        if cond.get("type") == condition_type:
            return cond
    return None


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message

    Returns:
        Updated list of conditions
    """
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    existing = find_condition(conditions, condition_type)

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }

    if existing is not None:
        # Only update lastTransitionTime if status changed
        if existing.get("status") == status:
            new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
        conditions[conditions.index(existing)] = new_condition
    else:
        conditions.append(new_condition)

    return conditions


def set_degraded_condition(
    conditions: list[dict[str, Any]],
    controller: str,
    message: str | None,
) -> list[dict[str, Any]]:
    """Set the Degraded condition of ``controller``; a None message clears it."""
    if message is None:
        return update_condition(conditions, degraded_condition_type(controller), CONDITION_FALSE, "", "")
    return update_condition(
        conditions,
        degraded_condition_type(controller),
        CONDITION_TRUE,
        "Error",
        message,
    )


def set_progressing_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    progressing: bool,
    reason: str = "",
    message: str = "",
) -> list[dict[str, Any]]:
    """Set a Progressing condition."""
    return update_condition(
        conditions,
        condition_type,
        CONDITION_TRUE if progressing else CONDITION_FALSE,
        reason,
        message,
    )


def conditions_equal(a: list[dict[str, Any]], b: list[dict[str, Any]]) -> bool:
    """Compare condition lists ignoring transition times."""
    def strip(conditions: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return sorted(
            ({k: v for k, v in cond.items() if k != "lastTransitionTime"} for cond in conditions),
            key=lambda cond: cond.get("type", ""),
        )

    return strip(a) == strip(b)
