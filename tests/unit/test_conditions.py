"""Unit tests for condition utilities."""

from __future__ import annotations

from apiserver_encryption_operator.utils.conditions import (
    conditions_equal,
    degraded_condition_type,
    find_condition,
    progressing_condition_type,
    set_degraded_condition,
    set_progressing_condition,
    update_condition,
)


class TestConditions:
    """Test condition utilities."""

    def test_update_condition_new(self) -> None:
        """Test adding a new condition."""
        conditions = []
        result = update_condition(conditions, "TestCondition", "True", "TestReason", "Test message")

        assert len(result) == 1
        assert result[0]["type"] == "TestCondition"
        assert result[0]["status"] == "True"
        assert result[0]["reason"] == "TestReason"
        assert result[0]["message"] == "Test message"
        assert "lastTransitionTime" in result[0]

    def test_update_condition_existing(self) -> None:
        """Test updating an existing condition."""
        conditions = [
            {
                "type": "TestCondition",
                "status": "False",
                "reason": "OldReason",
                "message": "Old message",
                "lastTransitionTime": "2023-01-01T00:00:00Z",
            }
        ]

        result = update_condition(conditions, "TestCondition", "True", "NewReason", "New message")

        assert len(result) == 1
        assert result[0]["status"] == "True"
        assert result[0]["reason"] == "NewReason"
        assert result[0]["message"] == "New message"
        assert result[0]["lastTransitionTime"] != "2023-01-01T00:00:00Z"

    def test_update_condition_same_status_keeps_transition_time(self) -> None:
        """Test that lastTransitionTime only moves when the status changes."""
        conditions = [
            {
                "type": "TestCondition",
                "status": "True",
                "reason": "OldReason",
                "message": "Old message",
                "lastTransitionTime": "2023-01-01T00:00:00Z",
            }
        ]

        result = update_condition(conditions, "TestCondition", "True", "NewReason", "New message")

        assert result[0]["lastTransitionTime"] == "2023-01-01T00:00:00Z"
        assert result[0]["message"] == "New message"

    def test_update_condition_keeps_other_conditions(self) -> None:
        """Test that only the matching condition is replaced in place."""
        conditions = [
            {"type": "A", "status": "True", "reason": "", "message": "", "lastTransitionTime": "2023-01-01T00:00:00Z"},
            {"type": "B", "status": "True", "reason": "", "message": "", "lastTransitionTime": "2023-01-01T00:00:00Z"},
        ]

        result = update_condition(conditions, "B", "False", "Done", "")

        assert [c["type"] for c in result] == ["A", "B"]
        assert find_condition(result, "A")["status"] == "True"
        assert find_condition(result, "B")["reason"] == "Done"

    def test_condition_type_names(self) -> None:
        """Test the condition type naming."""
        assert degraded_condition_type("EncryptionKeyController") == "EncryptionKeyControllerDegraded"
        assert progressing_condition_type("EncryptionMigrationController") == "EncryptionMigrationControllerProgressing"

    def test_set_degraded_condition(self) -> None:
        """Test setting and clearing the Degraded condition."""
        conditions = set_degraded_condition([], "EncryptionKeyController", "secret is in invalid state")

        degraded = find_condition(conditions, "EncryptionKeyControllerDegraded")
        assert degraded["status"] == "True"
        assert degraded["reason"] == "Error"
        assert degraded["message"] == "secret is in invalid state"

        conditions = set_degraded_condition(conditions, "EncryptionKeyController", None)

        assert len(conditions) == 1
        assert conditions[0]["status"] == "False"
        assert conditions[0]["message"] == ""

    def test_set_progressing_condition(self) -> None:
        """Test setting a Progressing condition."""
        conditions = set_progressing_condition([], "StorageMigrationProgressing", True, "CoreSecrets", "in progress")

        assert conditions[0]["status"] == "True"
        assert conditions[0]["reason"] == "CoreSecrets"

        conditions = set_progressing_condition(conditions, "StorageMigrationProgressing", False)

        assert conditions[0]["status"] == "False"
        assert conditions[0]["reason"] == ""

    def test_find_condition_missing(self) -> None:
        """Test finding a condition that does not exist."""
        assert find_condition([{"type": "Other"}], "Missing") is None

    def test_conditions_equal_ignores_transition_time(self) -> None:
        """Test that comparison ignores transition times and order."""
        a = [
            {"type": "A", "status": "True", "lastTransitionTime": "2023-01-01T00:00:00Z"},
            {"type": "B", "status": "False", "lastTransitionTime": "2023-01-01T00:00:00Z"},
        ]
        b = [
            {"type": "B", "status": "False", "lastTransitionTime": "2024-01-01T00:00:00Z"},
            {"type": "A", "status": "True", "lastTransitionTime": "2024-01-01T00:00:00Z"},
        ]

        assert conditions_equal(a, b)
        assert not conditions_equal(a, [{"type": "A", "status": "False"}, b[0]])
