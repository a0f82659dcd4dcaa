"""Unit tests for API server revision convergence."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from kubernetes import client

from apiserver_encryption_operator.encryption.revision import (
    RevisionError,
    get_api_server_revision_of_all_instances,
    is_pod_ready,
)


def make_pod(name: str, revision: str, phase: str, ready: bool = True) -> client.V1Pod:
    conditions = [client.V1PodCondition(type="Ready", status="True" if ready else "False")]
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, labels={"apiserver": "true", "revision": revision}),
        status=client.V1PodStatus(phase=phase, conditions=conditions),
    )


class TestRevisionConvergence:
    """Test the single revision of all API server instances."""

    def test_converged(self) -> None:
        """Test that ready pods at one revision are converged."""
        pods = [make_pod(f"kube-apiserver-{i}", "7", "Running") for i in range(3)]

        assert get_api_server_revision_of_all_instances(pods) == "7"

    def test_no_pods(self) -> None:
        """Test that no pods means not converged."""
        assert get_api_server_revision_of_all_instances([]) == ""

    def test_rolling_out(self) -> None:
        """Test that pods at different revisions are not converged."""
        pods = [make_pod("a", "7", "Running"), make_pod("b", "8", "Running")]

        assert get_api_server_revision_of_all_instances(pods) == ""

    def test_not_ready(self) -> None:
        """Test that a running but unready pod is not converged."""
        pods = [make_pod("a", "7", "Running"), make_pod("b", "7", "Running", ready=False)]

        assert get_api_server_revision_of_all_instances(pods) == ""

    def test_pending(self) -> None:
        """Test that a pending pod is not converged."""
        pods = [make_pod("a", "7", "Running"), make_pod("b", "8", "Pending")]

        assert get_api_server_revision_of_all_instances(pods) == ""

    def test_unknown_phase(self) -> None:
        """Test that a pod in unknown phase is an error."""
        with pytest.raises(RevisionError, match="unknown phase"):
            get_api_server_revision_of_all_instances([make_pod("a", "7", "Unknown")])

    def test_unexpected_phase(self) -> None:
        """Test that an unexpected phase is an error."""
        pod = make_pod("a", "7", "Running")
        pod.status = Mock(phase="Exploded", conditions=[])

        with pytest.raises(RevisionError, match="unexpected phase"):
            get_api_server_revision_of_all_instances([pod])

    def test_old_failed_revision(self) -> None:
        """Test that failed pods of older revisions do not block convergence."""
        pods = [make_pod("a", "7", "Running"), make_pod("installer", "6", "Failed")]

        assert get_api_server_revision_of_all_instances(pods) == "7"

    def test_failed_at_running_revision(self) -> None:
        """Test that a failed pod at the running revision is an error."""
        pods = [make_pod("a", "7", "Running"), make_pod("b", "7", "Failed")]

        with pytest.raises(RevisionError, match="both running and failed"):
            get_api_server_revision_of_all_instances(pods)

    def test_newer_failed_revision(self) -> None:
        """Test that a failed newer revision is an error."""
        pods = [make_pod("a", "7", "Running"), make_pod("b", "8", "Succeeded")]

        with pytest.raises(RevisionError, match="newer than running revision"):
            get_api_server_revision_of_all_instances(pods)

    def test_invalid_revision(self) -> None:
        """Test that a non numeric revision is an error once failed pods must be compared."""
        pods = [make_pod("a", "latest", "Running"), make_pod("b", "6", "Failed")]

        with pytest.raises(RevisionError, match="invalid revision"):
            get_api_server_revision_of_all_instances(pods)


class TestIsPodReady:
    """Test pod readiness."""

    def test_ready(self) -> None:
        """Test a ready pod."""
        assert is_pod_ready(make_pod("a", "1", "Running"))

    def test_without_status(self) -> None:
        """Test a pod without status."""
        assert not is_pod_ready(client.V1Pod(metadata=client.V1ObjectMeta(name="a")))
