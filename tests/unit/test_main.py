"""Tests for the operator entry point helpers."""

from __future__ import annotations

import json
import logging
from unittest.mock import Mock, patch

from apiserver_encryption_operator import main
from apiserver_encryption_operator.config import OperatorConfig
from apiserver_encryption_operator.logging import log_controller_event
from apiserver_encryption_operator.utils.context import with_correlation_id


class TestFilters:
    """Test the event filters."""

    def test_operator_object(self):
        """Test that only the cluster operator object is watched."""
        assert main.is_operator_object(name="cluster")
        assert not main.is_operator_object(name="other")

    @patch("apiserver_encryption_operator.main._config", OperatorConfig())
    def test_namespaces(self):
        """Test the namespace filters."""
        assert main.in_managed_namespace(namespace="openshift-config-managed")
        assert not main.in_managed_namespace(namespace="default")
        assert main.in_target_namespace(namespace="openshift-kube-apiserver")

    @patch("apiserver_encryption_operator.main._config", OperatorConfig())
    def test_revisioned_encryption_config(self):
        """Test that only revisioned configuration secrets are watched."""
        assert main.is_revisioned_encryption_config(name="encryption-config-4", namespace="openshift-kube-apiserver")
        assert not main.is_revisioned_encryption_config(name="encryption-config-4", namespace="default")
        assert not main.is_revisioned_encryption_config(name="serving-cert", namespace="openshift-kube-apiserver")

    @patch("apiserver_encryption_operator.main._config", None)
    def test_not_configured(self):
        """Test that nothing matches before startup."""
        assert not main.in_managed_namespace(namespace="openshift-config-managed")


class TestControllerDispatch:
    """Test dispatching to the controllers."""

    def test_enqueue_all(self):
        """Test that every controller is scheduled."""
        controllers = {"a": Mock(), "b": Mock()}
        with patch.dict(main._controllers, controllers, clear=True):
            main.enqueue_all()

        controllers["a"].enqueue.assert_called_once()
        controllers["b"].enqueue.assert_called_once()

    def test_resync_enqueues_all(self):
        """Test that the resync timer schedules every controller."""
        controllers = {"a": Mock(), "b": Mock()}
        with patch.dict(main._controllers, controllers, clear=True):
            main.resync()

        controllers["a"].enqueue.assert_called_once()
        controllers["b"].enqueue.assert_called_once()

    def test_run_controller(self):
        """Test that the daemon body is handed to the controller."""
        controller = Mock()
        stopped = Mock()
        with patch.dict(main._controllers, {"EncryptionKeyController": controller}, clear=True):
            main.run_controller("EncryptionKeyController", {"metadata": {"name": "cluster"}}, stopped)

        assert controller.body == {"metadata": {"name": "cluster"}}
        controller.run.assert_called_once_with(stopped)

    def test_run_unknown_controller(self):
        """Test that an unknown controller is not run."""
        with patch.dict(main._controllers, {}, clear=True):
            main.run_controller("EncryptionKeyController", {}, Mock())


class TestConfigure:
    """Test the startup handler."""

    @patch("apiserver_encryption_operator.main._config", None)
    @patch("apiserver_encryption_operator.main.health")
    @patch("apiserver_encryption_operator.main.build_controllers")
    @patch("apiserver_encryption_operator.main.get_k8s_clients")
    @patch("apiserver_encryption_operator.main.initialize_tracing")
    @patch("apiserver_encryption_operator.main.structured_logging")
    def test_retry_settings(self, mock_logging, mock_tracing, mock_clients, mock_build, mock_health):
        """Test that the retry backoff is handed to kopf."""
        mock_build.return_value = {"EncryptionKeyController": Mock()}
        settings = Mock()
        env = {"RETRY_MIN_DELAY_SECONDS": "2", "RETRY_MAX_DELAY_SECONDS": "30", "RETRY_BACKOFF": "1.5"}

        with patch.dict(main._controllers, {}, clear=True), patch.dict("os.environ", env):
            main.configure(settings=settings)

        assert settings.execution.min_retry_delay == 2.0
        assert settings.execution.max_retry_delay == 30.0
        assert settings.execution.retry_backoff == 1.5
        assert settings.execution.max_workers == 5
        mock_health.expect_workers.assert_called_once()


class TestStructuredLogging:
    """Test the structured log lines."""

    def test_log_controller_event(self):
        """Test that log lines are JSON with correlation ID and redacted data."""
        logger = Mock(spec=logging.Logger)

        with with_correlation_id("abc123"):
            log_controller_event(logger, "EncryptionKeyController", "create", "KeyCreated", "created", data="AAEC")

        level, line = logger.log.call_args[0]
        payload = json.loads(line)
        assert level == logging.INFO
        assert payload["controller"] == "EncryptionKeyController"
        assert payload["correlation_id"] == "abc123"
        assert payload["data"] == "***REDACTED***"
