"""Tests for health check endpoints."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

from apiserver_encryption_operator import health
from apiserver_encryption_operator.health import (
    create_combined_wsgi_app,
    expect_workers,
    mark_worker_running,
    mark_worker_stopped,
    missing_workers,
)


def make_environ(path: str) -> dict:
    return {
        "REQUEST_METHOD": "GET",
        "PATH_INFO": path,
        "SCRIPT_NAME": "",
        "QUERY_STRING": "",
        "SERVER_NAME": "localhost",
        "SERVER_PORT": "8080",
        "wsgi.url_scheme": "http",
    }


def call(path: str) -> tuple[str, bytes]:
    start_response = MagicMock()
    result = create_combined_wsgi_app()(make_environ(path), start_response)
    return start_response.call_args[0][0], b"".join(result)


class TestWorkers:
    """Test cases for worker bookkeeping."""

    def setup_method(self):
        """Reset the registered workers."""
        expect_workers([])

    def test_missing_workers(self):
        """Test that workers not yet running are reported."""
        expect_workers(["EncryptionKeyController", "EncryptionStateController"])
        mark_worker_running("EncryptionKeyController")

        assert missing_workers() == ["EncryptionStateController"]

    def test_stopped_worker_is_missing(self):
        """Test that a stopped worker is missing again."""
        expect_workers(["EncryptionKeyController"])
        mark_worker_running("EncryptionKeyController")
        mark_worker_stopped("EncryptionKeyController")

        assert missing_workers() == ["EncryptionKeyController"]

    def test_expect_workers_drops_unknown(self):
        """Test that re-registering forgets workers no longer expected."""
        expect_workers(["A"])
        mark_worker_running("A")
        expect_workers(["B"])

        assert health._running_workers == set()


class TestCombinedWsgiApp:
    """Test cases for the combined WSGI application."""

    def setup_method(self):
        """Reset the registered workers."""
        expect_workers([])

    def test_healthz(self):
        """Test /healthz always reports ok."""
        status, body = call("/healthz")

        assert "200" in status
        assert json.loads(body) == {"status": "ok"}

    def test_readyz_ready(self):
        """Test /readyz when all workers run."""
        expect_workers(["EncryptionKeyController"])
        mark_worker_running("EncryptionKeyController")

        status, body = call("/readyz")

        assert "200" in status
        assert json.loads(body) == {"status": "ready"}

    def test_readyz_not_ready(self):
        """Test /readyz lists workers that are not running."""
        expect_workers(["EncryptionKeyController", "EncryptionPruneController"])
        mark_worker_running("EncryptionKeyController")

        status, body = call("/readyz")

        assert "503" in status
        assert json.loads(body) == {"status": "not ready", "missing": ["EncryptionPruneController"]}

    def test_metrics_delegated(self):
        """Test that /metrics is served by prometheus."""
        status, body = call("/metrics")

        assert "200" in status
        assert b"encryption_operator_reconcile_total" in body
