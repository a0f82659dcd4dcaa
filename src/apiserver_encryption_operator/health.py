"""Health check endpoints for the operator."""

from __future__ import annotations

import json
import threading
from typing import Any, Iterable

from prometheus_client import make_wsgi_app
from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

_lock = threading.Lock()
_expected_workers: set[str] = set()
_running_workers: set[str] = set()


def expect_workers(names: Iterable[str]) -> None:
    """Register the controller workers that must be running for the operator to be ready."""
    with _lock:
        _expected_workers.clear()
        _expected_workers.update(names)
        _running_workers.intersection_update(_expected_workers)


def mark_worker_running(name: str) -> None:
    with _lock:
        _running_workers.add(name)


def mark_worker_stopped(name: str) -> None:
    with _lock:
        _running_workers.discard(name)


def missing_workers() -> list[str]:
    """Controller workers that are expected but not running."""
    with _lock:
        return sorted(_expected_workers - _running_workers)


def _json_response(body: dict[str, Any], status: int) -> Response:
    return Response(json.dumps(body), mimetype="application/json", status=status)


def create_combined_wsgi_app() -> Any:
    """Create a WSGI app that combines metrics and health check endpoints.

    Returns:
        Combined WSGI application
    """
    metrics_app = make_wsgi_app()

    def combined_app(environ: dict[str, Any], start_response: Any) -> Any:
        """WSGI app that routes /healthz and /readyz, delegates /metrics to prometheus."""
        path = Request(environ).path

        if path == "/healthz":
            return _json_response({"status": "ok"}, 200)(environ, start_response)
        if path == "/readyz":
            missing = missing_workers()
            if missing:
                return _json_response({"status": "not ready", "missing": missing}, 503)(environ, start_response)
            return _json_response({"status": "ready"}, 200)(environ, start_response)
        # Delegate all other paths (including /metrics) to prometheus app
        return metrics_app(environ, start_response)

    return combined_app


def start_metrics_server(port: int) -> threading.Thread:
    """Serve metrics and health checks from a background thread.

    Args:
        port: Port number for the server
    """
    server = make_server("", port, create_combined_wsgi_app(), threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="metrics-server", daemon=True)
    thread.start()
    return thread
