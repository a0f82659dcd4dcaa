"""Main entry point for the API server encryption operator."""

from __future__ import annotations

import logging
import os
from typing import Any

import kopf

from . import health
from . import logging as structured_logging
from .config import OperatorConfig
from .constants import (
    APISERVER_CONFIG_GROUP,
    APISERVER_CONFIG_NAME,
    APISERVER_CONFIG_PLURAL,
    APISERVER_CONFIG_VERSION,
    CONTROLLER_KEY,
    CONTROLLER_MIGRATION,
    CONTROLLER_POD_STATE,
    CONTROLLER_PRUNE,
    CONTROLLER_STATE,
    ENCRYPTION_CONFIG_SECRET,
    LABEL_COMPONENT,
    LABEL_REVISION,
    OPERATOR_GROUP,
    OPERATOR_NAME,
    OPERATOR_PLURAL,
    OPERATOR_VERSION,
)
from .controllers import BaseController, build_controllers
from .controllers.shared import get_k8s_clients
from .tracing import initialize_tracing

logger = logging.getLogger(__name__)

# Controllers by name, built at startup
_controllers: dict[str, BaseController] = {}
_config: OperatorConfig | None = None


def enqueue_all() -> None:
    """Schedule a reconciliation of every controller."""
    for controller in _controllers.values():
        controller.enqueue()


def run_controller(name: str, body: Any, stopped: Any) -> None:
    """Run the worker of controller ``name`` until the daemon is stopped."""
    controller = _controllers.get(name)
    if controller is None:
        logger.error(f"controller {name} was not initialized")
        return
    controller.body = body
    controller.run(stopped)


def is_operator_object(name: str, **_: Any) -> bool:
    return name == OPERATOR_NAME


def in_managed_namespace(namespace: str, **_: Any) -> bool:
    return _config is not None and namespace == _config.managed_namespace


def in_target_namespace(namespace: str, **_: Any) -> bool:
    return _config is not None and namespace == _config.target_namespace


def is_revisioned_encryption_config(name: str, namespace: str, **_: Any) -> bool:
    return in_target_namespace(namespace) and name.startswith(f"{ENCRYPTION_CONFIG_SECRET}-")


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure the operator and build the controllers."""
    global _config

    # Set up structured JSON logging
    structured_logging.setup_structured_logging()
    initialize_tracing()

    _config = OperatorConfig.from_env()
    clients = get_k8s_clients()
    _controllers.clear()
    _controllers.update(build_controllers(clients, _config))
    health.expect_workers(_controllers)

    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = 30.0
    # every controller worker occupies one thread for its lifetime
    settings.execution.max_workers = len(_controllers) + 4

    # Configure retry/backoff settings
    # A failed sync restarts its worker after 1s, 2s, 4s, ... up to the max delay
    settings.execution.min_retry_delay = _config.retry_min_delay_seconds
    settings.execution.max_retry_delay = _config.retry_max_delay_seconds
    settings.execution.retry_backoff = _config.retry_backoff

    logger.info(
        f"Managing encryption of {', '.join(str(gr) for gr in _config.encrypted_resources)} "
        f"for {_config.target_namespace}, keys in {_config.managed_namespace}"
    )

    # Start metrics HTTP server with health check endpoints on port 8080
    health.start_metrics_server(int(os.getenv("METRICS_PORT", "8080")))


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    """Stop all controller workers."""
    for controller in _controllers.values():
        controller.queue.shutdown()


@kopf.daemon(OPERATOR_GROUP, OPERATOR_VERSION, OPERATOR_PLURAL, when=is_operator_object, cancellation_timeout=10.0)
def key_controller(body: kopf.Body, stopped: kopf.DaemonStopped, **_: Any) -> None:
    run_controller(CONTROLLER_KEY, body, stopped)


@kopf.daemon(OPERATOR_GROUP, OPERATOR_VERSION, OPERATOR_PLURAL, when=is_operator_object, cancellation_timeout=10.0)
def state_controller(body: kopf.Body, stopped: kopf.DaemonStopped, **_: Any) -> None:
    run_controller(CONTROLLER_STATE, body, stopped)


@kopf.daemon(OPERATOR_GROUP, OPERATOR_VERSION, OPERATOR_PLURAL, when=is_operator_object, cancellation_timeout=10.0)
def pod_state_controller(body: kopf.Body, stopped: kopf.DaemonStopped, **_: Any) -> None:
    run_controller(CONTROLLER_POD_STATE, body, stopped)


@kopf.daemon(OPERATOR_GROUP, OPERATOR_VERSION, OPERATOR_PLURAL, when=is_operator_object, cancellation_timeout=10.0)
def migration_controller(body: kopf.Body, stopped: kopf.DaemonStopped, **_: Any) -> None:
    run_controller(CONTROLLER_MIGRATION, body, stopped)


@kopf.daemon(OPERATOR_GROUP, OPERATOR_VERSION, OPERATOR_PLURAL, when=is_operator_object, cancellation_timeout=10.0)
def prune_controller(body: kopf.Body, stopped: kopf.DaemonStopped, **_: Any) -> None:
    run_controller(CONTROLLER_PRUNE, body, stopped)


@kopf.timer(
    OPERATOR_GROUP,
    OPERATOR_VERSION,
    OPERATOR_PLURAL,
    when=is_operator_object,
    interval=float(os.getenv("RESYNC_INTERVAL_SECONDS", "300")),  # Default 5 minutes
)
def resync(**_: Any) -> None:
    """Periodic resync, e.g. to re-examine a key in an invalid state."""
    enqueue_all()


@kopf.on.event(OPERATOR_GROUP, OPERATOR_VERSION, OPERATOR_PLURAL, when=is_operator_object)
def handle_operator_event(**_: Any) -> None:
    """Management state and the external reason live on the operator object."""
    enqueue_all()


@kopf.on.event(
    APISERVER_CONFIG_GROUP,
    APISERVER_CONFIG_VERSION,
    APISERVER_CONFIG_PLURAL,
    when=lambda name, **_: name == APISERVER_CONFIG_NAME,
)
def handle_apiserver_config_event(**_: Any) -> None:
    """The configured encryption mode changed."""
    enqueue_all()


@kopf.on.event("v1", "secrets", labels={LABEL_COMPONENT: kopf.PRESENT}, when=in_managed_namespace)
def handle_key_secret_event(**_: Any) -> None:
    enqueue_all()


@kopf.on.event("v1", "secrets", when=is_revisioned_encryption_config)
def handle_encryption_config_event(**_: Any) -> None:
    """A new revision of the encryption configuration was installed."""
    enqueue_all()


@kopf.on.event("v1", "pods", labels={"apiserver": "true", LABEL_REVISION: kopf.PRESENT}, when=in_target_namespace)
def handle_apiserver_pod_event(**_: Any) -> None:
    """API server pods rolled out a revision or changed readiness."""
    enqueue_all()


def run() -> None:
    """Run the operator, e.g. from the console script."""
    kopf.run(clusterwide=True)
