"""Encryption controllers.

Each controller is a single worker reconciling the whole encryption state. They never
talk to each other; every step is driven by the state of key secrets, the published
encryption configuration and the revision the API servers run.
"""

from __future__ import annotations

from ..config import OperatorConfig
from .base import BaseController
from .key import KeyController
from .migration import MigrationController
from .pod_state import PodStateController
from .prune import PruneController
from .shared import Clients, OperatorStatus
from .state import StateController

CONTROLLER_CLASSES: tuple[type[BaseController], ...] = (
    KeyController,
    StateController,
    PodStateController,
    MigrationController,
    PruneController,
)


def build_controllers(clients: Clients, config: OperatorConfig) -> dict[str, BaseController]:
    """Create every controller, keyed by name; they share one status writer."""
    status = OperatorStatus(clients.custom)
    return {cls.name: cls(clients, config, status=status) for cls in CONTROLLER_CLASSES}


__all__ = [
    "BaseController",
    "CONTROLLER_CLASSES",
    "KeyController",
    "MigrationController",
    "PodStateController",
    "PruneController",
    "StateController",
    "build_controllers",
]
