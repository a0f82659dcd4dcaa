"""Environment driven configuration for the encryption operator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .encryption.types import GroupResource

DEFAULT_ENCRYPTED_RESOURCES = "secrets,configmaps"


def parse_group_resources(value: str) -> list[GroupResource]:
    """Parse a comma separated list such as ``secrets,routes.route.openshift.io``."""
    resources = []
    for item in value.split(","):
        item = item.strip()
        if item:
            resources.append(GroupResource.parse(item))
    return resources


@dataclass(frozen=True)
class OperatorConfig:
    """Settings shared by all encryption controllers."""

    target_namespace: str = "openshift-kube-apiserver"
    managed_namespace: str = "openshift-config-managed"
    encrypted_resources: tuple[GroupResource, ...] = field(
        default_factory=lambda: tuple(parse_group_resources(DEFAULT_ENCRYPTED_RESOURCES))
    )
    # Time after a key's migration before a new key is minted
    rotation_interval_seconds: float = 7 * 24 * 60 * 60
    # Unused keys kept around for backup restores
    keep_number_of_secrets: int = 10
    not_converged_requeue_seconds: float = 120.0
    migration_page_size: int = 500
    # Backoff of a failing controller, handed to kopf as its retry settings
    retry_min_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 1000.0
    retry_backoff: float = 2.0

    @property
    def component(self) -> str:
        """Component label value; key secrets are scoped to the target namespace."""
        return self.target_namespace

    @property
    def encryption_config_name(self) -> str:
        """Name of the published encryption configuration secret."""
        return f"encryption-config-{self.target_namespace}"

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Build the configuration from environment variables."""
        return cls(
            target_namespace=os.getenv("TARGET_NAMESPACE", "openshift-kube-apiserver"),
            managed_namespace=os.getenv("MANAGED_NAMESPACE", "openshift-config-managed"),
            encrypted_resources=tuple(
                parse_group_resources(os.getenv("ENCRYPTED_RESOURCES", DEFAULT_ENCRYPTED_RESOURCES))
            ),
            rotation_interval_seconds=float(os.getenv("KEY_ROTATION_INTERVAL_SECONDS", str(7 * 24 * 60 * 60))),
            keep_number_of_secrets=int(os.getenv("KEEP_NUMBER_OF_SECRETS", "10")),
            not_converged_requeue_seconds=float(os.getenv("NOT_CONVERGED_REQUEUE_SECONDS", "120")),
            migration_page_size=int(os.getenv("MIGRATION_PAGE_SIZE", "500")),
            retry_min_delay_seconds=float(os.getenv("RETRY_MIN_DELAY_SECONDS", "1.0")),
            retry_max_delay_seconds=float(os.getenv("RETRY_MAX_DELAY_SECONDS", "1000.0")),
            retry_backoff=float(os.getenv("RETRY_BACKOFF", "2.0")),
        )
