"""State controller: publishes the desired encryption configuration."""

from __future__ import annotations

import base64
from typing import Any

from kubernetes import client

from ..constants import (
    ANNOTATION_DESCRIPTION,
    CONTROLLER_STATE,
    DESCRIPTION_DO_NOT_EDIT,
    ENCRYPTION_CONFIG_SECRET,
    FINALIZER_DELETION_PROTECTION,
)
from ..encryption.config import build_encryption_config, encode_encryption_config, get_resource_configs
from ..tracing import trace_span
from ..utils.events import emit_config_applied
from ..utils.secrets import apply_secret
from .base import BaseController


def build_encryption_config_secret(name: str, namespace: str, resource_configs: list[dict[str, Any]]) -> client.V1Secret:
    """Secret the installer of the API servers copies into every new revision."""
    data = encode_encryption_config(build_encryption_config(resource_configs))
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            annotations={ANNOTATION_DESCRIPTION: DESCRIPTION_DO_NOT_EDIT},
            finalizers=[FINALIZER_DELETION_PROTECTION],
        ),
        type="Opaque",
        data={ENCRYPTION_CONFIG_SECRET: base64.b64encode(data).decode("ascii")},
    )


class StateController(BaseController):
    """Turns the desired state into the encryption configuration secret."""

    name = CONTROLLER_STATE

    def sync(self) -> float | None:
        if self.managed_operator() is None:
            return None

        snapshot, _ = self.snapshot()
        if snapshot is None:
            return self.config.not_converged_requeue_seconds

        resource_configs = get_resource_configs(snapshot.desired)
        # requested resources are tracked before their first key exists, and an
        # empty configuration would turn encryption off for everything
        if not resource_configs or not snapshot.has_been_enabled:
            self.logger.debug("no encryption state to publish yet")
            return None

        self.apply_encryption_config(resource_configs)
        return None

    def apply_encryption_config(self, resource_configs: list[dict[str, Any]]) -> bool:
        """Create or update the configuration secret.

        Returns:
            True if the secret changed
        """
        name = self.config.encryption_config_name
        secret = build_encryption_config_secret(name, self.config.managed_namespace, resource_configs)
        with trace_span("apply_encryption_config", controller=self.name, attributes={"secret.name": name}):
            changed = apply_secret(self.clients.core, self.config.managed_namespace, secret)

        if changed:
            self.log_info(
                f"Encryption config secret {name} updated",
                event="apply",
                reason="ConfigApplied",
                resources=[rc["resources"][0] for rc in resource_configs],
            )
            emit_config_applied(self.body, name)
        return changed
