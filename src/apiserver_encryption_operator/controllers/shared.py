"""Shared utilities for the encryption controllers."""

from __future__ import annotations

import base64
import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable

from kubernetes import client
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient

from ..config import OperatorConfig
from ..constants import (
    APISERVER_CONFIG_GROUP,
    APISERVER_CONFIG_NAME,
    APISERVER_CONFIG_PLURAL,
    APISERVER_CONFIG_VERSION,
    APISERVER_POD_SELECTOR,
    ENCRYPTION_CONFIG_SECRET,
    MANAGEMENT_STATE_MANAGED,
    OPERATOR_GROUP,
    OPERATOR_NAME,
    OPERATOR_PLURAL,
    OPERATOR_VERSION,
    REASON_REVISION_NOT_CONVERGED,
)
from ..encryption.config import decode_encryption_config, get_group_resource_keys
from ..encryption.keys import decode_key_secret, key_secret_selector
from ..encryption.revision import get_api_server_revision_of_all_instances
from ..encryption.state import get_desired_encryption_state
from ..encryption.types import DEFAULT_MODE, EncryptionSnapshot, GroupResource, GroupResourceKeys, KeyState, Mode
from ..utils.conditions import conditions_equal
from ..utils.errors import EncryptionError, is_not_found
from ..utils.rate_limit import call_k8s
from ..utils.secrets import get_secret, list_secrets, retry_on_conflict

logger = logging.getLogger(__name__)


@dataclass
class Clients:
    """Kubernetes API clients shared by the controllers."""

    core: client.CoreV1Api
    custom: client.CustomObjectsApi
    dynamic: DynamicClient


def get_k8s_clients() -> Clients:
    """Create Kubernetes API clients.

    Returns:
        Clients using the in-cluster configuration, or the kubeconfig outside a cluster
    """
    from kubernetes import config

    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()

    api_client = client.ApiClient()
    return Clients(
        core=client.CoreV1Api(api_client),
        custom=client.CustomObjectsApi(api_client),
        dynamic=DynamicClient(api_client),
    )


def _get_cluster_object(api: client.CustomObjectsApi, group: str, version: str, plural: str, name: str) -> dict[str, Any] | None:
    try:
        return call_k8s(
            f"get_{plural}",
            api.get_cluster_custom_object,
            group=group,
            version=version,
            plural=plural,
            name=name,
        )
    except ApiException as e:
        if is_not_found(e):
            return None
        raise


def get_operator(api: client.CustomObjectsApi) -> dict[str, Any] | None:
    """Get the operator object the controllers report to."""
    return _get_cluster_object(api, OPERATOR_GROUP, OPERATOR_VERSION, OPERATOR_PLURAL, OPERATOR_NAME)


def get_apiserver_config(api: client.CustomObjectsApi) -> dict[str, Any] | None:
    """Get the cluster-wide APIServer configuration."""
    return _get_cluster_object(
        api,
        APISERVER_CONFIG_GROUP,
        APISERVER_CONFIG_VERSION,
        APISERVER_CONFIG_PLURAL,
        APISERVER_CONFIG_NAME,
    )


def should_run(operator: dict[str, Any] | None) -> bool:
    """Controllers only act while the operator is managed."""
    if operator is None:
        return False
    management_state = (operator.get("spec") or {}).get("managementState") or MANAGEMENT_STATE_MANAGED
    return management_state == MANAGEMENT_STATE_MANAGED


def get_external_reason(operator: dict[str, Any] | None) -> str:
    """Administrator supplied reason forcing a new key, from the unsupported config overrides."""
    overrides = ((operator or {}).get("spec") or {}).get("unsupportedConfigOverrides") or {}
    if not isinstance(overrides, dict):
        return ""
    encryption = overrides.get("encryption") or {}
    if not isinstance(encryption, dict):
        return ""
    return str(encryption.get("reason") or "")


def get_configured_mode(apiserver: dict[str, Any] | None) -> Mode:
    """Encryption mode configured on the APIServer object.

    Raises:
        EncryptionError: If an unknown mode is configured
    """
    value = (((apiserver or {}).get("spec") or {}).get("encryption") or {}).get("type") or ""
    if not value:
        # unspecified means the default, which may change over time
        return DEFAULT_MODE
    mode = Mode.parse(value)
    if mode is None:
        raise EncryptionError(f"unknown encryption mode configured: {value}")
    return mode


def list_api_server_pods(api: client.CoreV1Api, namespace: str) -> list[client.V1Pod]:
    # a live list, the revision must never come from a stale cache
    pod_list = call_k8s("list_pods", api.list_namespaced_pod, namespace=namespace, label_selector=APISERVER_POD_SELECTOR)
    return list(pod_list.items or [])


def get_current_encryption_config(
    api: client.CoreV1Api,
    namespace: str,
    revision: str,
) -> dict[GroupResource, GroupResourceKeys] | None:
    """Keys of the encryption configuration the API servers run at ``revision``.

    Returns:
        None if encryption is not configured at that revision

    Raises:
        EncryptionError: If the configuration cannot be decoded
    """
    name = f"{ENCRYPTION_CONFIG_SECRET}-{revision}"
    secret = get_secret(api, namespace, name)
    if secret is None:
        return None

    raw = (secret.data or {}).get(ENCRYPTION_CONFIG_SECRET)
    if not raw:
        return None
    try:
        data = raw if isinstance(raw, bytes) else base64.b64decode(raw)
        return get_group_resource_keys(decode_encryption_config(data))
    except ValueError as e:
        raise EncryptionError(f"failed to decode encryption config at revision {revision}: {e}") from e


def list_keys(api: client.CoreV1Api, config: OperatorConfig) -> list[KeyState]:
    """Valid key objects of the component; invalid ones are skipped."""
    keys = []
    for secret in list_secrets(api, config.managed_namespace, key_secret_selector(config.component)):
        key = decode_key_secret(secret, config.component)
        if key is None:
            continue
        keys.append(key)
    return keys


def get_encryption_snapshot(clients: Clients, config: OperatorConfig) -> tuple[EncryptionSnapshot | None, str]:
    """Gather everything a reconciliation needs, recomputed from scratch.

    Returns:
        The snapshot, or None and the reason why the API servers are not converged
    """
    revision = get_api_server_revision_of_all_instances(list_api_server_pods(clients.core, config.target_namespace))
    if not revision:
        return None, REASON_REVISION_NOT_CONVERGED

    current_config = get_current_encryption_config(clients.core, config.target_namespace, revision)
    keys = list_keys(clients.core, config)
    desired = get_desired_encryption_state(current_config, keys, config.encrypted_resources)
    return EncryptionSnapshot(revision=revision, current_config=current_config, keys=tuple(keys), desired=desired), ""


class OperatorStatus:
    """Condition sink on the status of the operator object.

    Writes are best effort: failures are logged and never raised.
    """

    def __init__(self, api: client.CustomObjectsApi) -> None:
        self.api = api

    def update_conditions(self, mutate: Callable[[list[dict[str, Any]]], list[dict[str, Any]]]) -> None:
        def attempt() -> None:
            operator = get_operator(self.api)
            if operator is None:
                return
            status = operator.setdefault("status", {}) or {}
            conditions = list(status.get("conditions") or [])
            updated = mutate(copy.deepcopy(conditions))
            if conditions_equal(conditions, updated):
                return
            status["conditions"] = updated
            operator["status"] = status
            call_k8s(
                "update_operator_status",
                self.api.replace_cluster_custom_object_status,
                group=OPERATOR_GROUP,
                version=OPERATOR_VERSION,
                plural=OPERATOR_PLURAL,
                name=OPERATOR_NAME,
                body=operator,
            )

        try:
            retry_on_conflict(attempt)
        except Exception as e:
            logger.warning(f"Failed to update operator conditions: {e}")
