"""Utilities for managing Kubernetes secrets."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from ..constants import FIELD_MANAGER
from .errors import is_conflict, is_not_found
from .rate_limit import call_k8s

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# Attempts of a read-modify-write before a conflict is returned to the caller
CONFLICT_RETRIES = 5


def retry_on_conflict(fn: Callable[[], _T], retries: int = CONFLICT_RETRIES) -> _T:
    """Run a read-modify-write function, repeating it on optimistic concurrency conflicts.

    Args:
        fn: Function that reads the object, mutates it and writes it back
        retries: Maximum number of attempts

    Raises:
        ApiException: The last conflict if all attempts conflicted, or any other API error
    """
    for attempt in range(retries):
        try:
            return fn()
        except ApiException as e:
            if not is_conflict(e) or attempt == retries - 1:
                raise
            logger.debug(f"conflict on attempt {attempt + 1}, retrying")
    raise AssertionError("unreachable")


def list_secrets(
    api: client.CoreV1Api,
    namespace: str,
    label_selector: str,
) -> list[client.V1Secret]:
    """List secrets matching ``label_selector``.

    Args:
        api: Kubernetes API client
        namespace: Namespace of the secrets
        label_selector: Label selector

    Returns:
        Matching secrets
    """
    secret_list = call_k8s(
        "list_secrets",
        api.list_namespaced_secret,
        namespace=namespace,
        label_selector=label_selector,
    )
    return list(secret_list.items or [])


def get_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
) -> client.V1Secret | None:
    """Get a secret.

    Returns:
        The secret, or None if it does not exist
    """
    try:
        return call_k8s("get_secret", api.read_namespaced_secret, name=secret_name, namespace=namespace)
    except ApiException as e:
        if is_not_found(e):
            return None
        raise


def create_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret: client.V1Secret,
) -> client.V1Secret:
    """Create a secret.

    Raises:
        ApiException: Also when the secret already exists
    """
    return call_k8s(
        "create_secret",
        api.create_namespaced_secret,
        namespace=namespace,
        body=secret,
        field_manager=FIELD_MANAGER,
    )


def update_secret_annotations(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
    mutate: Callable[[dict[str, str]], bool],
) -> bool:
    """Read-modify-write the annotations of a secret.

    Args:
        api: Kubernetes API client
        namespace: Namespace of the secret
        secret_name: Name of the secret
        mutate: Changes the annotations in place and returns whether anything changed;
            it is called again with fresh annotations after a conflict

    Returns:
        True if the secret was updated
    """
    def attempt() -> bool:
        secret = call_k8s("get_secret", api.read_namespaced_secret, name=secret_name, namespace=namespace)
        annotations = dict(secret.metadata.annotations or {})
        if not mutate(annotations):
            return False
        secret.metadata.annotations = annotations
        call_k8s(
            "update_secret",
            api.replace_namespaced_secret,
            name=secret_name,
            namespace=namespace,
            body=secret,
            field_manager=FIELD_MANAGER,
        )
        return True

    return retry_on_conflict(attempt)


def remove_finalizer(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
    finalizer: str,
) -> bool:
    """Remove ``finalizer`` from a secret.

    A secret that is already gone counts as done.

    Returns:
        True if the secret was updated
    """
    def attempt() -> bool:
        secret = get_secret(api, namespace, secret_name)
        if secret is None:
            return False
        finalizers = list(secret.metadata.finalizers or [])
        if finalizer not in finalizers:
            return False
        finalizers.remove(finalizer)
        secret.metadata.finalizers = finalizers
        try:
            call_k8s(
                "update_secret",
                api.replace_namespaced_secret,
                name=secret_name,
                namespace=namespace,
                body=secret,
                field_manager=FIELD_MANAGER,
            )
        except ApiException as e:
            if is_not_found(e):
                return False
            raise
        return True

    return retry_on_conflict(attempt)


def delete_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
) -> bool:
    """Delete a secret.

    Returns:
        True if the secret was deleted, False if it was already gone
    """
    try:
        call_k8s("delete_secret", api.delete_namespaced_secret, name=secret_name, namespace=namespace)
    except ApiException as e:
        if is_not_found(e):
            return False
        raise
    return True


def _secret_differs(existing: client.V1Secret, desired: client.V1Secret) -> bool:
    existing_meta = existing.metadata
    desired_meta = desired.metadata
    if (existing.data or {}) != (desired.data or {}):
        return True
    if existing.type != desired.type:
        return True
    for field in ("labels", "annotations"):
        current = getattr(existing_meta, field) or {}
        for key, value in (getattr(desired_meta, field) or {}).items():
            if current.get(key) != value:
                return True
    return not set(desired_meta.finalizers or []) <= set(existing_meta.finalizers or [])


def apply_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret: client.V1Secret,
) -> bool:
    """Create or update a secret so that it matches ``secret``.

    Labels, annotations and finalizers of the existing secret are merged with the
    desired ones, data and type are replaced.

    Returns:
        True if the secret was created or changed
    """
    name = secret.metadata.name

    def attempt() -> bool:
        existing = get_secret(api, namespace, name)
        if existing is None:
            create_secret(api, namespace, secret)
            return True
        if not _secret_differs(existing, secret):
            return False

        existing.data = secret.data
        existing.type = secret.type
        existing.metadata.labels = {**(existing.metadata.labels or {}), **(secret.metadata.labels or {})}
        existing.metadata.annotations = {
            **(existing.metadata.annotations or {}),
            **(secret.metadata.annotations or {}),
        }
        finalizers = list(existing.metadata.finalizers or [])
        for finalizer in secret.metadata.finalizers or []:
            if finalizer not in finalizers:
                finalizers.append(finalizer)
        existing.metadata.finalizers = finalizers
        call_k8s(
            "update_secret",
            api.replace_namespaced_secret,
            name=name,
            namespace=namespace,
            body=existing,
            field_manager=FIELD_MANAGER,
        )
        return True

    return retry_on_conflict(attempt)
