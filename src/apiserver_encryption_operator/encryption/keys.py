"""Codec between encryption keys and the secrets that store them.

Key secrets are named ``<component>-<group>-<resource>-encryption-<keyID>`` and carry
labels for component, group and resource so they can be listed with a label selector.
The keyID is a monotonically increasing unsigned integer; the key with the largest
keyID of a resource is the desired write key of that resource.

Decoding never raises: a secret that cannot be decoded is reported as ``None`` and is
ignored by every controller. Ignoring a key only means it is not offered as a provider,
which lets an older operator tolerate secrets written by a newer one.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Callable

from kubernetes import client

from ..constants import (
    ANNOTATION_DESCRIPTION,
    ANNOTATION_EXTERNAL_REASON,
    ANNOTATION_INTERNAL_REASON,
    ANNOTATION_MIGRATED_RESOURCES,
    ANNOTATION_MIGRATED_TIMESTAMP,
    ANNOTATION_MODE,
    ANNOTATION_READ_TIMESTAMP,
    ANNOTATION_WRITE_TIMESTAMP,
    DESCRIPTION_DO_NOT_EDIT,
    FINALIZER_DELETION_PROTECTION,
    KEY_DATA,
    LABEL_COMPONENT,
    LABEL_GROUP,
    LABEL_RESOURCE,
)
from .types import GroupResource, KeyState, Mode

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _new_aes256_key() -> bytes:
    return secrets.token_bytes(32)


def _new_identity_key() -> bytes:
    # never used for encryption but has to be a valid AES key
    return bytes(16)


# secretbox needs a 32 byte key as well
KEY_GENERATORS: dict[Mode, Callable[[], bytes]] = {
    Mode.AESCBC: _new_aes256_key,
    Mode.SECRETBOX: _new_aes256_key,
    Mode.IDENTITY: _new_identity_key,
}

EMPTY_IDENTITY_KEY = base64.b64encode(_new_identity_key()).decode("ascii")


def new_key_material(mode: Mode) -> bytes:
    """Generate fresh key material for ``mode``."""
    return KEY_GENERATORS[mode]()


def format_timestamp(ts: datetime) -> str:
    """Format a timestamp as RFC3339 in UTC with second precision."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC3339 timestamp.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def encode_migrated_resources(resources: tuple[GroupResource, ...] | list[GroupResource]) -> str:
    return json.dumps(
        {"resources": [gr.to_json() for gr in resources]},
        separators=(",", ":"),
    )


def parse_migrated_resources(value: str) -> tuple[GroupResource, ...]:
    """Parse the migrated-resources annotation.

    Raises:
        ValueError: If the annotation is not valid JSON of the expected shape
    """
    data = json.loads(value)
    if not isinstance(data, dict) or not isinstance(data.get("resources", []), list):
        raise ValueError(f"unexpected migrated resources document: {value!r}")
    return tuple(GroupResource.from_json(item) for item in data.get("resources") or [])


def key_secret_name(component: str, group_resource: GroupResource, key_id: int) -> str:
    """Name of the key secret, e.g. ``openshift-kube-apiserver-core-secrets-encryption-3``."""
    return f"{component}-{group_resource.human_group}-{group_resource.resource}-encryption-{key_id}"


def key_secret_selector(component: str) -> str:
    """Label selector matching every key secret of ``component``."""
    return f"{LABEL_COMPONENT}={component}"


def key_id_from_name(name: str) -> int | None:
    """Return the keyID encoded as the trailing ``-<uint>`` of ``name``."""
    prefix, sep, suffix = name.rpartition("-")
    if not sep or not suffix.isdigit() or not suffix.isascii():
        return None
    return int(suffix)


def _decode_data(value: Any) -> bytes:
    # the client hands out base64 strings; tolerate raw bytes as well
    if isinstance(value, bytes):
        return value
    return base64.b64decode(value, validate=True)


def _parse_optional_timestamp(annotations: dict[str, str], key: str) -> datetime | None:
    value = annotations.get(key)
    if not value:
        return None
    return parse_timestamp(value)


def decode_key_secret(secret: client.V1Secret, component: str) -> KeyState | None:
    """Decode a key secret.

    Returns None for any secret that is not a valid key of ``component``: missing
    labels, empty key material, unparsable keyID, unknown mode or malformed
    lifecycle annotations.
    """
    metadata = secret.metadata
    if metadata is None or not metadata.name:
        return None
    name = metadata.name
    labels = metadata.labels or {}
    annotations = metadata.annotations or {}

    if labels.get(LABEL_COMPONENT) != component:
        logger.debug(f"skipping key secret {name}: component label does not match {component}")
        return None
    if LABEL_GROUP not in labels or not labels.get(LABEL_RESOURCE):
        logger.debug(f"skipping key secret {name}: missing group or resource label")
        return None

    key_id = key_id_from_name(name)
    if key_id is None:
        logger.debug(f"skipping key secret {name}: invalid keyID in name")
        return None

    mode = Mode.parse(annotations.get(ANNOTATION_MODE))
    if mode is None:
        logger.debug(f"skipping key secret {name}: unknown mode {annotations.get(ANNOTATION_MODE)!r}")
        return None

    raw = (secret.data or {}).get(KEY_DATA)
    try:
        material = _decode_data(raw) if raw else b""
    except (binascii.Error, ValueError):
        logger.debug(f"skipping key secret {name}: key data is not valid base64")
        return None
    if not material:
        logger.debug(f"skipping key secret {name}: empty key data")
        return None

    try:
        migrated_resources: tuple[GroupResource, ...] = ()
        if annotations.get(ANNOTATION_MIGRATED_RESOURCES):
            migrated_resources = parse_migrated_resources(annotations[ANNOTATION_MIGRATED_RESOURCES])
        return KeyState(
            name=name,
            component=component,
            group_resource=GroupResource(group=labels[LABEL_GROUP], resource=labels[LABEL_RESOURCE]),
            key_id=key_id,
            mode=mode,
            material=material,
            read_timestamp=_parse_optional_timestamp(annotations, ANNOTATION_READ_TIMESTAMP),
            write_timestamp=_parse_optional_timestamp(annotations, ANNOTATION_WRITE_TIMESTAMP),
            migrated_timestamp=_parse_optional_timestamp(annotations, ANNOTATION_MIGRATED_TIMESTAMP),
            migrated_resources=migrated_resources,
            internal_reason=annotations.get(ANNOTATION_INTERNAL_REASON, ""),
            external_reason=annotations.get(ANNOTATION_EXTERNAL_REASON, ""),
        )
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"skipping key secret {name}: invalid lifecycle annotations: {e}")
        return None


def key_annotations(key: KeyState) -> dict[str, str]:
    """Annotations describing the lifecycle state of ``key``."""
    annotations = {
        ANNOTATION_DESCRIPTION: DESCRIPTION_DO_NOT_EDIT,
        ANNOTATION_MODE: key.mode.value,
    }
    if key.read_timestamp is not None:
        annotations[ANNOTATION_READ_TIMESTAMP] = format_timestamp(key.read_timestamp)
    if key.write_timestamp is not None:
        annotations[ANNOTATION_WRITE_TIMESTAMP] = format_timestamp(key.write_timestamp)
    if key.migrated_timestamp is not None:
        annotations[ANNOTATION_MIGRATED_TIMESTAMP] = format_timestamp(key.migrated_timestamp)
    if key.migrated_resources:
        annotations[ANNOTATION_MIGRATED_RESOURCES] = encode_migrated_resources(key.migrated_resources)
    if key.internal_reason:
        annotations[ANNOTATION_INTERNAL_REASON] = key.internal_reason
    if key.external_reason:
        annotations[ANNOTATION_EXTERNAL_REASON] = key.external_reason
    return annotations


def encode_key_secret(key: KeyState, namespace: str) -> client.V1Secret:
    """Encode ``key`` as a secret guarded by the deletion-protection finalizer."""
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=key.name,
            namespace=namespace,
            labels={
                LABEL_COMPONENT: key.component,
                LABEL_GROUP: key.group_resource.group,
                LABEL_RESOURCE: key.group_resource.resource,
            },
            annotations=key_annotations(key),
            finalizers=[FINALIZER_DELETION_PROTECTION],
        ),
        type="Opaque",
        data={KEY_DATA: base64.b64encode(key.material).decode("ascii")},
    )


def new_key(
    component: str,
    group_resource: GroupResource,
    key_id: int,
    mode: Mode,
    internal_reason: str = "",
    external_reason: str = "",
) -> KeyState:
    """Mint a new key with fresh material."""
    return KeyState(
        name=key_secret_name(component, group_resource, key_id),
        component=component,
        group_resource=group_resource,
        key_id=key_id,
        mode=mode,
        material=new_key_material(mode),
        internal_reason=internal_reason,
        external_reason=external_reason,
    )


def sort_recent_first(keys: list[KeyState] | tuple[KeyState, ...]) -> list[KeyState]:
    """Sort keys by keyID, largest first."""
    return sorted(keys, key=lambda k: k.key_id, reverse=True)
