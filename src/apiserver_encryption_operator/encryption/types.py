"""Core types of the encryption key state machine."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Mode(str, Enum):
    """Encryption mode of a key.

    The values are persisted in key secrets and must never change.
    """

    AESCBC = "aescbc"
    SECRETBOX = "secretbox"
    IDENTITY = "identity"

    @classmethod
    def parse(cls, value: str | None) -> Mode | None:
        """Return the mode for ``value`` or None when it is not a known mode."""
        try:
            return cls(value)
        except ValueError:
            return None


# Encryption stays disabled unless a mode is configured explicitly
DEFAULT_MODE = Mode.IDENTITY


@dataclass(frozen=True, order=True)
class GroupResource:
    """A resource type protected by encryption, e.g. ``secrets`` or ``routes.route.openshift.io``."""

    group: str
    resource: str

    @classmethod
    def parse(cls, value: str) -> GroupResource:
        resource, sep, group = value.partition(".")
        if not sep:
            return cls(group="", resource=value)
        return cls(group=group, resource=resource)

    @property
    def human_group(self) -> str:
        """Group name for object names and log output; the empty group reads as ``core``."""
        return self.group or "core"

    def to_json(self) -> dict[str, str]:
        return {"Group": self.group, "Resource": self.resource}

    @classmethod
    def from_json(cls, data: dict[str, str]) -> GroupResource:
        return cls(group=data.get("Group", ""), resource=data.get("Resource", ""))

    def __str__(self) -> str:
        if not self.group:
            return self.resource
        return f"{self.resource}.{self.group}"


@dataclass(frozen=True)
class KeyAndMode:
    """A key as it appears in the encryption configuration: keyID name, base64 secret and mode."""

    name: str
    secret: str
    mode: Mode


@dataclass(frozen=True)
class KeyState:
    """A decoded key secret and its lifecycle metadata."""

    name: str
    component: str
    group_resource: GroupResource
    key_id: int
    mode: Mode
    material: bytes = field(repr=False)
    read_timestamp: datetime | None = None
    write_timestamp: datetime | None = None
    migrated_timestamp: datetime | None = None
    migrated_resources: tuple[GroupResource, ...] = ()
    internal_reason: str = ""
    external_reason: str = ""

    def __post_init__(self) -> None:
        # annotations keep second precision only
        for name in ("read_timestamp", "write_timestamp", "migrated_timestamp"):
            ts = getattr(self, name)
            if ts is not None and ts.microsecond:
                object.__setattr__(self, name, ts.replace(microsecond=0))

    @property
    def key_and_mode(self) -> KeyAndMode:
        # the keyID is used as the name to keep the prefix of every stored value short
        return KeyAndMode(
            name=str(self.key_id),
            secret=base64.b64encode(self.material).decode("ascii"),
            mode=self.mode,
        )

    def has_migrated(self, group_resource: GroupResource) -> bool:
        return group_resource in self.migrated_resources


@dataclass(frozen=True)
class GroupResourceKeys:
    """Write and read keys of one resource as found in an encryption configuration."""

    write_key: KeyAndMode | None = None
    read_keys: tuple[KeyAndMode, ...] = ()

    @property
    def has_write_key(self) -> bool:
        return self.write_key is not None and bool(self.write_key.name) and bool(self.write_key.secret)


@dataclass(frozen=True)
class GroupResourceState:
    """Key objects associated with one resource.

    ``read_keys`` is ordered most recent first and contains the write key when there is one.
    ``unresolved_keys`` are configuration keys whose key object no longer exists.
    """

    write_key: KeyState | None = None
    read_keys: tuple[KeyState, ...] = ()
    unresolved_keys: tuple[KeyAndMode, ...] = ()

    @property
    def has_write_key(self) -> bool:
        return self.write_key is not None

    @property
    def read_key_names(self) -> frozenset[str]:
        return frozenset(key.name for key in self.read_keys)

    def latest_key(self) -> KeyState | None:
        if not self.read_keys:
            return None
        return self.read_keys[0]


# Desired or observed state of every tracked resource
EncryptionState = dict[GroupResource, GroupResourceState]


@dataclass(frozen=True)
class EncryptionSnapshot:
    """Everything one reconciliation knows about the cluster.

    Recomputed from scratch at the start of every reconciliation and never cached.
    """

    revision: str
    current_config: dict[GroupResource, GroupResourceKeys] | None
    keys: tuple[KeyState, ...]
    desired: EncryptionState

    @property
    def has_been_enabled(self) -> bool:
        """Whether encryption was turned on at some point in the past."""
        return bool(self.current_config) or bool(self.keys)
