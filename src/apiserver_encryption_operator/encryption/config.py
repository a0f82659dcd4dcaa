"""Translation between encryption state and the EncryptionConfiguration consumed by API servers.

Every resource gets its own provider list. The first provider encrypts new writes and all
providers are tried in order on reads, so the write key always comes first and the
``identity`` provider comes last unless data is to be written in plaintext.

An identity key cannot live in an ``identity`` provider because that provider holds no
keys. The most recent identity key is therefore carried as a trailing ``aesgcm``
provider with an all-zero key. It is never used for encryption because the ``identity``
provider always precedes it, but it lets the key flow through the observed states.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..constants import ENCRYPTION_CONFIG_API_VERSION, ENCRYPTION_CONFIG_KIND
from .keys import EMPTY_IDENTITY_KEY
from .types import EncryptionState, GroupResource, GroupResourceKeys, GroupResourceState, KeyAndMode, Mode

logger = logging.getLogger(__name__)

# identity keys ride on the trailing fake aesgcm provider
PROVIDER_KINDS: dict[Mode, str] = {
    Mode.AESCBC: "aescbc",
    Mode.SECRETBOX: "secretbox",
    Mode.IDENTITY: "aesgcm",
}
PROVIDER_IDENTITY = "identity"


def _key_to_dict(key: KeyAndMode) -> dict[str, str]:
    return {"name": key.name, "secret": key.secret}


def _provider(key: KeyAndMode) -> dict[str, Any]:
    return {PROVIDER_KINDS[key.mode]: {"keys": [_key_to_dict(key)]}}


def state_to_keys(state: GroupResourceState) -> GroupResourceKeys:
    """Convert key objects of one resource to the write/read keys of the configuration."""
    write_key = state.write_key.key_and_mode if state.write_key is not None else None
    read_keys = tuple(
        key.key_and_mode
        for key in state.read_keys
        # the write key is listed only once
        if write_key is None or key.key_and_mode != write_key
    )
    return GroupResourceKeys(write_key=write_key, read_keys=read_keys)


def keys_to_providers(keys: GroupResourceKeys) -> list[dict[str, Any]]:
    """Build the ordered provider list of one resource."""
    all_keys = list(keys.read_keys)
    if keys.has_write_key:
        all_keys.insert(0, keys.write_key)

    providers: list[dict[str, Any]] = []
    fake_identity_provider: dict[str, Any] | None = None
    has_identity_as_write_key = False

    for index, key in enumerate(all_keys):
        if key.mode is Mode.IDENTITY:
            # all identity keys behave the same, tracking the most recent one is enough
            if fake_identity_provider is not None:
                continue
            fake_identity_provider = _provider(key)
            has_identity_as_write_key = index == 0
            continue
        providers.append(_provider(key))

    identity_provider: dict[str, Any] = {PROVIDER_IDENTITY: {}}
    if keys.has_write_key and not has_identity_as_write_key:
        providers.append(identity_provider)
    else:
        providers.insert(0, identity_provider)

    if fake_identity_provider is not None:
        providers.append(fake_identity_provider)

    return providers


def get_resource_configs(state: EncryptionState) -> list[dict[str, Any]]:
    """Resource configurations for every resource of ``state`` in a stable order."""
    resource_configs = [
        {
            "resources": [str(gr)],
            "providers": keys_to_providers(state_to_keys(gr_state)),
        }
        for gr, gr_state in state.items()
    ]
    resource_configs.sort(key=lambda rc: rc["resources"][0])
    return resource_configs


def build_encryption_config(resource_configs: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "kind": ENCRYPTION_CONFIG_KIND,
        "apiVersion": ENCRYPTION_CONFIG_API_VERSION,
        "resources": resource_configs,
    }


def encode_encryption_config(config: dict[str, Any]) -> bytes:
    """Serialize the configuration exactly as it is handed to the API servers."""
    return json.dumps(config, separators=(",", ":")).encode("utf-8")


def decode_encryption_config(data: bytes | str) -> dict[str, Any]:
    """Deserialize an EncryptionConfiguration.

    Raises:
        ValueError: If the data is not an EncryptionConfiguration document
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    config = json.loads(data)
    if not isinstance(config, dict) or config.get("kind") != ENCRYPTION_CONFIG_KIND:
        raise ValueError("data is not an EncryptionConfiguration")
    return config


def _single_key(provider: dict[str, Any], kind: str) -> dict[str, str] | None:
    section = provider.get(kind)
    if not isinstance(section, dict):
        return None
    keys = section.get("keys") or []
    if len(keys) != 1 or not isinstance(keys[0], dict):
        return None
    return keys[0]


def _key(data: dict[str, str], mode: Mode) -> KeyAndMode:
    return KeyAndMode(name=str(data.get("name", "")), secret=str(data.get("secret", "")), mode=mode)


def get_group_resource_keys(config: dict[str, Any] | None) -> dict[GroupResource, GroupResourceKeys] | None:
    """Parse the write and read keys of every resource in ``config``.

    Assumes the layout produced by :func:`keys_to_providers`: exactly one resource per
    entry, at least one key provider plus the identity provider.
    """
    if config is None:
        return None

    out: dict[GroupResource, GroupResourceKeys] = {}
    for resource_config in config.get("resources") or []:
        resources = resource_config.get("resources") or []
        providers = resource_config.get("providers") or []
        if len(resources) != 1 or len(providers) < 2:
            logger.info(f"skipping invalid encryption config for resources {resources}")
            continue

        write_key: KeyAndMode | None = None
        read_keys: list[KeyAndMode] = []
        fake_identity_key: dict[str, str] | None = None
        last_index = len(providers) - 1

        for index, provider in enumerate(providers):
            aescbc = _single_key(provider, PROVIDER_KINDS[Mode.AESCBC])
            secretbox = _single_key(provider, PROVIDER_KINDS[Mode.SECRETBOX])
            aesgcm = _single_key(provider, PROVIDER_KINDS[Mode.IDENTITY])

            if aescbc is not None:
                key = _key(aescbc, Mode.AESCBC)
            elif secretbox is not None:
                key = _key(secretbox, Mode.SECRETBOX)
            elif PROVIDER_IDENTITY in provider:
                if index != 0:
                    # plaintext reads need no key to be tracked
                    continue
                key = KeyAndMode(name="", secret="", mode=Mode.IDENTITY)
            elif index == last_index and aesgcm is not None and aesgcm.get("secret") == EMPTY_IDENTITY_KEY:
                fake_identity_key = aesgcm
                continue
            else:
                logger.info(f"skipping invalid provider index {index} for resource {resources[0]}")
                continue

            if index == 0:
                write_key = key
            else:
                read_keys.append(key)

        if fake_identity_key is not None:
            if write_key is not None and write_key.mode is Mode.IDENTITY:
                write_key = _key(fake_identity_key, Mode.IDENTITY)
            else:
                read_keys.append(_key(fake_identity_key, Mode.IDENTITY))

        if write_key is not None and not (write_key.name and write_key.secret):
            write_key = None

        out[GroupResource.parse(resources[0])] = GroupResourceKeys(write_key=write_key, read_keys=tuple(read_keys))
    return out
