"""Desired encryption state calculation.

The desired state is recomputed from scratch on every reconciliation from the
configuration the API servers are running and the key secrets that exist. It moves the
cluster forward one safe step at a time, in lock-step across all resources:

1. every resource must be able to read with every key that may have persisted data,
2. once reads are stable, every resource writes with its most recent key,
3. once every resource has been migrated to its write key, all other read keys are dropped.

Each step returns early, so a change is published and observed by every API server
before the next step can happen.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from .config import build_encryption_config, get_group_resource_keys, get_resource_configs
from .keys import sort_recent_first
from .types import (
    EncryptionState,
    GroupResource,
    GroupResourceKeys,
    GroupResourceState,
    KeyAndMode,
    KeyState,
    Mode,
)

logger = logging.getLogger(__name__)


def group_keys(keys: Iterable[KeyState]) -> dict[GroupResource, list[KeyState]]:
    """Group keys by resource, most recent first."""
    grouped: dict[GroupResource, list[KeyState]] = {}
    for key in keys:
        grouped.setdefault(key.group_resource, []).append(key)
    return {gr: sort_recent_first(gr_keys) for gr, gr_keys in grouped.items()}


def keys_with_potentially_persisted_data(gr: GroupResource, recent_first_keys: list[KeyState]) -> list[KeyState]:
    """Return the most recent keys up to and including the first one ``gr`` was migrated to.

    Data written before that migration has been rewritten, so older keys cannot be
    needed for reading anymore. Without any migrated key every key is returned.
    """
    for index, key in enumerate(recent_first_keys):
        if key.has_migrated(gr):
            return recent_first_keys[: index + 1]
    return list(recent_first_keys)


def _has_key(read_keys: Iterable[KeyState], key: KeyState) -> bool:
    for read_key in read_keys:
        if read_key.name == key.name:
            return True
        # only the most recent identity key is carried in the configuration
        if key.mode is Mode.IDENTITY and read_key.mode is Mode.IDENTITY and read_key.key_id > key.key_id:
            return True
    return False


def _resolve(config_keys: GroupResourceKeys, available: list[KeyState]) -> GroupResourceState:
    by_key: dict[KeyAndMode, KeyState] = {key.key_and_mode: key for key in available}
    unresolved: list[KeyAndMode] = []

    write_key: KeyState | None = None
    if config_keys.has_write_key:
        write_key = by_key.get(config_keys.write_key)
        if write_key is None:
            unresolved.append(config_keys.write_key)

    read_keys: list[KeyState] = [write_key] if write_key is not None else []
    for config_key in config_keys.read_keys:
        key = by_key.get(config_key)
        if key is None:
            unresolved.append(config_key)
        elif not _has_key(read_keys, key):
            read_keys.append(key)

    return GroupResourceState(
        write_key=write_key,
        read_keys=tuple(sort_recent_first(read_keys)),
        unresolved_keys=tuple(unresolved),
    )


def config_to_state(
    current_config: dict[GroupResource, GroupResourceKeys] | None,
    keys_by_gr: dict[GroupResource, list[KeyState]],
) -> EncryptionState:
    """Resolve the keys of the running configuration to key objects."""
    state: EncryptionState = {}
    for gr, config_keys in (current_config or {}).items():
        gr_state = _resolve(config_keys, keys_by_gr.get(gr, []))
        for unresolved in gr_state.unresolved_keys:
            logger.warning(f"key {unresolved.name} of resource {gr} in the encryption config has no key secret")
        state[gr] = gr_state
    return state


def get_desired_encryption_state(
    current_config: dict[GroupResource, GroupResourceKeys] | None,
    keys: Iterable[KeyState],
    requested: Iterable[GroupResource],
) -> EncryptionState:
    """Compute the desired encryption state of every resource.

    Args:
        current_config: Keys of the configuration the API servers run, None if there is none
        keys: Valid key objects of the component
        requested: Resources that should be encrypted

    Returns:
        Desired state per resource. Resources that were ever encrypted are never removed.
    """
    keys_by_gr = group_keys(keys)

    desired = config_to_state(current_config, keys_by_gr)

    # new resources start without keys; the key controller mints their first key
    for gr in list(requested) + list(keys_by_gr):
        desired.setdefault(gr, GroupResourceState())

    # without keys wait for the key controller to create one
    if not keys_by_gr:
        logger.debug("no encryption keys found")
        return desired

    # read step: keys are only ever added here, dropping happens in the collapse step
    reads_as_expected = True
    for gr, gr_state in desired.items():
        read_keys = list(gr_state.read_keys)
        for expected in keys_with_potentially_persisted_data(gr, keys_by_gr.get(gr, [])):
            if not _has_key(read_keys, expected):
                logger.debug(f"{gr} missing read key {expected.name}")
                read_keys.append(expected)
                reads_as_expected = False
        if gr_state.unresolved_keys:
            reads_as_expected = False
        desired[gr] = replace(gr_state, read_keys=tuple(sort_recent_first(read_keys)))
    if not reads_as_expected:
        logger.debug("not all read keys in sync")
        return desired

    # write step: the most recent key of every resource becomes its write key
    writes_as_expected = True
    for gr, gr_state in desired.items():
        latest = gr_state.latest_key()
        if latest is not None and (gr_state.write_key is None or gr_state.write_key.name != latest.name):
            logger.debug(f"{gr} does not have write key {latest.name}")
            writes_as_expected = False
    if not writes_as_expected:
        logger.debug("not all write keys in sync")
        for gr, gr_state in desired.items():
            latest = gr_state.latest_key()
            if latest is not None:
                desired[gr] = replace(gr_state, write_key=latest)
        return desired

    # collapse step: once everything is migrated only the write key is needed for reading
    for gr, gr_state in desired.items():
        if gr_state.write_key is None:
            logger.debug(f"{gr} has no write key yet")
            return desired
        ok, _, reason = migrated_for([gr], gr_state.write_key)
        if not ok:
            logger.debug(reason)
            return desired
    for gr, gr_state in desired.items():
        desired[gr] = GroupResourceState(write_key=gr_state.write_key, read_keys=(gr_state.write_key,))
    logger.debug("write keys set as sole read keys")
    return desired


def migrated_for(grs: Iterable[GroupResource], key: KeyState) -> tuple[bool, list[GroupResource], str]:
    """Return whether ``key`` records all of ``grs`` as migrated, the missing ones and a reason."""
    grs = list(grs)
    if not key.migrated_resources:
        return False, grs, f"key {key.name} has not been migrated"
    missing = [gr for gr in grs if not key.has_migrated(gr)]
    if missing:
        return (
            False,
            missing,
            f"key {key.name} misses resource {','.join(str(gr) for gr in missing)} among migrated resources",
        )
    return True, [], ""


def grs_needing_migration(state: EncryptionState) -> dict[GroupResource, KeyState]:
    """Resources whose write key has not recorded their migration yet, with that write key."""
    pending: dict[GroupResource, KeyState] = {}
    for gr, gr_state in sorted(state.items()):
        if gr_state.write_key is not None and not gr_state.write_key.has_migrated(gr):
            pending[gr] = gr_state.write_key
    return pending


def state_to_config_keys(state: EncryptionState) -> dict[GroupResource, GroupResourceKeys]:
    """Keys per resource as they would be read back from the configuration built for ``state``."""
    return get_group_resource_keys(build_encryption_config(get_resource_configs(state))) or {}


def is_state_observed(state: EncryptionState, current_config: dict[GroupResource, GroupResourceKeys] | None) -> bool:
    """Whether the running configuration is exactly the one built for ``state``."""
    return state_to_config_keys(state) == (current_config or {})


def referenced_key_names(state: EncryptionState) -> set[str]:
    """Names of every key some resource still has to read with."""
    names: set[str] = set()
    for gr_state in state.values():
        names.update(gr_state.read_key_names)
        if gr_state.write_key is not None:
            names.add(gr_state.write_key.name)
    return names
