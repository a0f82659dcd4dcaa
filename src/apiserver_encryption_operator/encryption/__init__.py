"""Encryption key state machine: key codec, desired state and configuration."""

from .config import (
    build_encryption_config,
    decode_encryption_config,
    encode_encryption_config,
    get_group_resource_keys,
    get_resource_configs,
)
from .keys import decode_key_secret, encode_key_secret, new_key
from .revision import get_api_server_revision_of_all_instances
from .state import get_desired_encryption_state
from .types import (
    EncryptionSnapshot,
    EncryptionState,
    GroupResource,
    GroupResourceKeys,
    GroupResourceState,
    KeyAndMode,
    KeyState,
    Mode,
)

__all__ = [
    "Mode",
    "GroupResource",
    "KeyAndMode",
    "KeyState",
    "GroupResourceKeys",
    "GroupResourceState",
    "EncryptionState",
    "EncryptionSnapshot",
    "decode_key_secret",
    "encode_key_secret",
    "new_key",
    "build_encryption_config",
    "encode_encryption_config",
    "decode_encryption_config",
    "get_resource_configs",
    "get_group_resource_keys",
    "get_desired_encryption_state",
    "get_api_server_revision_of_all_instances",
]
