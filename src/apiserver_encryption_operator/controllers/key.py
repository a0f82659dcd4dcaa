"""Key minting controller: creates a new key whenever a resource needs one."""

from __future__ import annotations

from datetime import datetime, timezone

from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..constants import (
    CONTROLLER_KEY,
    REASON_NEW_EXTERNAL_REASON,
    REASON_NEW_MODE,
    REASON_NO_SECRETS,
    REASON_TIMESTAMP_TOO_OLD,
)
from ..encryption.keys import decode_key_secret, encode_key_secret, new_key
from ..encryption.types import EncryptionSnapshot, GroupResource, GroupResourceState, KeyState, Mode
from ..tracing import trace_span
from ..utils.errors import EncryptionError, KeyStateInvalidError, is_already_exists, new_aggregate, sanitize_exception
from ..utils.events import emit_key_create_failed, emit_key_created
from ..utils.secrets import create_secret, get_secret
from .base import BaseController
from .shared import get_apiserver_config, get_configured_mode, get_external_reason


def needs_new_key(
    state: GroupResourceState,
    current_mode: Mode,
    external_reason: str,
    encryption_enabled: bool,
    now: datetime,
    rotation_interval_seconds: float,
) -> tuple[int, str, bool]:
    """Decide whether a resource needs a new key.

    Args:
        state: Desired key state of the resource
        current_mode: Configured encryption mode
        external_reason: Administrator supplied reason for a new key
        encryption_enabled: Whether encryption was ever turned on
        now: Current time
        rotation_interval_seconds: Time after migration before a key is rotated

    Returns:
        ``(key_id, reason, needed)``; the new key gets an ID after ``key_id``
    """
    # more than the write key means migration has not caught up, wait before adding more keys
    if len(state.read_keys) > 1:
        return 0, "", False

    # keys are always needed unless encryption has never been turned on
    if not state.read_keys:
        return 0, REASON_NO_SECRETS, current_mode is not Mode.IDENTITY or encryption_enabled

    latest = state.read_keys[0]

    # do nothing until the latest key has been migrated to
    if latest.migrated_timestamp is None:
        return 0, "", False

    if latest.mode is not current_mode:
        return latest.key_id, REASON_NEW_MODE, True

    # encryption is off and stays off
    if latest.mode is Mode.IDENTITY:
        return 0, "", False

    if external_reason and latest.external_reason != external_reason:
        return latest.key_id, REASON_NEW_EXTERNAL_REASON, True

    # the migration timestamp also back-pressures rotation while migrations are slow
    migrated_timestamp = latest.migrated_timestamp
    if migrated_timestamp.tzinfo is None:
        migrated_timestamp = migrated_timestamp.replace(tzinfo=timezone.utc)
    age = (now - migrated_timestamp).total_seconds()
    return latest.key_id, REASON_TIMESTAMP_TOO_OLD, age > rotation_interval_seconds


class KeyController(BaseController):
    """Mints keys: on bootstrap, on mode changes, on request and on schedule."""

    name = CONTROLLER_KEY

    def sync(self) -> float | None:
        operator = self.managed_operator()
        if operator is None:
            return None

        current_mode = get_configured_mode(get_apiserver_config(self.clients.custom))
        external_reason = get_external_reason(operator)

        snapshot, _ = self.snapshot()
        if snapshot is None:
            return self.config.not_converged_requeue_seconds

        self.check_and_create_keys(snapshot, current_mode, external_reason, datetime.now(timezone.utc))
        return None

    def check_and_create_keys(
        self,
        snapshot: EncryptionSnapshot,
        current_mode: Mode,
        external_reason: str,
        now: datetime,
    ) -> list[KeyState]:
        """Create a new key for every resource that needs one.

        Returns:
            The keys that were created

        Raises:
            KeyStateInvalidError: If an existing key is in the way of a new one
            AggregateError: If creating keys failed
        """
        max_key_ids: dict[GroupResource, int] = {}
        for key in snapshot.keys:
            max_key_ids[key.group_resource] = max(max_key_ids.get(key.group_resource, 0), key.key_id)

        created: list[KeyState] = []
        errors: list[Exception] = []
        invalid: list[KeyStateInvalidError] = []
        for gr, gr_state in sorted(snapshot.desired.items()):
            key_id, reason, needed = needs_new_key(
                gr_state,
                current_mode,
                external_reason,
                snapshot.has_been_enabled,
                now,
                self.config.rotation_interval_seconds,
            )
            if not needed:
                continue

            next_key_id = max(key_id, max_key_ids.get(gr, 0)) + 1
            key = new_key(
                self.config.component,
                gr,
                next_key_id,
                current_mode,
                internal_reason=reason,
                external_reason=external_reason,
            )
            try:
                if self.create_key(key):
                    created.append(key)
            except KeyStateInvalidError as e:
                # only minting for this resource halts
                invalid.append(e)
                emit_key_create_failed(self.body, key.name, str(e))
            except Exception as e:
                errors.append(e)
                emit_key_create_failed(self.body, key.name, sanitize_exception(e))

        if invalid:
            raise KeyStateInvalidError("; ".join(str(e) for e in invalid))
        aggregate = new_aggregate(errors)
        if aggregate is not None:
            raise aggregate
        return created

    def create_key(self, key: KeyState) -> bool:
        """Create the secret of ``key``.

        Returns:
            True if it was created, False if an identical key already existed
        """
        with trace_span("create_key", controller=self.name, attributes={"key.name": key.name}):
            try:
                create_secret(self.clients.core, self.config.managed_namespace, encode_key_secret(key, self.config.managed_namespace))
            except ApiException as e:
                if is_already_exists(e):
                    self.validate_existing_key(key)
                    return False
                raise

        metrics.keys_created_total.labels(resource=str(key.group_resource)).inc()
        self.log_info(
            f"Created encryption key {key.name}",
            event="create",
            reason=key.internal_reason,
            key=key.name,
            mode=key.mode.value,
            resource=str(key.group_resource),
        )
        emit_key_created(self.body, key.name, key.internal_reason)
        return True

    def validate_existing_key(self, key: KeyState) -> None:
        """Check that an existing secret is the key we would have created.

        Raises:
            KeyStateInvalidError: If it is not
        """
        secret = get_secret(self.clients.core, self.config.managed_namespace, key.name)
        if secret is None:
            # deleted in between, the next sync creates it
            raise EncryptionError(f"secret {key.name} disappeared while creating it")

        actual = decode_key_secret(secret, self.config.component)
        if actual is None or actual.key_id != key.key_id or actual.group_resource != key.group_resource:
            raise KeyStateInvalidError(
                f"secret {key.name} is in invalid state, new keys cannot be created for encryption target"
            )
        # we made this key earlier
