"""Prune controller: deletes keys that no resource reads with anymore."""

from __future__ import annotations

from enum import Enum

from .. import metrics
from ..constants import CONTROLLER_PRUNE, FINALIZER_DELETION_PROTECTION
from ..encryption.keys import sort_recent_first
from ..encryption.state import config_to_state, group_keys, referenced_key_names
from ..encryption.types import EncryptionSnapshot, KeyState
from ..tracing import trace_span
from ..utils.errors import is_not_found, new_aggregate
from ..utils.events import emit_key_pruned
from ..utils.secrets import delete_secret, remove_finalizer
from .base import BaseController


class DeletionPhase(str, Enum):
    """Progress of deleting a key secret.

    A guarded key still carries the deletion protection finalizer. Only an
    unguarded key can be deleted.
    """

    GUARDED = "guarded"
    UNGUARDED = "unguarded"
    DELETED = "deleted"


def prune_candidates(snapshot: EncryptionSnapshot, keep: int) -> list[KeyState]:
    """Keys that can be deleted.

    A key is kept while the desired or the running configuration reads with it.
    Of the unused keys, the ``keep`` most recent of every resource are kept as well,
    e.g. to read backups restored from before a rotation.
    """
    in_use = referenced_key_names(snapshot.desired)
    in_use |= referenced_key_names(config_to_state(snapshot.current_config, group_keys(snapshot.keys)))

    candidates: list[KeyState] = []
    for _, keys in sorted(group_keys(snapshot.keys).items()):
        unused = [key for key in sort_recent_first(keys) if key.name not in in_use]
        candidates.extend(unused[keep:])
    return candidates


class PruneController(BaseController):
    """Removes unused keys beyond the retention floor."""

    name = CONTROLLER_PRUNE

    def sync(self) -> float | None:
        if self.managed_operator() is None:
            return None

        snapshot, _ = self.snapshot()
        if snapshot is None:
            return self.config.not_converged_requeue_seconds

        self.prune_keys(snapshot)
        return None

    def prune_keys(self, snapshot: EncryptionSnapshot) -> list[str]:
        """Delete unused keys.

        The deletion protection finalizer is removed first, then the secret is deleted.
        A key that is already gone counts as deleted.

        Returns:
            Names of the deleted keys
        """
        deleted: list[str] = []
        errors: list[Exception] = []

        for key in prune_candidates(snapshot, self.config.keep_number_of_secrets):
            try:
                phase = self.delete_key(key)
            except Exception as e:
                errors.append(e)
                continue

            deleted.append(key.name)
            metrics.keys_pruned_total.inc()
            self.log_info(f"Deleted unused key {key.name}", event="prune", reason="KeyPruned", key=key.name, phase=phase.value)
            emit_key_pruned(self.body, key.name)

        aggregate = new_aggregate(errors)
        if aggregate is not None:
            aggregate = aggregate.filter_out(is_not_found)
        if aggregate is not None:
            raise aggregate
        return deleted

    def delete_key(self, key: KeyState) -> DeletionPhase:
        """Move ``key`` from guarded over unguarded to deleted.

        A failure is logged with the phase that was reached and re-raised; the next
        sync resumes from there since both steps tolerate a secret that is gone.

        Returns:
            The phase reached, DeletionPhase.DELETED once the secret is gone
        """
        namespace = self.config.managed_namespace
        phase = DeletionPhase.GUARDED
        with trace_span("prune_key", controller=self.name, attributes={"key.name": key.name}):
            try:
                remove_finalizer(self.clients.core, namespace, key.name, FINALIZER_DELETION_PROTECTION)
                phase = DeletionPhase.UNGUARDED
                delete_secret(self.clients.core, namespace, key.name)
                phase = DeletionPhase.DELETED
            except Exception as e:
                if not is_not_found(e):
                    self.log_error(
                        f"Deleting key {key.name} stopped while {phase.value}",
                        error=e,
                        event="prune",
                        reason="KeyPruneFailed",
                        key=key.name,
                        phase=phase.value,
                    )
                raise
        return phase
