"""Pod state controller: records which keys every API server has observed."""

from __future__ import annotations

from datetime import datetime, timezone

from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..constants import ANNOTATION_READ_TIMESTAMP, ANNOTATION_WRITE_TIMESTAMP, CONTROLLER_POD_STATE
from ..encryption.keys import format_timestamp
from ..encryption.state import config_to_state, group_keys
from ..encryption.types import EncryptionSnapshot
from ..tracing import trace_span
from ..utils.errors import is_not_found, new_aggregate
from ..utils.events import emit_key_observed
from ..utils.secrets import update_secret_annotations
from .base import BaseController

_ANNOTATION_NAMES = {
    ANNOTATION_READ_TIMESTAMP: "read",
    ANNOTATION_WRITE_TIMESTAMP: "write",
}


def observed_annotations(snapshot: EncryptionSnapshot) -> dict[str, list[str]]:
    """Timestamp annotations each key of the running configuration should carry."""
    running = config_to_state(snapshot.current_config, group_keys(snapshot.keys))
    pending: dict[str, list[str]] = {}
    for _, gr_state in sorted(running.items()):
        for key in gr_state.read_keys:
            if key.read_timestamp is None:
                _add(pending, key.name, ANNOTATION_READ_TIMESTAMP)
        write_key = gr_state.write_key
        if write_key is not None and write_key.write_timestamp is None:
            _add(pending, write_key.name, ANNOTATION_WRITE_TIMESTAMP)
    return pending


def _add(pending: dict[str, list[str]], name: str, annotation: str) -> None:
    annotations = pending.setdefault(name, [])
    if annotation not in annotations:
        annotations.append(annotation)


class PodStateController(BaseController):
    """Stamps read and write timestamps once a configuration runs everywhere."""

    name = CONTROLLER_POD_STATE

    def sync(self) -> float | None:
        if self.managed_operator() is None:
            return None

        snapshot, _ = self.snapshot()
        if snapshot is None:
            return self.config.not_converged_requeue_seconds

        self.stamp_observed_keys(snapshot, datetime.now(timezone.utc))
        return None

    def stamp_observed_keys(self, snapshot: EncryptionSnapshot, now: datetime) -> list[str]:
        """Stamp every key of the running configuration that is not stamped yet.

        Returns:
            Names of the updated keys

        Raises:
            AggregateError: If some keys could not be updated; the others are still stamped
        """
        updated: list[str] = []
        errors: list[Exception] = []
        timestamp = format_timestamp(now)

        for name, annotations in observed_annotations(snapshot).items():

            def mutate(current: dict[str, str], annotations: list[str] = annotations) -> bool:
                changed = False
                for annotation in annotations:
                    if annotation not in current:
                        current[annotation] = timestamp
                        changed = True
                return changed

            try:
                with trace_span("stamp_key", controller=self.name, attributes={"key.name": name}):
                    changed = update_secret_annotations(self.clients.core, self.config.managed_namespace, name, mutate)
            except ApiException as e:
                if is_not_found(e):
                    self.log_warning(f"Key secret {name} not found, skipping", event="stamp", reason="KeyNotFound", key=name)
                    continue
                errors.append(e)
                continue
            except Exception as e:
                errors.append(e)
                continue

            if not changed:
                continue
            updated.append(name)
            for annotation in annotations:
                metrics.key_annotations_total.labels(annotation=_ANNOTATION_NAMES[annotation]).inc()
                emit_key_observed(self.body, name, _ANNOTATION_NAMES[annotation])
            self.log_info(
                f"Key {name} observed by all API servers",
                event="stamp",
                reason="KeyObserved",
                key=name,
                annotations=[_ANNOTATION_NAMES[a] for a in annotations],
            )

        aggregate = new_aggregate(errors)
        if aggregate is not None:
            raise aggregate
        return updated
