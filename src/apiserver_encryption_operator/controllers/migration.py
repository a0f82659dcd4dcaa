"""Migration controller: rewrites stored objects with the current write key.

Every object of a resource is read and written back unchanged, which makes the API
server store it again encrypted with the write key. Once all objects were rewritten
the resource is recorded in the write key's migrated-resources annotation.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from kubernetes.client.exceptions import ApiException

from .. import metrics
from ..constants import (
    ANNOTATION_MIGRATED_RESOURCES,
    ANNOTATION_MIGRATED_TIMESTAMP,
    COND_STORAGE_MIGRATION_PROGRESSING,
    CONTROLLER_MIGRATION,
    REASON_POD_AND_API_STATE_NOT_CONVERGED,
)
from ..encryption.keys import encode_migrated_resources, format_timestamp, parse_migrated_resources
from ..encryption.state import grs_needing_migration, is_state_observed
from ..encryption.types import GroupResource, KeyState
from ..tracing import add_span_attribute, trace_span
from ..utils.cache import get_cached_object, make_cache_key, set_cached_object
from ..utils.conditions import progressing_condition_type, set_progressing_condition
from ..utils.errors import EncryptionError, is_not_found_or_conflict, new_aggregate, sanitize_exception
from ..utils.events import emit_migration_failed, emit_migration_started, emit_migration_succeeded
from ..utils.secrets import update_secret_annotations
from .base import BaseController


def _title(value: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^A-Za-z0-9]+", value) if part)


def migration_reason(gr: GroupResource) -> str:
    """Condition reason for a running migration, e.g. ``CoreSecrets``."""
    return _title(gr.human_group) + _title(gr.resource)


def add_migrated_resource(annotations: dict[str, str], gr: GroupResource, now: datetime) -> bool:
    """Record ``gr`` as migrated, keeping resources that were recorded before.

    The migrated timestamp is only stamped when the resource is new, so repeated
    calls leave the annotations untouched.

    Returns:
        True if the annotations changed
    """
    migrated = parse_migrated_resources(annotations.get(ANNOTATION_MIGRATED_RESOURCES, ""))
    if gr in migrated:
        return False
    annotations[ANNOTATION_MIGRATED_RESOURCES] = encode_migrated_resources(list(migrated) + [gr])
    annotations[ANNOTATION_MIGRATED_TIMESTAMP] = format_timestamp(now)
    return True


class MigrationController(BaseController):
    """Migrates every resource whose write key has not recorded its migration."""

    name = CONTROLLER_MIGRATION

    def sync(self) -> float | None:
        if self.managed_operator() is None:
            return None

        snapshot, reason = self.snapshot()
        if snapshot is None:
            self.set_progressing(True, reason, "API servers have not converged on a revision")
            return self.config.not_converged_requeue_seconds

        # migrating before every API server writes with the new key would write with the old one
        if not is_state_observed(snapshot.desired, snapshot.current_config):
            self.log_info(
                "Encryption config has not been observed by all API servers yet, retrying later",
                event="wait",
                reason=REASON_POD_AND_API_STATE_NOT_CONVERGED,
                requeue_after=self.config.not_converged_requeue_seconds,
            )
            self.set_progressing(
                True,
                REASON_POD_AND_API_STATE_NOT_CONVERGED,
                "Waiting for the encryption config to be observed by all API servers",
            )
            return self.config.not_converged_requeue_seconds

        errors: list[Exception] = []
        all_migrated = True
        for gr, write_key in grs_needing_migration(snapshot.desired).items():
            if self.is_stopping():
                all_migrated = False
                break
            try:
                if not self.migrate_group_resource(gr, write_key):
                    all_migrated = False
            except Exception as e:
                errors.append(e)

        aggregate = new_aggregate(errors)
        if aggregate is not None:
            self.set_progressing(True, "MigrationFailed", str(aggregate))
            raise aggregate
        # the storage condition stays set until every resource is migrated
        if not all_migrated:
            return None

        self.status.update_conditions(
            lambda conditions: set_progressing_condition(conditions, COND_STORAGE_MIGRATION_PROGRESSING, False)
        )
        self.set_progressing(False)
        return None

    def set_progressing(self, progressing: bool, reason: str = "", message: str = "") -> None:
        condition_type = progressing_condition_type(self.name)
        self.status.update_conditions(
            lambda conditions: set_progressing_condition(conditions, condition_type, progressing, reason, message)
        )

    def migrate_group_resource(self, gr: GroupResource, write_key: KeyState) -> bool:
        """Rewrite all objects of ``gr`` and record the migration on ``write_key``.

        Returns:
            True if the migration completed, False if it was interrupted by shutdown
        """
        self.status.update_conditions(
            lambda conditions: set_progressing_condition(
                conditions,
                COND_STORAGE_MIGRATION_PROGRESSING,
                True,
                migration_reason(gr),
                f"Storage migration is in progress for group={gr.group} resource={gr.resource}",
            )
        )
        self.log_info(
            f"Migrating {gr} to key {write_key.name}",
            event="migrate",
            reason="MigrationStarted",
            resource=str(gr),
            key=write_key.name,
        )
        emit_migration_started(self.body, str(gr), write_key.name)

        with trace_span("migrate_resource", controller=self.name, attributes={"resource": str(gr), "key.name": write_key.name}):
            try:
                completed = self.migrate_objects(gr)
            except Exception as e:
                metrics.storage_migrations_total.labels(resource=str(gr), result="error").inc()
                self.log_error(f"Migration of {gr} failed", error=e, event="migrate", reason="MigrationFailed", resource=str(gr))
                emit_migration_failed(self.body, str(gr), sanitize_exception(e))
                raise
            if not completed:
                self.log_info(f"Migration of {gr} interrupted", event="migrate", reason="MigrationInterrupted", resource=str(gr))
                return False

            now = datetime.now(timezone.utc)
            update_secret_annotations(
                self.clients.core,
                self.config.managed_namespace,
                write_key.name,
                lambda annotations: add_migrated_resource(annotations, gr, now),
            )

        metrics.storage_migrations_total.labels(resource=str(gr), result="success").inc()
        self.log_info(
            f"Migrated {gr} to key {write_key.name}",
            event="migrate",
            reason="MigrationSucceeded",
            resource=str(gr),
            key=write_key.name,
        )
        emit_migration_succeeded(self.body, str(gr), write_key.name)
        return True

    def discover_resource(self, gr: GroupResource) -> Any:
        """Find the preferred API version of ``gr``."""
        cache_key = make_cache_key("resource", "", str(gr))
        cached = get_cached_object(cache_key)
        if cached is not None:
            return cached

        candidates = [
            resource
            for resource in self.clients.dynamic.resources.search(group=gr.group, name=gr.resource)
            # subresources such as secrets/status share the name prefix only
            if "/" not in (getattr(resource, "name", "") or "")
        ]
        if not candidates:
            raise EncryptionError(f"resource {gr} is not served by the API server")
        preferred = [resource for resource in candidates if getattr(resource, "preferred", False)]
        resource = (preferred or candidates)[0]
        set_cached_object(cache_key, resource)
        return resource

    def migrate_objects(self, gr: GroupResource) -> bool:
        """Rewrite every object of ``gr`` page by page.

        Objects deleted or changed by someone else in the meantime are skipped: a
        concurrent write already used the current write key.

        Returns:
            True once all pages were processed, False if shutdown interrupted it
        """
        resource = self.discover_resource(gr)
        add_span_attribute("resource.api_version", getattr(resource, "group_version", ""))
        continue_token: str | None = None
        migrated = 0

        while True:
            if self.is_stopping():
                return False

            page = resource.get(limit=self.config.migration_page_size, _continue=continue_token)
            for item in page.items or []:
                namespace = item.metadata.namespace
                try:
                    resource.replace(body=item.to_dict(), namespace=namespace)
                except ApiException as e:
                    if is_not_found_or_conflict(e):
                        metrics.migrated_objects_total.labels(resource=str(gr), result="skipped").inc()
                        continue
                    metrics.migrated_objects_total.labels(resource=str(gr), result="error").inc()
                    raise
                metrics.migrated_objects_total.labels(resource=str(gr), result="success").inc()
                migrated += 1

            continue_token = getattr(page.metadata, "continue", None)
            if not continue_token:
                break

        self.logger.debug(f"rewrote {migrated} objects of {gr}")
        return True
