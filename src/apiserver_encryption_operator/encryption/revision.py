"""Revision convergence of the API server instances."""

from __future__ import annotations

from collections.abc import Iterable

from kubernetes import client

from ..constants import LABEL_REVISION
from ..utils.errors import EncryptionError


class RevisionError(EncryptionError):
    """API server instances are in a state that needs attention."""


def is_pod_ready(pod: client.V1Pod) -> bool:
    for condition in (pod.status.conditions if pod.status else None) or []:
        if condition.type == "Ready" and condition.status == "True":
            return True
    return False


def _revision_number(revision: str, what: str) -> int:
    try:
        return int(revision)
    except (TypeError, ValueError) as e:
        raise RevisionError(f"api server has invalid {what}revision {revision!r}") from e


def get_api_server_revision_of_all_instances(pods: Iterable[client.V1Pod]) -> str:
    """Return the single revision all API server instances run at.

    Converged means all running pods are ready and at the same revision, there are no
    pending pods and all succeeded or failed pods are at older revisions. ``pods`` must
    come from a live listing.

    Returns:
        The revision, or an empty string if the instances have not converged yet

    Raises:
        RevisionError: If an instance is in a state that will not resolve on its own
    """
    revisions: set[str] = set()
    failed: set[str] = set()

    for pod in pods:
        name = pod.metadata.name
        revision = (pod.metadata.labels or {}).get(LABEL_REVISION, "")
        phase = pod.status.phase if pod.status else None

        if phase == "Running":
            if not is_pod_ready(pod):
                return ""
            revisions.add(revision)
        elif phase == "Pending":
            return ""
        elif phase == "Unknown":
            raise RevisionError(f"api server pod {name} in unknown phase")
        elif phase in ("Succeeded", "Failed"):
            # an API server never exits, so a succeeded pod is as bad as a failed one
            failed.add(revision)
        else:
            raise RevisionError(f"api server pod {name} has unexpected phase {phase}")

    if len(revisions) != 1:
        return ""
    revision = revisions.pop()

    if revision in failed:
        raise RevisionError(f"api server revision {revision} has both running and failed pods")

    revision_number = _revision_number(revision, "")
    for failed_revision in sorted(failed):
        failed_number = _revision_number(failed_revision, "failed ")
        if failed_number > revision_number:
            raise RevisionError(
                f"api server has failed revision {failed_number} which is newer than running revision {revision_number}"
            )

    return revision
