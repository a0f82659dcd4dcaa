"""Base controller class with common functionality for all encryption controllers."""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

import kopf

from .. import health, metrics
from ..config import OperatorConfig
from ..encryption.types import EncryptionSnapshot
from ..logging import log_controller_event
from ..tracing import trace_span
from ..utils.conditions import set_degraded_condition
from ..utils.context import with_correlation_id
from ..utils.errors import KeyStateInvalidError, sanitize_exception
from ..utils.events import emit_sync_failed
from ..utils.workqueue import WorkQueue
from .shared import Clients, OperatorStatus, get_encryption_snapshot, get_operator, should_run

# Every controller reconciles the whole cluster state, so one work item is enough
WORK_KEY = "key"


class StopSignal(Protocol):
    """Cancellation flag, e.g. the ``stopped`` flag kopf passes to daemons."""

    def is_set(self) -> bool: ...


class BaseController:
    """Single worker reconciliation loop over a deduplicating work queue.

    Subclasses implement :meth:`sync`, which returns None when done or a delay in
    seconds after which it wants to run again. Raising hands the retry to kopf, which
    restarts the worker after an exponential backoff.
    """

    name = "EncryptionController"

    def __init__(
        self,
        clients: Clients,
        config: OperatorConfig,
        status: OperatorStatus | None = None,
    ) -> None:
        self.clients = clients
        self.config = config
        self.status = status if status is not None else OperatorStatus(clients.custom)
        self.queue: WorkQueue[str] = WorkQueue(self.name)
        # consecutive failed syncs, drives the retry delay
        self.failures = 0
        self.logger = logging.getLogger(self.__module__)
        # operator object events are attached to, set by the daemon
        self.body: dict[str, Any] | None = None
        self._stopped: StopSignal | None = None

    def log_info(self, message: str, event: str = "info", reason: str = "Info", **kwargs: Any) -> None:
        """Log an info-level structured log message.

        Args:
            message: Log message
            event: Event type (default: "info")
            reason: Reason for the event (default: "Info")
            **kwargs: Additional fields to include in the log
        """
        log_controller_event(self.logger, self.name, event, reason, message, **kwargs)

    def log_warning(self, message: str, event: str = "warning", reason: str = "Warning", **kwargs: Any) -> None:
        log_controller_event(self.logger, self.name, event, reason, message, level=logging.WARNING, **kwargs)

    def log_error(
        self,
        message: str,
        error: BaseException | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()
        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__
        log_controller_event(self.logger, self.name, event, reason, message, level=logging.ERROR, **log_data)

    def is_stopping(self) -> bool:
        return self._stopped is not None and self._stopped.is_set()

    def enqueue(self) -> None:
        """Schedule a reconciliation."""
        self.queue.add(WORK_KEY)

    def sync(self) -> float | None:
        raise NotImplementedError

    def managed_operator(self) -> dict[str, Any] | None:
        """The operator object, or None when the controllers must not act."""
        operator = get_operator(self.clients.custom)
        if not should_run(operator):
            self.logger.debug(f"{self.name} skipped, operator is not managed")
            return None
        return operator

    def snapshot(self) -> tuple[EncryptionSnapshot | None, str]:
        snapshot, reason = get_encryption_snapshot(self.clients, self.config)
        if snapshot is None:
            self.log_info(
                "API servers have not converged, retrying later",
                event="wait",
                reason=reason,
                requeue_after=self.config.not_converged_requeue_seconds,
            )
        return snapshot, reason

    def report_degraded(self, error: BaseException | None) -> None:
        message = sanitize_exception(error) if error is not None else None
        self.status.update_conditions(lambda conditions: set_degraded_condition(conditions, self.name, message))

    def reconcile_with_metrics(self) -> float | None:
        """Run :meth:`sync` with metrics, tracing, logging and condition reporting."""
        start_time = time.time()
        with with_correlation_id(), trace_span(f"sync {self.name}", controller=self.name):
            try:
                requeue_after = self.sync()
            except Exception as e:
                metrics.error_total.labels(controller=self.name, error_type=type(e).__name__).inc()
                metrics.reconcile_total.labels(controller=self.name, result="error").inc()
                self.log_error("Sync failed", error=e, reason="SyncFailed")
                self.report_degraded(e)
                emit_sync_failed(self.body, self.name, sanitize_exception(e))
                raise
            else:
                result = "requeued" if requeue_after else "success"
                metrics.reconcile_total.labels(controller=self.name, result=result).inc()
                self.report_degraded(None)
                return requeue_after
            finally:
                metrics.reconcile_duration_seconds.labels(controller=self.name).observe(time.time() - start_time)

    def retry_delay(self) -> float:
        """Backoff before the next attempt after ``failures`` failed syncs."""
        exponent = max(self.failures - 1, 0)
        delay = self.config.retry_min_delay_seconds * self.config.retry_backoff ** exponent
        return min(delay, self.config.retry_max_delay_seconds)

    def process_next_work_item(self, timeout: float | None = None) -> bool:
        """Process one work item.

        Returns:
            False once the queue has been shut down

        Raises:
            kopf.TemporaryError: If the sync failed, with the backoff as delay
        """
        item, shutdown = self.queue.get(timeout=timeout)
        if shutdown:
            return False
        if item is None:
            return True

        try:
            requeue_after = self.reconcile_with_metrics()
        except KeyStateInvalidError:
            # needs manual intervention, the periodic resync looks at it again
            self.failures = 0
        except Exception as e:
            self.failures += 1
            raise kopf.TemporaryError(
                f"{self.name} sync failed: {sanitize_exception(e)}", delay=self.retry_delay()
            ) from e
        else:
            self.failures = 0
            if requeue_after:
                self.queue.add_after(item, requeue_after)
        finally:
            self.queue.done(item)
        return True

    def run(self, stopped: StopSignal, poll_interval: float = 1.0) -> None:
        """Run the worker until ``stopped`` is set or the queue shuts down.

        A failed sync ends the run with :class:`kopf.TemporaryError`. kopf starts the
        daemon again once the delay has passed and the worker counts as running meanwhile.
        """
        self._stopped = stopped
        self.log_info("Starting controller", event="start")
        health.mark_worker_running(self.name)
        # catch up on whatever happened while the worker was not running
        self.enqueue()
        retrying = False
        try:
            while not stopped.is_set():
                if not self.process_next_work_item(timeout=poll_interval):
                    break
        except kopf.TemporaryError as e:
            retrying = True
            self.log_warning(f"Retrying in {e.delay}s", event="retry", reason="SyncFailed", retry_after=e.delay)
            raise
        finally:
            if not retrying:
                health.mark_worker_stopped(self.name)
                self.log_info("Shutting down controller", event="stop")
