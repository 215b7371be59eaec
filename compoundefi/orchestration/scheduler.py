"""Auto-Optimizer Scheduler - persisted, interval-driven rebalancing.

This module provides the auto-optimizer loop:
- Enable/disable with the next run time persisted across restarts
- Periodic polling (APScheduler interval job, once per minute by default)
- At most one rebalance run in flight; triggers arriving mid-run are dropped
- History and cumulative metrics recorded after every run
- Failed cycles retried after half the configured interval (single halving,
  not compounding across consecutive failures)
"""

import threading
from datetime import datetime
from typing import Any, Callable, Optional

import pytz
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from compoundefi.monitoring.notifications import NotificationSink, safe_notify
from compoundefi.monitoring.optimization_tracker import (
    DEFAULT_HISTORY_LIMIT,
    OptimizationTracker,
    RunRecord,
)
from compoundefi.orchestration.state import STATE_KEY, SchedulerSettings, SchedulerState
from compoundefi.orchestration.store import SchedulerStore
from compoundefi.orchestration.workflows import RebalanceWorkflow
from compoundefi.portfolio.base import PortfolioProvider, PortfolioSnapshot
from compoundefi.utils.exceptions import PortfolioUnavailableError, SchedulerRunError
from compoundefi.utils.logging import get_logger
from compoundefi.utils.logging_enhanced import OptimizerEventLogger, OptimizerEventType

logger = get_logger(__name__)

POLL_JOB_ID = "auto_optimizer_poll"


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


def format_time_remaining(target: Optional[datetime], now: datetime) -> str:
    """Render time until ``target`` as "Xh Ym"."""
    if target is None:
        return "Not scheduled"
    seconds = (target - now).total_seconds()
    if seconds <= 0:
        return "Imminent"
    hours, remainder = divmod(int(seconds), 3600)
    return f"{hours}h {remainder // 60}m"


class AutoOptimizer:
    """Persisted auto-optimization scheduler.

    State is loaded from the store at construction and written back after
    every mutation (toggle, settings change, run).

    Example:
        >>> optimizer = AutoOptimizer(store, workflow, portfolio)
        >>> optimizer.enable()
        >>> optimizer.start()  # polls once per minute in the background
        >>> ...
        >>> optimizer.stop()
    """

    def __init__(
        self,
        store: SchedulerStore,
        workflow: RebalanceWorkflow,
        portfolio: PortfolioProvider,
        notifier: Optional[NotificationSink] = None,
        settings: Optional[SchedulerSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        poll_interval_seconds: float = 60,
        enforce_drift_threshold: bool = False,
        event_logger: Optional[OptimizerEventLogger] = None,
    ):
        """Initialize the auto-optimizer.

        Args:
            store: Durable key-value store for SchedulerState
            workflow: Plan → Execute cycle used for each run
            portfolio: Collaborator reporting target and drift
            notifier: Optional user-visible notification sink
            settings: Default settings when nothing is stored yet
            clock: Time source (defaults to timezone-aware UTC now)
            history_limit: Maximum retained run records
            poll_interval_seconds: Seconds between due-checks
            enforce_drift_threshold: Skip runs whose reported drift is below
                the configured threshold
            event_logger: Optional structured event logger
        """
        self.store = store
        self.workflow = workflow
        self.portfolio = portfolio
        self.notifier = notifier
        self.history_limit = history_limit
        self.poll_interval_seconds = poll_interval_seconds
        self.enforce_drift_threshold = enforce_drift_threshold
        self.event_logger = event_logger
        self._clock = clock or utc_now

        self._state_lock = threading.RLock()
        self._run_guard = threading.Lock()
        self._running = False
        self._scheduler: Optional[BackgroundScheduler] = None

        self.state = self._load_state(settings)
        logger.info(
            "AutoOptimizer initialized (enabled: %s, next run: %s)",
            self.state.enabled,
            self.state.next_run_at,
        )

    @classmethod
    def from_config(cls, config: Any, store, workflow, portfolio, **kwargs) -> "AutoOptimizer":
        """Create an optimizer from the ``optimizer`` config section."""
        return cls(
            store,
            workflow,
            portfolio,
            settings=SchedulerSettings.from_config(config),
            history_limit=int(config.get("optimizer.history_limit", DEFAULT_HISTORY_LIMIT)),
            poll_interval_seconds=float(config.get("optimizer.poll_interval_seconds", 60)),
            enforce_drift_threshold=bool(config.get("optimizer.enforce_drift_threshold", False)),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def _load_state(self, default_settings: Optional[SchedulerSettings]) -> SchedulerState:
        data = self.store.load(STATE_KEY)
        if data is None:
            logger.info("No stored optimizer state, starting fresh")
            return SchedulerState(settings=default_settings or SchedulerSettings())
        state = SchedulerState.from_dict(data, default_settings)
        del state.history[self.history_limit:]
        return state

    def _persist(self) -> None:
        self.store.save(STATE_KEY, self.state.to_dict())

    def _tracker(self) -> OptimizationTracker:
        return OptimizationTracker(
            history=self.state.history,
            metrics=self.state.metrics,
            history_limit=self.history_limit,
        )

    @property
    def is_rebalancing(self) -> bool:
        return self._running

    @property
    def settings(self) -> SchedulerSettings:
        return self.state.settings

    def status_message(self, now: Optional[datetime] = None) -> str:
        now = now or self._clock()
        if not self.state.enabled:
            return "Auto-optimization disabled"
        if self._running:
            return "Portfolio rebalancing in progress"
        return f"Next optimization in {format_time_remaining(self.state.next_run_at, now)}"

    def enable(self, now: Optional[datetime] = None) -> datetime:
        """Enable scheduled runs; the first one is due one interval from now.

        Args:
            now: Enable time (defaults to the clock)

        Returns:
            The scheduled next run time
        """
        now = now or self._clock()
        with self._state_lock:
            self.state.enabled = True
            self.state.next_run_at = now + self.state.settings.interval
            self._persist()
            next_run = self.state.next_run_at

        logger.info("Auto-optimization enabled, next run at %s", next_run)
        safe_notify(
            self.notifier, "success",
            f"Auto-optimization enabled. Next run in {format_time_remaining(next_run, now)}",
        )
        self._log_event(OptimizerEventType.OPTIMIZER_ENABLED, "Auto-optimization enabled",
                        next_run_at=next_run)
        return next_run

    def disable(self) -> None:
        """Disable scheduled runs. History and metrics are kept."""
        with self._state_lock:
            self.state.enabled = False
            self.state.next_run_at = None
            self._persist()

        logger.info("Auto-optimization disabled")
        safe_notify(self.notifier, "info", "Auto-optimization disabled")
        self._log_event(OptimizerEventType.OPTIMIZER_DISABLED, "Auto-optimization disabled")

    def toggle(self) -> bool:
        """Flip enabled/disabled. Returns the new enabled flag."""
        if self.state.enabled:
            self.disable()
        else:
            self.enable()
        return self.state.enabled

    def update_settings(self, settings: Optional[SchedulerSettings] = None, **changes: Any) -> SchedulerSettings:
        """Save new settings; reschedules the next run when enabled.

        Args:
            settings: Complete replacement settings, or
            **changes: Individual fields to change

        Returns:
            The saved settings
        """
        with self._state_lock:
            new_settings = settings or self.state.settings.updated(**changes)
            self.state.settings = new_settings
            if self.state.enabled:
                self.state.next_run_at = self._clock() + new_settings.interval
            self._persist()

        logger.info("Optimizer settings saved: %s", new_settings)
        safe_notify(self.notifier, "success", "Settings saved successfully")
        self._log_event(OptimizerEventType.SETTINGS_UPDATED, "Settings saved",
                        **new_settings.to_dict())
        return new_settings

    # ------------------------------------------------------------------
    # Polling and runs
    # ------------------------------------------------------------------

    def is_due(self, now: Optional[datetime] = None) -> bool:
        """True when enabled and the next run time has been reached."""
        now = now or self._clock()
        next_run = self.state.next_run_at
        return self.state.enabled and next_run is not None and now >= next_run

    def check_and_run(self, now: Optional[datetime] = None) -> Optional[RunRecord]:
        """Poll body: run once if due.

        Returns:
            The RunRecord of the run, or None when nothing ran
        """
        if not self.is_due(now):
            return None
        return self.run_rebalance(now)

    def should_rebalance(self, snapshot: PortfolioSnapshot) -> bool:
        """Decide whether a reported drift warrants a run.

        The portfolio collaborator owns the drift decision; this check only
        applies when ``enforce_drift_threshold`` is on.
        """
        if not self.enforce_drift_threshold:
            return True
        return snapshot.drift.exceeds(self.state.settings.drift_threshold_percent)

    def run_rebalance(self, now: Optional[datetime] = None) -> Optional[RunRecord]:
        """Run one rebalance cycle now.

        Args:
            now: Run time used for bookkeeping (defaults to the clock when
                the cycle finishes)

        Returns:
            The RunRecord added to history, or None if a run was already
            in flight (the trigger is dropped)
        """
        with self._run_guard:
            if self._running:
                logger.warning("Rebalance already in progress, dropping trigger")
                return None
            self._running = True

        try:
            return self._run_cycle(now)
        finally:
            with self._run_guard:
                self._running = False

    def _run_cycle(self, now: Optional[datetime]) -> RunRecord:
        settings = self.state.settings
        max_drift = 0.0
        safe_notify(self.notifier, "info", "Portfolio rebalancing in progress...")
        self._log_event(OptimizerEventType.REBALANCE_STARTED, "Rebalance started")

        try:
            snapshot = self._snapshot(settings)
            max_drift = snapshot.drift.max_drift

            if not self.should_rebalance(snapshot):
                return self._record_skip(snapshot, settings, now)

            outcome = self.workflow.run(snapshot.recommendation)
        except Exception as e:
            return self._record_failure(e, max_drift, settings, now)

        with self._state_lock:
            finished = now or self._clock()
            record = self._tracker().record_completed_run(
                outcome.result,
                finished,
                max_drift=max_drift,
                current_apr=snapshot.current_apr,
                value_saved=snapshot.estimated_value_saved,
            )
            self.state.last_run_at = finished
            if self.state.enabled:
                self.state.next_run_at = finished + settings.interval
            self._persist()

        if outcome.result.success:
            logger.info("Rebalance completed: %s", outcome.result.summary())
            safe_notify(self.notifier, "success", "Portfolio rebalance completed successfully")
        else:
            logger.warning("Rebalance completed with failures: %s", outcome.result.summary())
            safe_notify(
                self.notifier, "warning",
                f"Portfolio rebalance completed with some issues ({outcome.result.summary()})",
            )
        self._log_event(
            OptimizerEventType.REBALANCE_COMPLETED,
            outcome.result.summary(),
            status=record.status.value,
            max_drift=max_drift,
        )
        return record

    def _snapshot(self, settings: SchedulerSettings) -> PortfolioSnapshot:
        try:
            return self.portfolio.snapshot(settings)
        except PortfolioUnavailableError:
            raise
        except Exception as e:
            raise PortfolioUnavailableError(f"Portfolio data unavailable: {e}") from e

    def _record_skip(
        self, snapshot: PortfolioSnapshot, settings: SchedulerSettings, now: Optional[datetime]
    ) -> RunRecord:
        reason = (
            f"Max drift {snapshot.drift.max_drift:.2f}% below threshold "
            f"{settings.drift_threshold_percent:.2f}%"
        )
        with self._state_lock:
            finished = now or self._clock()
            record = self._tracker().record_skipped_run(finished, reason, snapshot.drift.max_drift)
            self.state.last_run_at = finished
            if self.state.enabled:
                self.state.next_run_at = finished + settings.interval
            self._persist()

        logger.info("Rebalance skipped: %s", reason)
        safe_notify(self.notifier, "info", f"No rebalance needed: {reason}")
        self._log_event(OptimizerEventType.REBALANCE_SKIPPED, reason)
        return record

    def _record_failure(
        self,
        error: Exception,
        max_drift: float,
        settings: SchedulerSettings,
        now: Optional[datetime],
    ) -> RunRecord:
        failure = error if isinstance(error, SchedulerRunError) else SchedulerRunError(str(error))
        reason = str(failure) or error.__class__.__name__
        logger.error("Rebalance failed: %s", reason, exc_info=error)

        with self._state_lock:
            finished = now or self._clock()
            record = self._tracker().record_failed_run(finished, reason, max_drift)
            if self.state.enabled:
                self.state.next_run_at = finished + settings.retry_interval
            self._persist()

        safe_notify(self.notifier, "error", f"Rebalance failed: {reason}")
        self._log_event(
            OptimizerEventType.REBALANCE_FAILED, reason,
            error_type=error.__class__.__name__,
            retry_at=self.state.next_run_at,
        )
        return record

    # ------------------------------------------------------------------
    # Background polling
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start background polling (non-blocking)."""
        if self._scheduler is not None and self._scheduler.running:
            logger.warning("AutoOptimizer already running")
            return

        self._scheduler = BackgroundScheduler(
            timezone=pytz.utc,
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
        )
        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        self._scheduler.add_job(
            func=self.check_and_run,
            trigger=IntervalTrigger(seconds=self.poll_interval_seconds),
            id=POLL_JOB_ID,
            name=POLL_JOB_ID,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("AutoOptimizer polling every %ss", self.poll_interval_seconds)

    def stop(self) -> None:
        """Stop polling, waiting for an in-flight run to finish."""
        if self._scheduler is None or not self._scheduler.running:
            logger.warning("AutoOptimizer not running")
            return
        logger.info("Shutting down AutoOptimizer...")
        self._scheduler.shutdown(wait=True)
        self._scheduler = None
        logger.info("AutoOptimizer stopped")

    def is_running(self) -> bool:
        """True while background polling is active."""
        return self._scheduler is not None and self._scheduler.running

    def _on_job_executed(self, event) -> None:
        if event.exception:
            logger.error(
                "Job '%s' raised exception: %s",
                event.job_id,
                event.exception,
                exc_info=event.exception,
            )
        else:
            logger.debug("Job '%s' executed successfully", event.job_id)

    def _log_event(self, event_type: OptimizerEventType, message: str, **extra: Any) -> None:
        if self.event_logger is not None:
            self.event_logger.log_scheduler_event(event_type, message, **extra)
