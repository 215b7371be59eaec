"""Unit tests for the auto-optimizer scheduler.

Time is driven by a fake clock; the APScheduler loop is only started in the
lifecycle tests, with a poll interval long enough that it never fires.
"""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
import pytz

from compoundefi.execution.executor import OperationExecutor
from compoundefi.execution.simulated_signer import SimulatedSigner
from compoundefi.monitoring.notifications import RecordingNotifier
from compoundefi.monitoring.optimization_tracker import RunStatus
from compoundefi.orchestration.scheduler import AutoOptimizer, format_time_remaining
from compoundefi.orchestration.state import STATE_KEY, SchedulerSettings
from compoundefi.orchestration.store import InMemoryStore
from compoundefi.orchestration.workflows import RebalanceWorkflow
from compoundefi.planning.base import AllocationItem, Recommendation
from compoundefi.planning.planner import AllocationPlanner
from compoundefi.planning.registry import StaticProtocolRegistry
from compoundefi.portfolio.base import (
    DriftReport,
    PortfolioProvider,
    PortfolioSnapshot,
    StaticPortfolioProvider,
)
from compoundefi.utils.exceptions import PortfolioUnavailableError

T0 = datetime(2024, 1, 1, tzinfo=pytz.utc)


def hours(n):
    return T0 + timedelta(hours=n)


class FakeClock:
    """Settable clock."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


class FailingPortfolio(PortfolioProvider):
    def snapshot(self, settings):
        raise PortfolioUnavailableError("Portfolio service unreachable")


@pytest.fixture
def recommendation():
    return Recommendation(
        id="rec-3",
        allocation=(
            AllocationItem("amnis", "Liquid staking", 40, expected_apr=8.0),
            AllocationItem("aries", "USDC lending", 30, expected_apr=6.0),
            AllocationItem("cetus", "Liquidity pool", 30, expected_apr=10.0),
        ),
        total_investment=1000,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def signer():
    return SimulatedSigner()


@pytest.fixture
def workflow(signer):
    return RebalanceWorkflow(
        AllocationPlanner(StaticProtocolRegistry()),
        OperationExecutor(inter_operation_delay=0),
        signer,
    )


@pytest.fixture
def portfolio(recommendation):
    return StaticPortfolioProvider(
        recommendation,
        current_allocation=[{"protocol": "amnis", "percentage": 100}],
        current_apr=5.0,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def optimizer(store, workflow, portfolio, notifier, clock):
    return AutoOptimizer(store, workflow, portfolio, notifier=notifier, clock=clock)


class TestEnableDisable:
    """Test toggling and scheduling."""

    def test_enable_schedules_one_interval_ahead(self, optimizer):
        """Test enabling at t=0 with a 24h interval schedules t=24h."""
        next_run = optimizer.enable(T0)

        assert next_run == hours(24)
        assert optimizer.state.enabled is True
        assert optimizer.state.next_run_at == hours(24)

    def test_enable_persists(self, optimizer, store):
        """Test enabling writes state to the store."""
        optimizer.enable()

        saved = store.load(STATE_KEY)
        assert saved["enabled"] is True
        assert saved["nextRunAt"] == hours(24).isoformat()

    def test_disable_keeps_history(self, optimizer):
        """Test disabling clears scheduling but keeps history and metrics."""
        optimizer.enable()
        optimizer.run_rebalance()

        optimizer.disable()

        assert optimizer.state.enabled is False
        assert optimizer.state.next_run_at is None
        assert len(optimizer.state.history) == 1
        assert optimizer.state.metrics.total_optimizations == 1

    def test_toggle(self, optimizer, notifier):
        """Test toggle flips the enabled flag and notifies."""
        assert optimizer.toggle() is True
        assert optimizer.toggle() is False
        assert [level for level, _ in notifier.messages] == ["success", "info"]

    def test_update_settings_reschedules_when_enabled(self, optimizer, clock):
        """Test saving settings recomputes the next run."""
        optimizer.enable()
        clock.now = hours(2)

        optimizer.update_settings(interval_hours=6)

        assert optimizer.settings.interval_hours == 6
        assert optimizer.state.next_run_at == hours(8)

    def test_update_settings_when_disabled(self, optimizer):
        """Test saving settings while disabled does not schedule."""
        optimizer.update_settings(SchedulerSettings(interval_hours=12))

        assert optimizer.state.next_run_at is None
        assert optimizer.settings.interval_hours == 12


class TestDue:
    """Test due checks and the poll body."""

    def test_not_due_before_next_run(self, optimizer):
        """Test nothing runs before next_run_at."""
        optimizer.enable(T0)

        assert optimizer.is_due(hours(23)) is False
        assert optimizer.check_and_run(hours(23)) is None
        assert optimizer.state.history == []

    def test_due_runs(self, optimizer, clock):
        """Test a due poll runs once and reschedules a full interval later."""
        optimizer.enable(T0)
        clock.now = hours(24)

        record = optimizer.check_and_run(hours(24))

        assert record.status == RunStatus.SUCCESS
        assert optimizer.state.last_run_at == hours(24)
        assert optimizer.state.next_run_at == hours(48)
        assert optimizer.check_and_run(hours(24)) is None

    def test_disabled_never_due(self, optimizer):
        """Test a disabled optimizer is never due."""
        assert optimizer.is_due(hours(1000)) is False


class TestRunOutcomes:
    """Test run bookkeeping."""

    def test_all_operations_succeed(self, optimizer, signer):
        """Test a fully successful run adds a success record and one optimization."""
        optimizer.enable(T0)

        record = optimizer.run_rebalance(hours(24))

        assert len(signer.submissions) == 3
        assert record.status == RunStatus.SUCCESS
        assert record.operation_count == 3
        assert optimizer.state.history[0] is record
        assert optimizer.state.metrics.total_optimizations == 1
        # weighted APR (0.4*8 + 0.3*6 + 0.3*10 = 8.0) minus current 5.0
        assert optimizer.state.metrics.average_apr_increase == pytest.approx(3.0)

    def test_partial_run(self, store, portfolio, clock):
        """Test a run with failed operations is recorded as partial."""
        aries = StaticProtocolRegistry().resolve("aries")
        workflow = RebalanceWorkflow(
            AllocationPlanner(StaticProtocolRegistry()),
            OperationExecutor(inter_operation_delay=0),
            SimulatedSigner(reject_addresses=[aries]),
        )
        optimizer = AutoOptimizer(store, workflow, portfolio, clock=clock)
        optimizer.enable(T0)

        record = optimizer.run_rebalance(hours(24))

        assert record.status == RunStatus.PARTIAL
        assert record.failed_count == 1
        assert optimizer.state.next_run_at == hours(48)

    def test_cycle_failure_retries_at_half_interval(self, store, workflow, clock, notifier):
        """Test a failed cycle at t=25h schedules the retry at t=37h."""
        optimizer = AutoOptimizer(store, workflow, FailingPortfolio(), notifier=notifier, clock=clock)
        optimizer.enable(T0)

        record = optimizer.run_rebalance(hours(25))

        assert record.status == RunStatus.FAILED
        assert "unreachable" in record.reason
        assert optimizer.state.next_run_at == hours(37)
        assert optimizer.state.metrics.total_optimizations == 0
        assert notifier.messages[-1][0] == "error"

    def test_backoff_does_not_compound(self, store, workflow, clock):
        """Test consecutive failures keep retrying at half the interval."""
        optimizer = AutoOptimizer(store, workflow, FailingPortfolio(), clock=clock)
        optimizer.enable(T0)

        optimizer.run_rebalance(hours(25))
        optimizer.run_rebalance(hours(37))

        assert optimizer.state.next_run_at == hours(49)

    def test_setup_failure_is_cycle_failure(self, store, portfolio, clock):
        """Test a disconnected signer fails the cycle."""
        workflow = RebalanceWorkflow(
            AllocationPlanner(StaticProtocolRegistry()),
            OperationExecutor(inter_operation_delay=0),
            SimulatedSigner(connected=False),
        )
        optimizer = AutoOptimizer(store, workflow, portfolio, clock=clock)
        optimizer.enable(T0)

        record = optimizer.run_rebalance(hours(24))

        assert record.status == RunStatus.FAILED
        assert record.reason == "Wallet not connected"
        assert optimizer.state.next_run_at == hours(36)

    def test_unexpected_portfolio_error_wrapped(self, store, workflow, clock):
        """Test arbitrary provider exceptions become failed runs."""
        portfolio = Mock(spec=PortfolioProvider)
        portfolio.snapshot.side_effect = ConnectionError("timeout")
        optimizer = AutoOptimizer(store, workflow, portfolio, clock=clock)

        record = optimizer.run_rebalance(hours(1))

        assert record.status == RunStatus.FAILED
        assert "timeout" in record.reason

    def test_history_bounded(self, store, workflow, clock):
        """Test history keeps the newest ten runs."""
        optimizer = AutoOptimizer(store, workflow, FailingPortfolio(), clock=clock)
        for i in range(12):
            optimizer.run_rebalance(hours(i))

        assert len(optimizer.state.history) == 10
        assert optimizer.state.history[0].timestamp == hours(11)

    def test_manual_run_while_disabled_does_not_schedule(self, optimizer):
        """Test a manual run leaves a disabled optimizer unscheduled."""
        optimizer.run_rebalance(hours(1))
        assert optimizer.state.next_run_at is None
        assert optimizer.state.last_run_at == hours(1)


class TestReentrancy:
    """Test at most one run in flight."""

    def test_trigger_during_run_dropped(self, store, portfolio, clock):
        """Test a poll arriving mid-run neither runs nor queues."""
        inner_results = []
        optimizer = None
        real_workflow = RebalanceWorkflow(
            AllocationPlanner(StaticProtocolRegistry()),
            OperationExecutor(inter_operation_delay=0),
            SimulatedSigner(),
        )

        def run(recommendation):
            inner_results.append(optimizer.check_and_run(hours(24)))
            return real_workflow.run(recommendation)

        workflow = Mock()
        workflow.run.side_effect = run
        optimizer = AutoOptimizer(store, workflow, portfolio, clock=clock)
        optimizer.enable(T0)

        record = optimizer.check_and_run(hours(24))

        assert record.status == RunStatus.SUCCESS
        assert inner_results == [None]
        assert workflow.run.call_count == 1
        assert len(optimizer.state.history) == 1
        assert optimizer.is_rebalancing is False


class TestDriftThreshold:
    """Test the drift seam."""

    def test_not_enforced_by_default(self, optimizer):
        """Test low drift still runs when enforcement is off."""
        snapshot = PortfolioSnapshot(recommendation=Mock(), drift=DriftReport(max_drift=0.5))
        assert optimizer.should_rebalance(snapshot) is True

    def test_enforced_skip(self, store, workflow, recommendation, clock, signer):
        """Test a below-threshold cycle is skipped and rescheduled a full interval out."""
        portfolio = StaticPortfolioProvider(
            recommendation,
            current_allocation=[
                {"protocol": "amnis", "percentage": 41},
                {"protocol": "aries", "percentage": 30},
                {"protocol": "cetus", "percentage": 29},
            ],
        )
        optimizer = AutoOptimizer(store, workflow, portfolio, clock=clock, enforce_drift_threshold=True)
        optimizer.enable(T0)

        record = optimizer.run_rebalance(hours(24))

        assert record.status == RunStatus.SKIPPED
        assert signer.submissions == []
        assert optimizer.state.next_run_at == hours(48)
        assert optimizer.state.metrics.total_optimizations == 0

    def test_enforced_run_above_threshold(self, store, workflow, portfolio, clock):
        """Test drift above threshold still runs when enforced."""
        optimizer = AutoOptimizer(store, workflow, portfolio, clock=clock, enforce_drift_threshold=True)

        record = optimizer.run_rebalance(hours(1))

        assert record.status == RunStatus.SUCCESS
        assert record.max_drift == 60


class TestPersistence:
    """Test state survives a restart."""

    def test_restart_restores_state(self, store, workflow, portfolio, clock):
        """Test a new optimizer over the same store picks up where the last left off."""
        first = AutoOptimizer(store, workflow, portfolio, clock=clock)
        first.enable(T0)
        first.update_settings(interval_hours=12)
        first.run_rebalance(hours(12))

        second = AutoOptimizer(store, workflow, portfolio, clock=clock)

        assert second.state.enabled is True
        assert second.settings.interval_hours == 12
        assert second.state.next_run_at == hours(24)
        assert second.state.history[0].status == RunStatus.SUCCESS
        assert second.state.metrics.total_optimizations == 1

    def test_fresh_store_uses_given_settings(self, store, workflow, portfolio):
        """Test default settings apply when nothing is stored."""
        optimizer = AutoOptimizer(store, workflow, portfolio, settings=SchedulerSettings(interval_hours=6))
        assert optimizer.settings.interval_hours == 6
        assert optimizer.state.enabled is False

    def test_every_mutation_saved(self, workflow, portfolio, clock):
        """Test enable, settings and runs each write to the store."""
        store = Mock(wraps=InMemoryStore())
        optimizer = AutoOptimizer(store, workflow, portfolio, clock=clock)

        optimizer.enable()
        optimizer.update_settings(drift_threshold_percent=2)
        optimizer.run_rebalance()

        assert store.save.call_count == 3


class TestEvents:
    """Test structured scheduler events."""

    def test_events_emitted(self, store, workflow, portfolio, clock):
        """Test lifecycle events go to the event logger."""
        events = Mock()
        optimizer = AutoOptimizer(store, workflow, portfolio, clock=clock, event_logger=events)

        optimizer.enable()
        optimizer.run_rebalance()

        types = [c.args[0].value for c in events.log_scheduler_event.call_args_list]
        assert types == ["optimizer_enabled", "rebalance_started", "rebalance_completed"]


class TestLifecycle:
    """Test the background poll loop."""

    def test_start_stop(self, optimizer):
        """Test start and stop the APScheduler loop."""
        optimizer.poll_interval_seconds = 3600
        optimizer.start()
        try:
            assert optimizer.is_running() is True
        finally:
            optimizer.stop()

        assert optimizer.is_running() is False

    def test_stop_when_not_running(self, optimizer):
        """Test stopping an idle optimizer is harmless."""
        optimizer.stop()
        assert optimizer.is_running() is False


class TestFormatting:
    """Test status text."""

    def test_format_time_remaining(self):
        """Test hours and minutes rendering."""
        assert format_time_remaining(hours(2) + timedelta(minutes=30), T0) == "2h 30m"
        assert format_time_remaining(None, T0) == "Not scheduled"
        assert format_time_remaining(T0, hours(1)) == "Imminent"

    def test_status_message(self, optimizer):
        """Test status reflects enabled state."""
        assert optimizer.status_message() == "Auto-optimization disabled"
        optimizer.enable(T0)
        assert optimizer.status_message(hours(1)) == "Next optimization in 23h 0m"
