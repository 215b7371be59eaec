"""Unit tests for the operation executor.

Sleep and clock are injected so no test waits on real time.
"""

import threading
from datetime import datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from compoundefi.execution.base import ProgressUpdate, Signer, to_base_units
from compoundefi.execution.executor import (
    CANCELLED_ERROR,
    OperationExecutor,
    ProgressChannel,
    progress_fraction,
)
from compoundefi.execution.simulated_signer import SimulatedSigner
from compoundefi.planning.base import Operation, OperationType
from compoundefi.utils.config import Config
from compoundefi.utils.exceptions import OperationFailedError


def make_operation(protocol="amnis", amount="1.5", apr=7.0):
    return Operation(
        protocol=protocol,
        operation_type=OperationType.STAKE,
        amount=Decimal(amount),
        target_contract=f"0x{protocol}",
        entry_point=f"0x{protocol}::staking::stake",
        expected_apr=apr,
    )


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def executor(sleep):
    """Create executor with mocked sleep."""
    return OperationExecutor(base_unit_scale=100_000_000, inter_operation_delay=1.0, sleep=sleep)


@pytest.fixture
def operations():
    return [make_operation("amnis"), make_operation("thala"), make_operation("aries")]


class TestBaseUnits:
    """Test whole-token to base-unit conversion."""

    def test_to_base_units(self):
        """Test 1.5 APT is 150000000 octas."""
        assert to_base_units(Decimal("1.5"), 100_000_000) == 150_000_000

    def test_to_base_units_truncates(self):
        """Test fractions of a base unit are rounded down."""
        assert to_base_units(Decimal("0.123456789"), 100_000_000) == 12_345_678

    def test_build_args(self, executor):
        """Test the only argument is the base-unit amount as a string."""
        assert executor.build_args(make_operation(amount="600")) == ["60000000000"]

    def test_custom_scale(self):
        """Test a configured scale is used."""
        executor = OperationExecutor(base_unit_scale=1_000_000)
        assert executor.build_args(make_operation(amount="2")) == ["2000000"]


class TestProgressFraction:
    """Test progress formula."""

    def test_formula(self):
        """Test 5% + done/total * 90% before the last operation."""
        assert progress_fraction(0, 3) == pytest.approx(0.05)
        assert progress_fraction(1, 3) == pytest.approx(0.35)
        assert progress_fraction(2, 4) == pytest.approx(0.50)

    def test_last_operation_is_exactly_one(self):
        """Test progress is exactly 1.0 once all operations resolved."""
        assert progress_fraction(3, 3) == 1.0

    def test_empty_run(self):
        """Test an empty run is complete."""
        assert progress_fraction(0, 0) == 1.0


class TestExecute:
    """Test sequential execution."""

    def test_all_succeed(self, executor, operations):
        """Test all operations succeeding."""
        submit_one = Mock(return_value={"hash": "0xabc"})

        result = executor.execute(operations, submit_one)

        assert result.success is True
        assert result.succeeded_count == 3
        assert result.failed_count == 0
        assert result.summary() == "3 succeeded, 0 failed"
        assert result.operations[0].result == {"hash": "0xabc"}
        assert result.end_time is not None

    def test_kth_failure_continues(self, executor, operations):
        """Test a failing k-th operation does not stop the batch."""
        submit_one = Mock(side_effect=[{"hash": "1"}, OperationFailedError("User rejected"), {"hash": "3"}])

        result = executor.execute(operations, submit_one)

        assert submit_one.call_count == 3
        assert result.success is False
        assert result.partial is True
        assert [o.operation.protocol for o in result.operations] == ["amnis", "aries"]
        assert len(result.failed_operations) == 1
        failed = result.failed_operations[0]
        assert failed.operation.protocol == "thala"
        assert failed.error == "User rejected"
        assert failed.index == 1

    def test_all_fail(self, executor, operations):
        """Test total failure is not partial."""
        result = executor.execute(operations, Mock(side_effect=RuntimeError("network down")))

        assert result.failed_count == 3
        assert result.partial is False
        assert result.summary() == "0 succeeded, 3 failed"

    def test_sequential_order(self, executor, operations):
        """Test operations are submitted in order with base-unit args."""
        submit_one = Mock(return_value={})

        executor.execute(operations, submit_one)

        protocols = [c.args[0].protocol for c in submit_one.call_args_list]
        assert protocols == ["amnis", "thala", "aries"]
        assert submit_one.call_args_list[0].args[1] == ["150000000"]

    def test_delay_skipped_after_last(self, executor, operations, sleep):
        """Test N operations wait N-1 times."""
        executor.execute(operations, Mock(return_value={}))

        assert sleep.call_count == 2
        sleep.assert_called_with(1.0)

    def test_single_operation_no_delay(self, executor, sleep):
        """Test a single operation never waits."""
        executor.execute([make_operation()], Mock(return_value={}))
        sleep.assert_not_called()

    def test_zero_delay_not_slept(self, operations):
        """Test a zero delay never calls sleep."""
        sleep = Mock()
        executor = OperationExecutor(inter_operation_delay=0, sleep=sleep)
        executor.execute(operations, Mock(return_value={}))
        sleep.assert_not_called()

    def test_non_dict_payload_wrapped(self, executor):
        """Test non-dict signer payloads are wrapped."""
        result = executor.execute([make_operation()], Mock(return_value="0xhash"))
        assert result.operations[0].result == {"value": "0xhash"}

    def test_with_signer(self, executor, operations):
        """Test the signer adapter forwards address, entry point and args."""
        signer = SimulatedSigner(reject_addresses=["0xthala"])

        result = executor.execute(operations, executor.submit_with_signer(signer))

        assert result.summary() == "2 succeeded, 1 failed"
        assert signer.submissions[0]["entry_point"] == "0xamnis::staking::stake"
        assert signer.submissions[0]["args"] == ["150000000"]

    def test_clock_used_for_times(self, operations):
        """Test start and end times come from the injected clock."""
        t = datetime(2024, 1, 1, 12, 0)
        executor = OperationExecutor(inter_operation_delay=0, clock=lambda: t)

        result = executor.execute(operations, Mock(return_value={}))

        assert result.start_time == t
        assert result.duration == 0.0


class TestProgress:
    """Test progress reporting during execution."""

    def test_progress_sequence(self, executor, operations):
        """Test setup, per-operation and final progress values."""
        updates = []

        executor.execute(operations, Mock(return_value={}), on_progress=updates.append)

        values = [u.progress for u in updates]
        assert values[0] == pytest.approx(0.05)
        assert values[1] == pytest.approx(0.35)
        assert values[2] == pytest.approx(0.65)
        assert values[-1] == 1.0
        assert values == sorted(values)

    def test_progress_reaches_one_with_failures(self, executor, operations):
        """Test progress ends at 1.0 even when operations fail."""
        updates = []

        executor.execute(operations, Mock(side_effect=RuntimeError("x")), on_progress=updates.append)

        assert updates[-1].progress == 1.0
        assert updates[-1].status_message == "0 succeeded, 3 failed"

    def test_update_carries_operation(self, executor, operations):
        """Test per-operation updates name the protocol and index."""
        updates = []

        executor.execute(operations, Mock(return_value={}), on_progress=updates.append)

        assert updates[0].index == -1
        assert updates[1].protocol == "amnis"
        assert updates[1].operation_type == "stake"
        assert updates[2].index == 1

    def test_listener_removed_after_run(self, executor, operations):
        """Test a per-run listener is not called by later runs."""
        listener = Mock()
        executor.execute(operations, Mock(return_value={}), on_progress=listener)
        calls = listener.call_count

        executor.execute(operations, Mock(return_value={}))

        assert listener.call_count == calls

    def test_latest_is_polled_value(self, executor, operations):
        """Test the channel's latest update is available after a run."""
        executor.execute(operations, Mock(return_value={}))
        assert executor.progress.latest.progress == 1.0

    def test_failing_listener_does_not_break_run(self, executor, operations):
        """Test listener exceptions are contained."""
        result = executor.execute(
            operations, Mock(return_value={}), on_progress=Mock(side_effect=ValueError("ui gone"))
        )
        assert result.success is True


class TestProgressChannel:
    """Test ProgressChannel directly."""

    def test_never_moves_backwards(self):
        """Test a lower progress value is clamped to the previous one."""
        channel = ProgressChannel()
        channel.publish(ProgressUpdate(index=1, total=3, completed=2, progress=0.65))
        channel.publish(ProgressUpdate(index=0, total=3, completed=1, progress=0.35))

        assert channel.latest.progress == 0.65

    def test_unsubscribe(self):
        """Test unsubscribed listeners are not called."""
        channel = ProgressChannel()
        listener = Mock()
        channel.subscribe(listener)
        channel.unsubscribe(listener)

        channel.publish(ProgressUpdate(index=0, total=1, completed=1, progress=1.0))

        listener.assert_not_called()

    def test_reset(self):
        """Test reset clears the latest update."""
        channel = ProgressChannel()
        channel.publish(ProgressUpdate(index=0, total=1, completed=1, progress=1.0))
        channel.reset()
        assert channel.latest is None


class TestCancellation:
    """Test the cancel token."""

    def test_cancel_before_start(self, executor, operations):
        """Test a set token submits nothing and fails every operation."""
        cancel = threading.Event()
        cancel.set()
        submit_one = Mock()

        result = executor.execute(operations, submit_one, cancel_event=cancel)

        submit_one.assert_not_called()
        assert result.failed_count == 3
        assert all(o.error == CANCELLED_ERROR for o in result.failed_operations)

    def test_cancel_mid_run(self, executor, operations):
        """Test operations after the cancel point are never submitted."""
        cancel = threading.Event()

        def submit_one(operation, args):
            cancel.set()
            return {}

        result = executor.execute(operations, submit_one, cancel_event=cancel)

        assert result.succeeded_count == 1
        assert result.failed_count == 2
        assert [o.index for o in result.failed_operations] == [1, 2]


class TestExecutorConfig:
    """Test executor construction."""

    def test_from_config(self):
        """Test settings come from the execution section."""
        config = Config({"execution": {"base_unit_scale": 1000, "inter_operation_delay_seconds": 0}})

        executor = OperationExecutor.from_config(config)

        assert executor.base_unit_scale == 1000
        assert executor.inter_operation_delay == 0

    def test_invalid_scale(self):
        """Test a non-positive scale is rejected."""
        with pytest.raises(ValueError):
            OperationExecutor(base_unit_scale=0)

    def test_event_logger_receives_events(self, operations):
        """Test operation events are forwarded to the event logger."""
        events = Mock()
        executor = OperationExecutor(inter_operation_delay=0, event_logger=events)

        executor.execute(operations[:1], Mock(side_effect=RuntimeError("reverted")))

        event_types = [c.args[0].value for c in events.log_operation_event.call_args_list]
        assert event_types == ["operation_submitted", "operation_failed"]


class TestSigner:
    """Test the Signer base class."""

    def test_default_connected(self):
        """Test signers report connected unless overridden."""

        class Minimal(Signer):
            def submit(self, contract_address, entry_point, args):
                return {}

        assert Minimal().is_connected is True
