"""Tests for session start, stop and recovery transitions."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from stepkeeper.models import Reading, ReadingSource, TrackingState
from stepkeeper.tracking.ledger import SessionLedger
from stepkeeper.tracking.machine import RecoveryOutcome, TrackingStateMachine
from stepkeeper.tracking.reconciler import Reconciler

NOW = datetime(2026, 1, 10, 15, 30, 0, tzinfo=UTC)


def reading(value: int, source: ReadingSource = ReadingSource.SENSOR) -> Reading:
    return Reading(source=source, cumulative=value, observed_at=NOW)


def feed(machine: TrackingStateMachine, *values: int, at: datetime = NOW) -> None:
    for value in values:
        machine.reconciler.apply(machine.state, reading(value), at)


def persisted_machine(**fields: object) -> TrackingStateMachine:
    """Machine over a state as it would be rehydrated after a process kill."""
    state = TrackingState(**fields)  # type: ignore[arg-type]
    return TrackingStateMachine(state, SessionLedger(), Reconciler())


class TestStartStop:
    def test_start_then_readings_then_stop_records_one_session(
        self, machine: TrackingStateMachine
    ) -> None:
        assert machine.start(NOW)
        feed(machine, 1000, 1010, 1025)
        session = machine.stop(NOW + timedelta(minutes=10))

        assert session is not None
        assert session.steps == 25
        assert session.start_time == NOW
        assert machine.ledger.history() == (session,)
        assert machine.ledger.total(machine.state.is_tracking, machine.state.session_steps) == 25
        assert not machine.state.is_tracking

    def test_start_while_tracking_is_noop(self, machine: TrackingStateMachine) -> None:
        machine.start(NOW)
        feed(machine, 1000, 1010)

        assert not machine.start(NOW + timedelta(minutes=1))
        assert machine.state.session_steps == 10
        assert machine.state.session_start_time == NOW

    def test_stop_while_idle_is_noop(self, machine: TrackingStateMachine) -> None:
        assert machine.stop(NOW) is None
        assert len(machine.ledger) == 0

    def test_empty_session_is_not_recorded(self, machine: TrackingStateMachine) -> None:
        machine.start(NOW, reading(1000))
        assert machine.stop(NOW + timedelta(minutes=5)) is None
        assert len(machine.ledger) == 0

    def test_fresh_reading_becomes_baseline(self, machine: TrackingStateMachine) -> None:
        machine.start(NOW, reading(1000, ReadingSource.PROVIDER))
        feed(machine, 1030)

        assert machine.state.session_baseline == 1000
        assert machine.state.session_steps == 30

    def test_restart_gets_independent_baseline(self, machine: TrackingStateMachine) -> None:
        machine.start(NOW, reading(1000))
        feed(machine, 1050)
        machine.stop(NOW + timedelta(minutes=5))

        # Walking while idle must not leak into the next session
        feed(machine, 1400, at=NOW + timedelta(minutes=30))
        machine.start(NOW + timedelta(hours=1), reading(1500))
        feed(machine, 1520, at=NOW + timedelta(hours=1))

        assert machine.state.session_baseline == 1500
        assert machine.state.session_steps == 20
        assert machine.ledger.lifetime_total == 50

    def test_recent_observation_is_reused_as_baseline(self, machine: TrackingStateMachine) -> None:
        feed(machine, 800)
        machine.start(NOW + timedelta(seconds=30))

        assert machine.state.session_baseline == 800

    def test_old_observation_leaves_baseline_pending(self, machine: TrackingStateMachine) -> None:
        feed(machine, 800)
        machine.start(NOW + timedelta(minutes=10))

        assert machine.state.session_baseline is None
        feed(machine, 900, 905)
        assert machine.state.session_steps == 5


class TestRecovery:
    def test_idle_state_needs_no_recovery(self, machine: TrackingStateMachine) -> None:
        assert machine.recover(NOW, None) is RecoveryOutcome.NOT_NEEDED

    def test_gap_is_attributed_to_session(self) -> None:
        machine = persisted_machine(
            is_tracking=True,
            session_start_time=NOW - timedelta(hours=1),
            session_baseline=100,
            last_observed_cumulative=100,
            session_steps=50,
        )

        outcome = machine.recover(NOW, reading(180, ReadingSource.RECOVERY))

        assert outcome is RecoveryOutcome.GAP_ATTRIBUTED
        assert machine.state.session_steps == 130
        assert machine.state.is_tracking

    def test_recovery_without_reading_waits_for_first_reading(self) -> None:
        machine = persisted_machine(
            is_tracking=True,
            session_start_time=NOW - timedelta(hours=1),
            session_baseline=100,
            last_observed_cumulative=150,
            session_steps=50,
        )

        assert machine.recover(NOW, None) is RecoveryOutcome.AWAITING_READING
        feed(machine, 170)
        assert machine.state.session_steps == 70

    def test_lower_reading_on_recovery_is_a_reset(self) -> None:
        machine = persisted_machine(
            is_tracking=True,
            session_start_time=NOW - timedelta(hours=1),
            session_baseline=5000,
            last_observed_cumulative=5200,
            session_steps=200,
        )

        machine.recover(NOW, reading(12))

        assert machine.state.session_steps == 200
        assert machine.state.is_tracking

    def test_stale_session_is_closed_into_history(self) -> None:
        start = NOW - timedelta(hours=13)
        checkpoint = start + timedelta(hours=2)
        machine = persisted_machine(
            is_tracking=True,
            session_start_time=start,
            session_baseline=100,
            last_observed_cumulative=400,
            last_checkpoint_time=checkpoint,
            session_steps=300,
        )

        outcome = machine.recover(NOW, reading(900))

        assert outcome is RecoveryOutcome.STALE_CLOSED
        assert not machine.state.is_tracking
        (session,) = machine.ledger.history()
        assert session.steps == 300
        assert session.start_time == start
        assert session.end_time == checkpoint

    def test_stale_session_without_checkpoint_ends_now(self) -> None:
        start = NOW - timedelta(hours=20)
        machine = persisted_machine(
            is_tracking=True,
            session_start_time=start,
            session_baseline=100,
            session_steps=10,
        )

        machine.recover(NOW, None)

        assert machine.ledger.history()[0].end_time == NOW

    def test_baseline_less_session_restarts(self) -> None:
        machine = persisted_machine(
            is_tracking=True,
            session_start_time=NOW - timedelta(minutes=30),
        )

        outcome = machine.recover(NOW, reading(4000))

        assert outcome is RecoveryOutcome.RESTARTED
        assert machine.state.is_tracking
        assert machine.state.session_start_time == NOW
        assert machine.state.session_baseline == 4000
        assert machine.state.session_steps == 0

    def test_tracking_without_start_time_resets_to_idle(self) -> None:
        machine = persisted_machine(is_tracking=True, session_baseline=100, session_steps=20)

        assert machine.recover(NOW, None) is RecoveryOutcome.INCONSISTENT_RESET
        assert not machine.state.is_tracking
        assert machine.state.session_steps == 0
