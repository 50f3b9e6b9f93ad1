"""
Unit tests for device sessions, the connection state machine and the registry.
"""

import asyncio
import pytest
from datetime import datetime, timedelta

from gasmon.devices.reading import GasChannel, SensorReading
from gasmon.devices.registry import DeviceRegistry, DuplicateSessionError
from gasmon.devices.session import (
    ALLOWED_TRANSITIONS,
    ConnectionState,
    DeviceSession,
    InvalidTransitionError,
)


def make_reading(co2: float, stage: int = 0) -> SensorReading:
    return SensorReading(
        nh3_ppm=0.0, h2s_ppm=0.0, co2_ppm=co2, ch4_ppm=0.0,
        stage=stage, confidence=0.5, temperature=20.0, humidity=65.0,
        timestamp=datetime.now()
    )


class TestStateMachine:

    def test_initial_state(self, make_session):
        session = make_session()
        assert session.state == ConnectionState.DISCONNECTED
        assert session.retry_count == 0
        assert session.reading is None
        assert len(session.history) == 0

    def test_happy_path(self, make_session):
        session = make_session()
        for state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.READY):
            session.transition(state)
        assert session.is_ready
        assert session.is_connected

    def test_ready_only_reachable_from_connected(self, make_session):
        sources = [state for state, targets in ALLOWED_TRANSITIONS.items() if ConnectionState.READY in targets]
        assert sources == [ConnectionState.CONNECTED]

        session = make_session()
        session.transition(ConnectionState.CONNECTING)
        with pytest.raises(InvalidTransitionError):
            session.transition(ConnectionState.READY)

    def test_disconnected_only_leads_to_connecting(self, make_session):
        session = make_session()
        for state in (ConnectionState.CONNECTED, ConnectionState.READY, ConnectionState.ERROR):
            assert not session.can_transition(state)
        assert session.can_transition(ConnectionState.CONNECTING)

    def test_error_leads_to_connecting_or_disconnected(self):
        assert ALLOWED_TRANSITIONS[ConnectionState.ERROR] == frozenset({
            ConnectionState.CONNECTING, ConnectionState.DISCONNECTED
        })

    def test_transition_clears_error_and_refreshes_update(self, make_session):
        session = make_session()
        session.last_error = "Connection timeout"
        session.last_update = datetime.now() - timedelta(minutes=5)
        before = datetime.now()

        session.transition(ConnectionState.CONNECTING)

        assert session.last_error is None
        assert session.last_update >= before

    def test_invalid_transition_leaves_state(self, make_session):
        session = make_session()
        with pytest.raises(InvalidTransitionError):
            session.transition(ConnectionState.READY)
        assert session.state == ConnectionState.DISCONNECTED

    def test_state_display_text(self):
        assert ConnectionState.READY.display_text == "Receiving Data"
        assert ConnectionState.CONNECTING.display_text == "Connecting..."

    def test_active_states(self, make_session):
        session = make_session()
        assert not session.is_active
        session.transition(ConnectionState.CONNECTING)
        assert session.is_active and session.is_connecting
        session.transition(ConnectionState.ERROR)
        assert not session.is_active


class TestReadingHistory:

    def test_record_reading(self, make_session, sample_reading):
        session = make_session()
        session.last_error = "Parse error: bad"

        session.record_reading(sample_reading)

        assert session.reading is sample_reading
        assert list(session.history) == [sample_reading]
        assert session.last_error is None

    def test_history_is_bounded_fifo(self, make_session):
        session = make_session(history_capacity=50)
        for value in range(60):
            session.record_reading(make_reading(float(value)))

        assert len(session.history) == 50
        assert session.history[0].co2_ppm == 10.0
        assert session.history[-1].co2_ppm == 59.0
        assert session.reading.co2_ppm == 59.0

    def test_history_series(self, make_session):
        session = make_session(history_capacity=3)
        for value in (400.0, 500.0, 600.0, 700.0):
            session.record_reading(make_reading(value))

        assert session.history_series(GasChannel.CO2) == [500.0, 600.0, 700.0]
        assert session.history_series(GasChannel.NH3) == [0.0, 0.0, 0.0]

    def test_invalid_capacity(self, make_session):
        with pytest.raises(ValueError):
            make_session(history_capacity=0)

    def test_summary(self, make_session, sample_reading):
        session = make_session()
        session.record_reading(sample_reading)

        summary = session.summary()

        assert summary['device_id'] == 7
        assert summary['state'] == "disconnected"
        assert summary['history_length'] == 1
        assert summary['reading']['stage_text'] == "Warning"


class TestTimers:

    @pytest.mark.asyncio
    async def test_cancel_timers(self, make_session):
        session = make_session()
        session.retry_task = asyncio.create_task(asyncio.sleep(10))
        session.removal_task = asyncio.create_task(asyncio.sleep(10))
        session.connect_task = asyncio.create_task(asyncio.sleep(10))
        tasks = [session.retry_task, session.removal_task, session.connect_task]

        session.cancel_timers()
        await asyncio.sleep(0)

        assert all(task.cancelled() for task in tasks)
        assert session.retry_task is None
        assert session.removal_task is None
        assert session.connect_task is None

    @pytest.mark.asyncio
    async def test_cancel_timers_keeps_connect_task(self, make_session):
        session = make_session()
        connect_task = asyncio.create_task(asyncio.sleep(10))
        session.connect_task = connect_task
        session.retry_task = asyncio.create_task(asyncio.sleep(10))

        session.cancel_timers(include_connect=False)
        await asyncio.sleep(0)

        assert session.connect_task is connect_task
        assert not connect_task.done()
        connect_task.cancel()

    def test_cancel_timers_without_loop(self, make_session):
        session = make_session()
        session.cancel_timers()
        assert session.retry_task is None


class TestDeviceRegistry:

    def test_add_and_get(self, registry, make_session):
        session = registry.add(make_session())

        assert registry.get(session.address) is session
        assert session.address in registry
        assert len(registry) == 1

    def test_duplicate_address_rejected(self, registry, make_session):
        registry.add(make_session())
        with pytest.raises(DuplicateSessionError):
            registry.add(make_session())

    def test_remove(self, registry, make_session):
        session = registry.add(make_session())

        assert registry.remove(session.address) is session
        assert registry.remove(session.address) is None
        assert len(registry) == 0

    def test_sessions_ordered_by_device_id(self, registry, make_session):
        registry.add(make_session(address="AA:00", device_id=9))
        registry.add(make_session(address="AA:01", device_id=2))
        registry.add(make_session(address="AA:02", device_id=5))

        assert [session.device_id for session in registry.sessions()] == [2, 5, 9]

    def test_ready_sessions_and_statistics(self, registry, make_session):
        ready = registry.add(make_session(address="AA:00", device_id=1))
        for state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.READY):
            ready.transition(state)
        failed = registry.add(make_session(address="AA:01", device_id=2))
        failed.transition(ConnectionState.CONNECTING)
        failed.transition(ConnectionState.ERROR)

        assert registry.ready_sessions() == [ready]
        stats = registry.get_statistics()
        assert stats['ready'] == 1
        assert stats['error'] == 1
        assert stats['disconnected'] == 0
        assert stats['total'] == 2

    def test_empty_registry(self):
        registry = DeviceRegistry()
        assert registry.sessions() == []
        assert registry.get("missing") is None
