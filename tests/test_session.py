import pytest
from unittest.mock import AsyncMock
from avacall.session import CallSession, IntakeRecord
from avacall.states import State


def test_new_session_starts_at_greeting(session):
    assert session.state == State.GREETING
    assert session.saved is False
    assert session.in_flight == 0
    assert session.transcript_log == []


def test_caller_number_is_immutable(session):
    with pytest.raises(AttributeError):
        session.caller_number = "+19999999999"
    assert session.caller_number == "+15125551234"


def test_other_fields_are_mutable(session):
    session.state = State.GET_NAME
    session.stream_sid = "MZ1"
    assert session.state == State.GET_NAME


def test_touch_and_idle_for(session):
    session.touch(now=100.0)
    assert session.idle_for(now=160.0) == 60.0


def test_activity_counts_in_flight_frames(session):
    with session.activity():
        assert session.in_flight == 1
        with session.activity():
            assert session.in_flight == 2
    assert session.in_flight == 0


def test_activity_releases_on_error(session):
    with pytest.raises(RuntimeError):
        with session.activity():
            raise RuntimeError("boom")
    assert session.in_flight == 0


def test_log_turn_records_state(session):
    session.state = State.GET_NAME
    session.log_turn("user", "John Smith")
    entry = session.transcript_log[0]
    assert entry["role"] == "user"
    assert entry["content"] == "John Smith"
    assert entry["state"] == "get_name"
    assert "timestamp" in entry


class TestClosePeer:
    @pytest.mark.asyncio
    async def test_closes_exactly_once(self, session):
        session.peer = AsyncMock()
        assert await session.close_peer() is True
        assert await session.close_peer() is False
        session.peer.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_peer(self, session):
        assert await session.close_peer() is False

    @pytest.mark.asyncio
    async def test_close_error_is_logged_not_raised(self, session):
        session.peer = AsyncMock()
        session.peer.close.side_effect = ConnectionError("gone")
        assert await session.close_peer() is True


class TestIntakeRecord:
    def test_empty_record_is_incomplete(self):
        record = IntakeRecord()
        assert not record.is_complete
        assert record.missing_fields == ["call_type", "name", "address", "issue_description"]

    def test_complete_record(self, complete_record):
        assert complete_record.is_complete
        assert complete_record.missing_fields == []

    def test_fill_keeps_collected_values(self):
        record = IntakeRecord(name="John Smith")
        record.fill(name="Jon", address="123 Main Street")
        assert record.name == "John Smith"
        assert record.address == "123 Main Street"

    def test_fill_ignores_empty_values(self):
        record = IntakeRecord()
        record.fill(name="", address="123 Main Street")
        assert record.name == ""
        assert record.address == "123 Main Street"

    def test_with_defaults_classifies_issue(self):
        record = IntakeRecord(issue_description="no heat at all, furnace is dead")
        filled = record.with_defaults()
        assert filled.priority == "Emergency"
        assert filled.system_type == "Heating"
        assert record.priority == ""

    def test_with_defaults_keeps_existing(self):
        record = IntakeRecord(issue_description="no heat", priority="Standard", system_type="Cooling")
        filled = record.with_defaults()
        assert filled.priority == "Standard"
        assert filled.system_type == "Cooling"
