import pytest
from avacall.registry import SessionRegistry
from avacall.session import CallSession, IntakeRecord
from avacall.state_machine import StateMachine


@pytest.fixture
def session():
    return CallSession(call_sid="CA123", caller_number="+15125551234")


@pytest.fixture
def machine():
    return StateMachine()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def complete_record():
    return IntakeRecord(
        call_type="work_order",
        name="John Smith",
        address="123 Main Street",
        issue_description="AC not working, blowing warm air",
        system_type="Cooling",
        priority="Emergency",
    )
