from dataclasses import replace

import pytest
from avacall import prompts
from avacall.session import IntakeRecord
from avacall.state_machine import TRANSITIONS, Step
from avacall.states import State


class TestGreeting:
    def test_start_asks_call_type(self, machine):
        step = machine.start()
        assert step.state == State.DETERMINE_TYPE
        assert step.speak == prompts.GREETING


class TestDetermineType:
    def test_repair_routes_to_get_name(self, machine):
        step = machine.process(State.DETERMINE_TYPE, "my AC is broken, not working at all", IntakeRecord())
        assert step.state == State.GET_NAME
        assert step.record.call_type == "work_order"
        assert step.speak == prompts.GET_NAME

    def test_question_routes_to_lead_inquiry(self, machine):
        step = machine.process(State.DETERMINE_TYPE, "I have a question about pricing", IntakeRecord())
        assert step.state == State.LEAD_INQUIRY
        assert step.record.call_type == "lead"

    def test_unclear_reenters_determine_type(self, machine):
        step = machine.process(State.DETERMINE_TYPE, "hello?", IntakeRecord())
        assert step.state == State.DETERMINE_TYPE
        assert step.speak.startswith(prompts.REPROMPT_PREFIX)

    def test_empty_utterance_reprompts(self, machine):
        step = machine.process(State.DETERMINE_TYPE, "", IntakeRecord())
        assert step.state == State.DETERMINE_TYPE


class TestCollection:
    def test_valid_name_advances(self, machine):
        step = machine.process(State.GET_NAME, "John Smith", IntakeRecord(call_type="work_order"))
        assert step.state == State.GET_ADDRESS
        assert step.record.name == "John Smith"
        assert "John" in step.speak

    def test_short_name_reprompts(self, machine):
        step = machine.process(State.GET_NAME, "J", IntakeRecord())
        assert step.state == State.GET_NAME
        assert step.record.name == ""

    def test_address_stored_verbatim(self, machine):
        step = machine.process(State.GET_ADDRESS, "123 Main Street", IntakeRecord(name="John Smith"))
        assert step.state == State.GET_ISSUE
        assert step.record.address == "123 Main Street"

    def test_short_address_reprompts(self, machine):
        step = machine.process(State.GET_ADDRESS, "Main", IntakeRecord())
        assert step.state == State.GET_ADDRESS

    def test_issue_is_classified(self, machine):
        step = machine.process(State.GET_ISSUE, "AC not working, blowing warm air", IntakeRecord())
        assert step.state == State.CONFIRM
        assert step.record.issue_description == "AC not working, blowing warm air"
        assert step.record.system_type == "Cooling"
        assert step.record.priority == "Emergency"
        assert "emergency priority" in step.speak

    def test_empty_issue_reprompts(self, machine):
        step = machine.process(State.GET_ISSUE, "   ", IntakeRecord())
        assert step.state == State.GET_ISSUE


class TestConfirmAndComplete:
    def test_confirm_saves_once_and_completes(self, machine, complete_record):
        step = machine.process(State.CONFIRM, "yes", complete_record)
        assert step.state == State.COMPLETE
        assert step.save is True
        assert step.end_call is False
        assert step.speak == prompts.COMPLETE

    def test_confirm_answer_becomes_notes(self, machine, complete_record):
        step = machine.process(State.CONFIRM, "the gate code is 4512", complete_record)
        assert step.state == State.COMPLETE
        assert step.save is True
        assert step.record.notes == "the gate code is 4512"
        assert complete_record.notes == ""

    @pytest.mark.parametrize("text", ["yes", "No, that's it.", "nope", ""])
    def test_confirm_nothing_to_add_leaves_notes_empty(self, machine, complete_record, text):
        step = machine.process(State.CONFIRM, text, complete_record)
        assert step.save is True
        assert step.record.notes == ""

    def test_confirm_keeps_notes_already_collected(self, machine, complete_record):
        record = replace(complete_record, notes="dog in the yard")
        step = machine.process(State.CONFIRM, "call before coming", record)
        assert step.record.notes == "dog in the yard"

    def test_complete_ends_call(self, machine, complete_record):
        step = machine.process(State.COMPLETE, "no that's all", complete_record)
        assert step.end_call is True
        assert step.save is False


class TestGoodbye:
    @pytest.mark.parametrize("state", [State.DETERMINE_TYPE, State.GET_NAME, State.CONFIRM, State.LEAD_INQUIRY])
    def test_goodbye_ends_from_any_state(self, machine, state):
        step = machine.process(state, "goodbye", IntakeRecord())
        assert step.end_call is True
        assert step.state == state
        assert step.save is False
        assert step.speak == prompts.GOODBYE


class TestLeadInquiry:
    def test_question_needs_llm(self, machine):
        step = machine.process(State.LEAD_INQUIRY, "how much is a tune-up?", IntakeRecord(call_type="lead"))
        assert step.state == State.LEAD_INQUIRY
        assert step.needs_llm is True
        assert step.record.issue_description == "how much is a tune-up?"

    def test_first_question_is_kept(self, machine):
        record = IntakeRecord(call_type="lead", issue_description="how much is a tune-up?")
        step = machine.process(State.LEAD_INQUIRY, "do you work weekends?", record)
        assert step.record.issue_description == "how much is a tune-up?"

    def test_silence_does_not_need_llm(self, machine):
        step = machine.process(State.LEAD_INQUIRY, "", IntakeRecord(call_type="lead"))
        assert step.needs_llm is False


class TestPurity:
    def test_input_record_is_not_mutated(self, machine):
        record = IntakeRecord(call_type="work_order")
        step = machine.process(State.GET_NAME, "John Smith", record)
        assert record.name == ""
        assert step.record is not record

    def test_step_is_frozen(self):
        step = Step(state=State.GREETING)
        with pytest.raises(AttributeError):
            step.state = State.COMPLETE

    def test_every_handler_target_is_declared(self, machine):
        for state in State:
            assert state in TRANSITIONS
            assert machine.valid_transitions(state)


def test_end_to_end_work_order(machine):
    step = machine.start()
    state, record = step.state, step.record
    saves = 0
    for utterance in [
        "my AC is broken, not working at all",
        "John Smith",
        "123 Main Street",
        "AC not working, blowing warm air",
        "yes that's right",
    ]:
        step = machine.process(state, utterance, record)
        state, record = step.state, step.record
        saves += step.save

    assert state == State.COMPLETE
    assert saves == 1
    assert record.is_complete
    assert record.call_type == "work_order"
    assert record.name == "John Smith"
    assert record.address == "123 Main Street"
    assert record.system_type == "Cooling"
    assert record.priority == "Emergency"

    step = machine.process(state, "stop", record)
    assert step.end_call is True
