import logging
from dataclasses import dataclass, field, replace

from avacall import prompts
from avacall.classification import LEAD, WORK_ORDER, classify_call_type, is_goodbye, is_nothing_to_add
from avacall.extraction import enrich_issue
from avacall.session import IntakeRecord
from avacall.states import State
from avacall.validation import validate_address, validate_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Step:
    """Result of one transition. Inputs are never mutated; the record here is a new copy."""

    state: State
    record: IntakeRecord = field(default_factory=IntakeRecord)
    speak: str = ""
    save: bool = False
    end_call: bool = False
    needs_llm: bool = False


TRANSITIONS = {
    State.GREETING: {State.DETERMINE_TYPE},
    State.DETERMINE_TYPE: {State.DETERMINE_TYPE, State.GET_NAME, State.LEAD_INQUIRY},
    State.GET_NAME: {State.GET_NAME, State.GET_ADDRESS},
    State.GET_ADDRESS: {State.GET_ADDRESS, State.GET_ISSUE},
    State.GET_ISSUE: {State.GET_ISSUE, State.CONFIRM},
    State.CONFIRM: {State.COMPLETE},
    State.COMPLETE: {State.COMPLETE},
    State.LEAD_INQUIRY: {State.LEAD_INQUIRY},
}


class StateMachine:
    """Intake flow for explicit-turn mode.

    ``process`` is a pure function of (state, utterance, record): no I/O, no
    session mutation. The caller applies the returned Step and performs any
    side effect it asks for (save, end the call, ask the LLM).
    """

    def valid_transitions(self, state: State) -> set[State]:
        return TRANSITIONS.get(state, set())

    def start(self, record: IntakeRecord | None = None) -> Step:
        """Greeting step applied when the call connects."""
        return self.process(State.GREETING, "", record or IntakeRecord())

    def process(self, state: State, text: str, record: IntakeRecord) -> Step:
        text = (text or "").strip()
        record = replace(record)

        if state != State.GREETING and is_goodbye(text):
            return Step(state=state, record=record, speak=prompts.GOODBYE, end_call=True)

        handler = getattr(self, f"_handle_{state.value}")
        step = handler(text, record)
        if step.state not in self.valid_transitions(state):
            # Handlers only build steps from TRANSITIONS; reaching this is a bug.
            raise ValueError(f"Invalid transition {state.value} -> {step.state.value}")
        if step.state != state:
            logger.debug("Transition %s -> %s", state.value, step.state.value)
        return step

    def _advance(self, new_state: State, record: IntakeRecord, **kwargs) -> Step:
        return Step(state=new_state, record=record, speak=prompts.prompt_for(new_state, record), **kwargs)

    def _reprompt(self, state: State, record: IntakeRecord) -> Step:
        return Step(state=state, record=record, speak=prompts.reprompt_for(state, record))

    # ── State handlers ──

    def _handle_greeting(self, text: str, record: IntakeRecord) -> Step:
        return Step(
            state=State.DETERMINE_TYPE,
            record=record,
            speak=prompts.prompt_for(State.GREETING, record),
        )

    def _handle_determine_type(self, text: str, record: IntakeRecord) -> Step:
        call_type = classify_call_type(text)
        if call_type == WORK_ORDER:
            return self._advance(State.GET_NAME, replace(record, call_type=WORK_ORDER))
        if call_type == LEAD:
            return self._advance(State.LEAD_INQUIRY, replace(record, call_type=LEAD))
        return self._reprompt(State.DETERMINE_TYPE, record)

    def _handle_get_name(self, text: str, record: IntakeRecord) -> Step:
        name = validate_name(text)
        if not name:
            return self._reprompt(State.GET_NAME, record)
        return self._advance(State.GET_ADDRESS, replace(record, name=name))

    def _handle_get_address(self, text: str, record: IntakeRecord) -> Step:
        address = validate_address(text)
        if not address:
            return self._reprompt(State.GET_ADDRESS, record)
        return self._advance(State.GET_ISSUE, replace(record, address=address))

    def _handle_get_issue(self, text: str, record: IntakeRecord) -> Step:
        if not text:
            return self._reprompt(State.GET_ISSUE, record)
        return self._advance(State.CONFIRM, enrich_issue(record, text))

    def _handle_confirm(self, text: str, record: IntakeRecord) -> Step:
        # The read-back asks for anything else; a real answer goes to the technician as notes
        if text and not is_nothing_to_add(text):
            record.fill(notes=text)
        return self._advance(State.COMPLETE, record.with_defaults(), save=True)

    def _handle_complete(self, text: str, record: IntakeRecord) -> Step:
        return Step(state=State.COMPLETE, record=record, speak=prompts.GOODBYE, end_call=True)

    def _handle_lead_inquiry(self, text: str, record: IntakeRecord) -> Step:
        record.fill(issue_description=text)
        return Step(state=State.LEAD_INQUIRY, record=record, needs_llm=bool(text))
