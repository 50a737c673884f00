import pytest
from unittest.mock import AsyncMock, MagicMock
from avacall import prompts
from avacall.gateway import SaveResult
from avacall.states import State
from avacall.turns import TurnHandler

ACTION_URL = "https://ava.example.com/process-speech"


@pytest.fixture
def gateway():
    gw = AsyncMock()
    gw.save.return_value = SaveResult(ok=True, kind="work_order", customer_id="cus1", record_id="wo1")
    return gw


@pytest.fixture
def completion():
    client = AsyncMock()
    client.answer.return_value = "A tune-up is 89 dollars."
    return client


@pytest.fixture
def handler(registry, gateway, completion):
    return TurnHandler(registry, gateway, action_url=ACTION_URL, completion=completion)


class TestStartCall:
    @pytest.mark.asyncio
    async def test_greets_inside_gather(self, handler, registry):
        xml = await handler.start_call("CA1", "512-555-1234")
        assert "<Gather" in xml
        assert f'action="{ACTION_URL}"' in xml
        assert "Are you calling to schedule service" in xml
        session = await registry.get("CA1")
        assert session.state == State.DETERMINE_TYPE
        assert session.caller_number == "+15125551234"

    @pytest.mark.asyncio
    async def test_repeated_setup_reuses_session(self, handler, registry):
        await handler.start_call("CA1", "+15125551234")
        await handler.start_call("CA1", "+15125551234")
        assert len(registry) == 1


class TestHandleSpeech:
    @pytest.mark.asyncio
    async def test_end_to_end_work_order(self, handler, registry, gateway):
        await handler.start_call("A", "+15551234")

        await handler.handle_speech("A", "+15551234", "my AC is broken, not working at all")
        assert (await registry.get("A")).state == State.GET_NAME

        await handler.handle_speech("A", "+15551234", "John Smith")
        assert (await registry.get("A")).state == State.GET_ADDRESS

        await handler.handle_speech("A", "+15551234", "123 Main Street")
        assert (await registry.get("A")).state == State.GET_ISSUE

        xml = await handler.handle_speech("A", "+15551234", "AC not working, blowing warm air")
        session = await registry.get("A")
        assert session.state == State.CONFIRM
        assert session.record.issue_description == "AC not working, blowing warm air"
        assert session.record.system_type == "Cooling"
        assert session.record.priority == "Emergency"
        assert "emergency priority" in xml

        await handler.handle_speech("A", "+15551234", "yes")
        await handler.drain()
        assert session.state == State.COMPLETE
        gateway.save.assert_awaited_once()
        record, caller = gateway.save.call_args.args
        assert record.is_complete
        assert record.address == "123 Main Street"
        assert record.notes == ""
        assert caller == "+15551234"

        xml = await handler.handle_speech("A", "+15551234", "stop")
        await handler.drain()
        assert "<Hangup/>" in xml
        assert "A" not in registry
        gateway.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unclear_intent_reprompts(self, handler, registry):
        await handler.start_call("CA1", "+15125551234")
        xml = await handler.handle_speech("CA1", "+15125551234", "umm")
        assert prompts.REPROMPT_PREFIX.replace("'", "&apos;") in xml
        assert (await registry.get("CA1")).state == State.DETERMINE_TYPE

    @pytest.mark.asyncio
    async def test_goodbye_removes_session(self, handler, registry, gateway):
        await handler.start_call("CA1", "+15125551234")
        xml = await handler.handle_speech("CA1", "+15125551234", "Goodbye!")
        assert "<Hangup/>" in xml
        assert "<Gather" not in xml
        assert len(registry) == 0
        gateway.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_call_starts_fresh(self, handler, registry):
        await handler.handle_speech("CA9", "+15125551234", "my furnace is broken")
        session = await registry.get("CA9")
        assert session.state == State.GET_NAME

    @pytest.mark.asyncio
    async def test_turn_limit_hangs_up(self, handler, registry, monkeypatch):
        monkeypatch.setattr("avacall.turns.MAX_TURNS_PER_CALL", 2)
        await handler.start_call("CA1", "+15125551234")
        await handler.handle_speech("CA1", "+15125551234", "umm")
        await handler.handle_speech("CA1", "+15125551234", "umm")
        xml = await handler.handle_speech("CA1", "+15125551234", "umm")
        assert "<Hangup/>" in xml
        assert len(registry) == 0


class TestLeadInquiry:
    @pytest.mark.asyncio
    async def test_question_answered_by_llm(self, handler, registry, completion):
        await handler.start_call("CA1", "+15125551234")
        await handler.handle_speech("CA1", "+15125551234", "I have a question about pricing")
        xml = await handler.handle_speech("CA1", "+15125551234", "how much is a tune-up")

        assert "A tune-up is 89 dollars." in xml
        system_prompt, history = completion.answer.call_args.args
        assert system_prompt == prompts.LEAD_INQUIRY_PROMPT
        assert history[-1] == {"role": "user", "content": "how much is a tune-up"}
        assert {entry["role"] for entry in history} <= {"user", "assistant"}

    @pytest.mark.asyncio
    async def test_llm_failure_uses_fallback(self, handler, completion):
        completion.answer.return_value = ""
        await handler.start_call("CA1", "+15125551234")
        await handler.handle_speech("CA1", "+15125551234", "what are your prices")
        xml = await handler.handle_speech("CA1", "+15125551234", "do you work weekends")
        assert "having trouble answering" in xml

    @pytest.mark.asyncio
    async def test_leads_not_persisted_in_turn_mode(self, handler, gateway):
        await handler.start_call("CA1", "+15125551234")
        await handler.handle_speech("CA1", "+15125551234", "I have a question")
        await handler.handle_speech("CA1", "+15125551234", "bye")
        await handler.drain()
        gateway.save.assert_not_awaited()


class TestTurnLog:
    @pytest.mark.asyncio
    async def test_each_turn_logged_in_background(self, registry, gateway):
        turn_log = MagicMock()
        turn_log.enabled = True
        turn_log.log_turn = AsyncMock(return_value={"success": True})
        handler = TurnHandler(registry, gateway, action_url=ACTION_URL, turn_log=turn_log)

        await handler.start_call("CA1", "+15125551234")
        await handler.handle_speech("CA1", "+15125551234", "my heater is broken")
        await handler.drain()

        turn_log.log_turn.assert_awaited_once()
        call_sid, caller, transcript, reply, state = turn_log.log_turn.call_args.args
        assert call_sid == "CA1"
        assert transcript == "my heater is broken"
        assert reply == prompts.GET_NAME
        assert state == "get_name"
