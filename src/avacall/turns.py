import asyncio
import logging
from typing import Optional

from avacall import prompts, twiml
from avacall.completion import CompletionClient
from avacall.errors import SessionExists, SessionNotFound
from avacall.gateway import PersistenceGateway
from avacall.registry import SessionRegistry
from avacall.session import CallSession, IntakeRecord
from avacall.state_machine import StateMachine
from avacall.transcript import dump_line, to_timestamped_dump
from avacall.turn_log import TurnLogClient
from avacall.validation import normalize_phone

logger = logging.getLogger(__name__)

MAX_TURNS_PER_CALL = 30

_ROLE_FOR_LLM = {"user": "user", "agent": "assistant"}


class TurnHandler:
    """Drives an explicit-turn call: one state machine step per speech result.

    Each HTTP turn looks up the session, applies the step the machine returns,
    and answers with TwiML. Persistence and turn logging run as background
    tasks so the caller never waits on them.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        gateway: PersistenceGateway,
        action_url: str,
        machine: Optional[StateMachine] = None,
        completion: Optional[CompletionClient] = None,
        turn_log: Optional[TurnLogClient] = None,
    ):
        self.registry = registry
        self.gateway = gateway
        self.action_url = action_url
        self.machine = machine or StateMachine()
        self.completion = completion
        self.turn_log = turn_log
        self._background: set[asyncio.Task] = set()

    async def start_call(self, call_sid: str, caller: str) -> str:
        """Register the call and return the greeting inside a Gather."""
        session = await self._open(call_sid, caller)
        step = self.machine.start(session.record)
        session.state = step.state
        session.record = step.record
        session.log_turn("agent", step.speak)
        logger.info("Call started (turns): %s from %s", call_sid, session.caller_number)
        return self._gather(step.speak)

    async def handle_speech(self, call_sid: str, caller: str, speech: str) -> str:
        try:
            session = await self.registry.touch(call_sid)
        except SessionNotFound:
            # Setup webhook was missed or the session was reaped; resume at call-type question
            logger.warning("No session for %s, starting one mid-call", call_sid)
            session = await self._open(call_sid, caller)
            session.state = self.machine.start(session.record).state

        speech = (speech or "").strip()
        with session.activity():
            session.turn_count += 1
            if speech:
                session.log_turn("user", speech)
                logger.info("[%s] Caller (%s): %s", call_sid, session.state.value, speech)

            if session.turn_count > MAX_TURNS_PER_CALL:
                logger.warning("Turn limit reached on %s", call_sid)
                await self._end(session)
                return twiml.hangup_response(prompts.TURN_LIMIT)

            step = self.machine.process(session.state, speech, session.record)
            session.state = step.state
            session.record = step.record

            reply = step.speak
            if step.needs_llm:
                reply = await self._answer(session) or prompts.ANSWER_FALLBACK
            if not reply:
                reply = prompts.reprompt_for(step.state, step.record)
            session.log_turn("agent", reply)

            if step.save:
                self._save_once(session)
            self._log_turn(session, speech, reply)

            if step.end_call:
                await self._end(session)
                return twiml.hangup_response(reply)
            return self._gather(reply)

    async def drain(self):
        """Wait for background saves and turn logs still running."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Helpers ──

    async def _open(self, call_sid: str, caller: str) -> CallSession:
        try:
            return await self.registry.create(call_sid, normalize_phone(caller))
        except SessionExists:
            # Twilio retried the setup webhook
            logger.info("Session already exists for %s, reusing it", call_sid)
            return await self.registry.get(call_sid)

    def _gather(self, prompt: str) -> str:
        return twiml.gather_response(prompt, self.action_url, prompts.NO_INPUT, prompts.GOODBYE)

    async def _answer(self, session: CallSession) -> str:
        if self.completion is None:
            return ""
        history = [
            {"role": _ROLE_FOR_LLM[entry["role"]], "content": entry["content"]}
            for entry in session.transcript_log
            if entry.get("role") in _ROLE_FOR_LLM and entry.get("content")
        ]
        return await self.completion.answer(prompts.LEAD_INQUIRY_PROMPT, history)

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _save_once(self, session: CallSession):
        if session.saved:
            logger.warning("Record for %s already handed off, skipping save", session.call_sid)
            return
        session.saved = True
        self._spawn(self._persist(session.call_sid, session.record, session.caller_number))

    async def _persist(self, call_sid: str, record: IntakeRecord, caller_number: str):
        result = await self.gateway.save(record, caller_number)
        if result.ok:
            logger.info("Saved %s for %s: %s", result.kind, call_sid, result.record_id)
        else:
            logger.error("Intake for %s NOT saved, needs manual follow-up: %s", call_sid, result.error)

    def _log_turn(self, session: CallSession, speech: str, reply: str):
        if self.turn_log is None or not self.turn_log.enabled:
            return
        self._spawn(self.turn_log.log_turn(
            session.call_sid, session.caller_number, speech, reply, session.state.value,
        ))

    async def _end(self, session: CallSession):
        await self.registry.discard(session.call_sid)
        await session.close_peer()
        dump = to_timestamped_dump(
            session.transcript_log,
            start_time=session.start_time,
            call_sid=session.call_sid,
            phone=session.caller_number,
            final_state=session.state.value,
        )
        logger.info(dump_line(dump))
        logger.info("Call ended (turns): %s in %s", session.call_sid, session.state.value)
