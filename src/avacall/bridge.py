import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from fastapi import WebSocket, WebSocketDisconnect

from avacall import prompts
from avacall.classification import is_goodbye
from avacall.errors import IntakeValidationError, RealtimeConnectError, SessionExists
from avacall.extraction import INTAKE_FUNCTION, parse_intake_call
from avacall.gateway import PersistenceGateway
from avacall.realtime import (
    AGENT_TRANSCRIPT,
    AUDIO_DELTA,
    CALLER_TRANSCRIPT,
    ERROR,
    FUNCTION_CALL_DONE,
    SPEECH_STARTED,
    RealtimeClient,
)
from avacall.registry import SessionRegistry
from avacall.session import CallSession, IntakeRecord
from avacall.telephony import TelephonyClient
from avacall.transcript import dump_line, to_timestamped_dump
from avacall.validation import normalize_phone

logger = logging.getLogger(__name__)

PeerFactory = Callable[[CallSession], Awaitable[RealtimeClient]]


class CallBridge:
    """Full-duplex relay between one Twilio media stream and one realtime AI connection.

    Lifecycle of a call:
      1. wait for the stream's ``start`` frame and register the session
      2. open the AI-backend connection (on failure: apology + hangup, no retry)
      3. run two forwarding loops, telephone -> backend and backend -> telephone,
         until either side finishes; the other is then cancelled
      4. tear down: remove the session, close the backend connection once,
         close the telephone socket

    Each loop handles its own frames one at a time in arrival order. The
    session record is only written by the backend loop.
    """

    START_TIMEOUT_S = 10.0

    def __init__(
        self,
        websocket: WebSocket,
        registry: SessionRegistry,
        gateway: PersistenceGateway,
        connect_peer: PeerFactory,
        telephony: Optional[TelephonyClient] = None,
    ):
        self.websocket = websocket
        self.registry = registry
        self.gateway = gateway
        self.connect_peer = connect_peer
        self.telephony = telephony
        self._background: set[asyncio.Task] = set()

    async def run(self):
        session = await self._await_start()
        if session is None:
            await self._close_websocket()
            return

        try:
            try:
                session.peer = await self.connect_peer(session)
            except RealtimeConnectError as e:
                logger.error("AI backend unavailable for %s: %s", session.call_sid, e)
                await self._apologize(session)
                return
            await session.peer.create_response(f"Greet the caller with: \"{prompts.GREETING}\"")
            await self._relay(session)
        finally:
            await self._teardown(session)
            await self.drain()

    async def drain(self):
        """Wait for background persistence started by this call."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ── Start handshake ──

    def _decode(self, raw: str) -> Optional[dict]:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Dropping malformed relay frame: %.80s", raw)
            return None
        if not isinstance(message, dict):
            logger.warning("Dropping non-object relay frame")
            return None
        return message

    async def _await_start(self) -> Optional[CallSession]:
        try:
            return await asyncio.wait_for(self._read_start(), timeout=self.START_TIMEOUT_S)
        except asyncio.TimeoutError:
            logger.error("No valid start frame within %.0fs, closing stream", self.START_TIMEOUT_S)
        except WebSocketDisconnect:
            logger.info("Stream disconnected before start")
        return None

    async def _read_start(self) -> Optional[CallSession]:
        while True:
            message = self._decode(await self.websocket.receive_text())
            if message is None:
                continue
            event = message.get("event")
            if event == "stop":
                logger.info("Stream stopped before start")
                return None
            if event != "start":
                continue

            start = message.get("start") or {}
            call_sid = start.get("callSid", "")
            if not call_sid:
                logger.warning("Dropping start frame without callSid")
                continue
            params = start.get("customParameters") or {}
            caller = normalize_phone(params.get("from", ""))
            try:
                session = await self.registry.create(call_sid, caller)
            except SessionExists:
                logger.error("Second stream for call %s refused", call_sid)
                return None
            session.stream_sid = start.get("streamSid") or message.get("streamSid", "")
            logger.info("Stream started: call=%s stream=%s from=%s", call_sid, session.stream_sid, caller)
            return session

    # ── Relay ──

    async def _relay(self, session: CallSession):
        inbound = asyncio.create_task(self._telephone_to_backend(session), name=f"in-{session.call_sid}")
        outbound = asyncio.create_task(self._backend_to_telephone(session), name=f"out-{session.call_sid}")
        tasks = {inbound, outbound}
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error("Relay loop %s failed: %s", task.get_name(), task.exception())

    async def _telephone_to_backend(self, session: CallSession):
        while True:
            try:
                raw = await self.websocket.receive_text()
            except WebSocketDisconnect:
                logger.info("Telephone side disconnected: %s", session.call_sid)
                return
            message = self._decode(raw)
            if message is None:
                continue

            event = message.get("event")
            if event == "media":
                payload = (message.get("media") or {}).get("payload")
                if not payload:
                    logger.warning("Dropping media frame without payload on %s", session.call_sid)
                    continue
                with session.activity():
                    session.touch()
                    await session.peer.append_audio(payload)
            elif event == "stop":
                logger.info("Stop event: %s", session.call_sid)
                return
            elif event == "mark":
                session.touch()
            else:
                logger.debug("Ignoring relay event %r on %s", event, session.call_sid)

    async def _backend_to_telephone(self, session: CallSession):
        async for event in session.peer.events():
            kind = event.get("type", "")
            with session.activity():
                session.touch()
                if kind == AUDIO_DELTA:
                    await self._send_audio(session, event.get("delta", ""))
                elif kind == SPEECH_STARTED:
                    # Caller barged in: drop audio Twilio has buffered
                    await self._send_to_telephone({"event": "clear", "streamSid": session.stream_sid})
                elif kind == CALLER_TRANSCRIPT:
                    text = (event.get("transcript") or "").strip()
                    if text:
                        session.log_turn("user", text)
                        logger.info("[%s] Caller: %s", session.call_sid, text)
                    if is_goodbye(text):
                        logger.info("Caller said goodbye, ending %s", session.call_sid)
                        return
                elif kind == AGENT_TRANSCRIPT:
                    text = (event.get("transcript") or "").strip()
                    if text:
                        session.log_turn("agent", text)
                elif kind == FUNCTION_CALL_DONE:
                    await self._handle_function_call(session, event)
                elif kind == ERROR:
                    logger.warning("AI backend error on %s: %s", session.call_sid, event.get("error"))
        logger.info("AI backend connection closed: %s", session.call_sid)

    async def _send_audio(self, session: CallSession, delta: str):
        if not delta:
            return
        await self._send_to_telephone({
            "event": "media",
            "streamSid": session.stream_sid,
            "media": {"payload": delta},
        })

    async def _send_to_telephone(self, message: dict):
        await self.websocket.send_text(json.dumps(message))

    # ── Function call ──

    async def _handle_function_call(self, session: CallSession, event: dict):
        call_id = event.get("call_id", "")
        name = event.get("name", "")
        if name != INTAKE_FUNCTION:
            logger.warning("Unknown function %r from AI backend on %s", name, session.call_sid)
            await session.peer.send_function_output(call_id, {"ok": False, "error": f"Unknown function {name}"})
            return

        if session.saved:
            logger.warning("Duplicate %s on %s ignored", INTAKE_FUNCTION, session.call_sid)
            await session.peer.send_function_output(call_id, {"ok": True, "message": "Intake already submitted."})
            return

        try:
            record = parse_intake_call(event.get("arguments", ""))
        except IntakeValidationError as e:
            logger.warning("Rejected intake on %s: %s", session.call_sid, e)
            await session.peer.send_function_output(
                call_id, {"ok": False, "error": str(e), "retryable": e.retryable},
            )
            return

        session.record = record
        session.saved = True
        self._spawn(self._persist(session.call_sid, record, session.caller_number))
        await session.peer.send_function_output(call_id, {
            "ok": True,
            "message": "Intake recorded. Tell the caller a technician will follow up shortly.",
        })

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _persist(self, call_sid: str, record: IntakeRecord, caller_number: str):
        result = await self.gateway.save(record, caller_number)
        if not result.ok:
            logger.error("Intake for %s NOT saved, needs manual follow-up: %s", call_sid, result.error)

    # ── Teardown ──

    async def _apologize(self, session: CallSession):
        if self.telephony is None:
            logger.warning("No telephony client, hanging up %s without apology", session.call_sid)
            return
        await self.telephony.hangup_with_message(session.call_sid, prompts.APOLOGY)

    async def _teardown(self, session: CallSession):
        await self.registry.discard(session.call_sid)
        await session.close_peer()
        await self._close_websocket()
        dump = to_timestamped_dump(
            session.transcript_log,
            start_time=session.start_time,
            call_sid=session.call_sid,
            phone=session.caller_number,
            final_state="saved" if session.saved else "not_saved",
        )
        logger.info(dump_line(dump))
        logger.info("Call ended: %s (saved=%s)", session.call_sid, session.saved)

    async def _close_websocket(self):
        try:
            await self.websocket.close()
        except RuntimeError as e:
            # Already closed by the peer
            logger.debug("Telephone socket close skipped: %s", e)
