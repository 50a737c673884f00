import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, Response

from avacall import prompts, twiml
from avacall.bridge import CallBridge
from avacall.completion import CompletionClient
from avacall.config import REALTIME, get_settings, validate_config
from avacall.extraction import INTAKE_TOOL
from avacall.gateway import PersistenceGateway
from avacall.realtime import RealtimeClient
from avacall.reaper import IdleReaper
from avacall.registry import SessionRegistry
from avacall.session import CallSession
from avacall.store import StoreClient
from avacall.telephony import TelephonyClient
from avacall.turn_log import TurnLogClient
from avacall.turns import TurnHandler

load_dotenv()
validate_config()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry = SessionRegistry()
    store = StoreClient(settings.store_api_url, settings.store_api_key)
    telephony = TelephonyClient(settings.twilio_account_sid, settings.twilio_auth_token)
    completion = CompletionClient(settings.openai_api_key, model=settings.chat_model)
    gateway = PersistenceGateway(store)
    reaper = IdleReaper(
        registry,
        interval=settings.reap_interval_seconds,
        idle_timeout=settings.idle_timeout_seconds,
    )

    app.state.registry = registry
    app.state.gateway = gateway
    app.state.telephony = telephony
    app.state.turns = TurnHandler(
        registry,
        gateway,
        action_url=f"{settings.base_url}/process-speech",
        completion=completion,
        turn_log=TurnLogClient(settings.turn_log_webhook_url),
    )

    reaper.start()
    logger.info("AVA voice agent ready (mode=%s, host=%s)", settings.mode, settings.public_host)
    try:
        yield
    finally:
        await reaper.stop()
        await app.state.turns.drain()
        await store.close()
        await telephony.close()
        await completion.close()
        logger.info("AVA voice agent stopped (%d session(s) dropped)", len(registry))


app = FastAPI(title="AVA Voice Agent", lifespan=lifespan)


@app.get("/")
@app.get("/health")
async def health():
    return JSONResponse({"status": "ok", "mode": settings.mode, "sessions": len(app.state.registry)})


@app.post("/voice")
async def voice(request: Request):
    """Call-setup webhook: open a media stream, or greet inside a Gather."""
    form = await request.form()
    call_sid = form.get("CallSid", "")
    caller = form.get("From", "")
    if not call_sid:
        logger.warning("/voice without CallSid")
        return _xml(twiml.hangup_response(prompts.ERROR_APOLOGY), status_code=400)

    if settings.mode == REALTIME:
        logger.info("Incoming call %s from %s, opening media stream", call_sid, caller)
        return _xml(twiml.stream_response(settings.stream_url, {"from": caller}))
    return _xml(await app.state.turns.start_call(call_sid, caller))


@app.post("/process-speech")
async def process_speech(request: Request):
    form = await request.form()
    call_sid = form.get("CallSid", "")
    if not call_sid:
        logger.warning("/process-speech without CallSid")
        return _xml(twiml.hangup_response(prompts.ERROR_APOLOGY), status_code=400)
    try:
        xml = await app.state.turns.handle_speech(
            call_sid, form.get("From", ""), form.get("SpeechResult", ""),
        )
    except Exception as e:
        logger.exception("Turn failed for %s: %s", call_sid, e)
        return _xml(twiml.hangup_response(prompts.ERROR_APOLOGY))
    return _xml(xml)


@app.websocket("/ws/media")
async def media_stream(websocket: WebSocket):
    await websocket.accept()
    bridge = CallBridge(
        websocket,
        registry=websocket.app.state.registry,
        gateway=websocket.app.state.gateway,
        connect_peer=_connect_realtime,
        telephony=websocket.app.state.telephony,
    )
    await bridge.run()


async def _connect_realtime(session: CallSession) -> RealtimeClient:
    client = RealtimeClient(
        api_key=settings.openai_api_key,
        instructions=prompts.REALTIME_INSTRUCTIONS,
        model=settings.realtime_model,
        voice=settings.voice,
        silence_duration_ms=settings.silence_duration_ms,
        tools=[INTAKE_TOOL],
    )
    return await client.connect()


def _xml(body: str, status_code: int = 200) -> Response:
    return Response(content=body, media_type="application/xml", status_code=status_code)


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8765"))
    uvicorn.run("avacall.bot:app", host="0.0.0.0", port=port)
