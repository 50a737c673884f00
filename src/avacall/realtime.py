"""AI-backend realtime connection (OpenAI Realtime over WebSocket).

One RealtimeClient per call. ``connect()`` opens the socket and sends the
single ``session.update`` that declares audio format, voice, turn detection
and (in function-call mode) the intake tool. Sends are serialized by a lock
because both relay loops may write to the backend.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import aiohttp

from avacall.errors import RealtimeConnectError

logger = logging.getLogger(__name__)

REALTIME_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_MODEL = "gpt-4o-realtime-preview"
AUDIO_FORMAT = "g711_ulaw"

# Server -> client event types handled by the bridge
AUDIO_DELTA = "response.audio.delta"
CALLER_TRANSCRIPT = "conversation.item.input_audio_transcription.completed"
AGENT_TRANSCRIPT = "response.audio_transcript.done"
FUNCTION_CALL_DONE = "response.function_call_arguments.done"
SPEECH_STARTED = "input_audio_buffer.speech_started"
ERROR = "error"


class RealtimeClient:
    def __init__(
        self,
        api_key: str,
        instructions: str,
        model: str = DEFAULT_MODEL,
        voice: str = "alloy",
        silence_duration_ms: int = 700,
        vad_threshold: float = 0.5,
        transcription_model: str = "whisper-1",
        tools: Optional[list[dict]] = None,
        url: str = REALTIME_URL,
        http_session: Optional[aiohttp.ClientSession] = None,
        connect_timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.instructions = instructions
        self.model = model
        self.voice = voice
        self.silence_duration_ms = silence_duration_ms
        self.vad_threshold = vad_threshold
        self.transcription_model = transcription_model
        self.tools = tools or []
        self.url = url
        self.connect_timeout = connect_timeout
        self._http = http_session
        self._owns_http = http_session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._ws is None or self._ws.closed

    def session_config(self) -> dict:
        """The one session.update message sent right after connecting."""
        session = {
            "modalities": ["audio", "text"],
            "instructions": self.instructions,
            "voice": self.voice,
            "input_audio_format": AUDIO_FORMAT,
            "output_audio_format": AUDIO_FORMAT,
            "input_audio_transcription": {"model": self.transcription_model},
            "turn_detection": {
                "type": "server_vad",
                "threshold": self.vad_threshold,
                "silence_duration_ms": self.silence_duration_ms,
            },
        }
        if self.tools:
            session["tools"] = self.tools
            session["tool_choice"] = "auto"
        return {"type": "session.update", "session": session}

    async def connect(self) -> "RealtimeClient":
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        if self._http is None:
            self._http = aiohttp.ClientSession()
        try:
            self._ws = await asyncio.wait_for(
                self._http.ws_connect(
                    f"{self.url}?model={self.model}",
                    headers=headers,
                    heartbeat=20,
                    max_msg_size=2**23,
                ),
                timeout=self.connect_timeout,
            )
            await self.send_json(self.session_config())
        except Exception as e:
            await self.close()
            raise RealtimeConnectError(f"Realtime connect failed: {e}") from e
        logger.info("Connected to realtime backend (model=%s, voice=%s)", self.model, self.voice)
        return self

    async def send_json(self, payload: dict) -> None:
        if self._ws is None:
            raise RealtimeConnectError("Realtime connection is not open")
        async with self._send_lock:
            await self._ws.send_str(json.dumps(payload))

    async def append_audio(self, payload_b64: str) -> None:
        await self.send_json({"type": "input_audio_buffer.append", "audio": payload_b64})

    async def create_response(self, instructions: str = "") -> None:
        response: dict = {"modalities": ["audio", "text"]}
        if instructions:
            response["instructions"] = instructions
        await self.send_json({"type": "response.create", "response": response})

    async def send_function_output(self, call_id: str, output: dict, respond: bool = True) -> None:
        await self.send_json({
            "type": "conversation.item.create",
            "item": {
                "type": "function_call_output",
                "call_id": call_id,
                "output": json.dumps(output),
            },
        })
        if respond:
            await self.create_response()

    async def events(self) -> AsyncIterator[dict]:
        """Yield decoded server events until the socket closes.

        Frames that aren't JSON objects are logged and skipped.
        """
        if self._ws is None:
            return
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    event = json.loads(msg.data)
                except ValueError:
                    logger.warning("Dropping malformed realtime frame: %.80s", msg.data)
                    continue
                if not isinstance(event, dict):
                    logger.warning("Dropping non-object realtime frame")
                    continue
                yield event
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error("Realtime socket error: %s", self._ws.exception())
                break
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                break

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
