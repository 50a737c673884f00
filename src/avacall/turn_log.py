import asyncio
import httpx
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class TurnLogClient:
    """Posts each caller turn and AI reply to an automation webhook.

    Fire-and-forget from the call's point of view: failures are retried once
    after a short backoff and then logged, never raised into the call.
    """

    def __init__(self, url: str, timeout: float = 10.0, retry_delay: float = 2.0):
        self.url = url
        self.timeout = timeout
        self.retry_delay = retry_delay

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def _post_with_retry(self, payload: dict) -> dict:
        """POST with one retry after retry_delay on failure."""
        for attempt in range(2):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.url, json=payload)
                    resp.raise_for_status()
                    return {"success": True, "status": resp.status_code}
            except Exception as e:
                if attempt == 0:
                    logger.warning("Turn log failed (attempt 1), retrying in %.0fs: %s", self.retry_delay, e)
                    await asyncio.sleep(self.retry_delay)
                else:
                    logger.error("Turn log failed after retry: %s", e)
                    return {"success": False, "error": str(e)}
        return {"success": False, "error": "unreachable"}

    async def log_turn(self, call_sid: str, caller: str, transcript: str, reply: str, state: str = "") -> dict:
        if not self.enabled:
            return {"success": False, "error": "Turn log webhook not configured"}
        return await self._post_with_retry({
            "callSid": call_sid,
            "from": caller,
            "transcript": transcript,
            "ai_reply": reply,
            "state": state,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
