import httpx
import logging

from avacall import twiml

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"


class TelephonyClient:
    """Minimal Twilio REST client: redirect a live call to new TwiML.

    Used when the AI backend can't be reached after the media stream is
    already open, which is too late to answer the webhook with a <Say>.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=TWILIO_API,
                auth=(account_sid, auth_token),
                timeout=timeout,
            )

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token)

    async def close(self):
        await self._client.aclose()

    async def hangup_with_message(self, call_sid: str, message: str) -> dict:
        """Replace the call's TwiML with a spoken message and a hangup."""
        if not self.configured:
            logger.warning("Twilio credentials not set, cannot speak apology on %s", call_sid)
            return {"success": False, "error": "Twilio not configured"}
        try:
            resp = await self._client.post(
                f"/Accounts/{self.account_sid}/Calls/{call_sid}.json",
                data={"Twiml": twiml.hangup_response(message)},
            )
            resp.raise_for_status()
            return {"success": True}
        except Exception as e:
            logger.error("hangup_with_message failed for %s: %s", call_sid, e)
            return {"success": False, "error": str(e)}
