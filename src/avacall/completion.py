import httpx
import logging

from avacall.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

OPENAI_URL = "https://api.openai.com/v1"
MAX_HISTORY = 10


class CompletionClient:
    """Chat-completion client for open-ended answers in explicit-turn mode.

    Only LEAD_INQUIRY turns reach the LLM; every other turn is scripted by
    the state machine. Returns "" on any failure so the caller can fall back
    to a canned line.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self._circuit = CircuitBreaker(label="chat completion")
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=OPENAI_URL,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def answer(self, system_prompt: str, history: list[dict]) -> str:
        if not self.api_key:
            logger.error("OPENAI_API_KEY not set, cannot answer")
            return ""
        if not self._circuit.should_try():
            logger.warning("Completion circuit breaker open, using fallback reply")
            return ""
        try:
            resp = await self._client.post(
                "/chat/completions",
                json={
                    "model": self.model,
                    "temperature": 0.7,
                    "max_tokens": 200,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        *history[-MAX_HISTORY:],
                    ],
                },
            )
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"] or ""
            self._circuit.record_success()
            return content.strip()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("Chat completion failed: %s", e)
            return ""
