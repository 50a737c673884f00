import httpx
import logging

from avacall.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

CUSTOMERS = "customers"
WORK_ORDERS = "work_orders"
LEADS = "leads"


class StoreClient:
    """HTTP client for the customer / work-order / lead tables.

    Talks to an Airtable-style REST API: ``GET /{table}`` with
    ``filterByFormula`` and ``maxRecords`` for lookups, ``POST /{table}`` with
    ``{"fields": {...}}`` for inserts. Each call goes through a circuit
    breaker: after 3 consecutive failures the store is skipped for 60s and an
    error dict is returned so the live call never waits on a dead store.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="record store",
        )
        if client is not None:
            self._client = client
        else:
            headers = {"Content-Type": "application/json"}
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )

    async def close(self):
        """Close the shared HTTP client. Call on shutdown."""
        await self._client.aclose()

    async def find_customer_by_phone(self, phone: str) -> dict:
        """Return {"found": bool, "record": {...}}; only the first match is consulted."""
        if not self._circuit.should_try():
            logger.warning("Store circuit breaker open, skipping customer lookup")
            return {"found": False, "error": "Record store unavailable"}
        escaped = phone.replace("'", "\\'")
        try:
            resp = await self._client.get(
                f"/{CUSTOMERS}",
                params={"filterByFormula": f"{{Phone}} = '{escaped}'", "maxRecords": 1},
            )
            resp.raise_for_status()
            self._circuit.record_success()
            records = resp.json().get("records", [])
            if not records:
                return {"found": False}
            return {"found": True, "record": records[0]}
        except Exception as e:
            self._circuit.record_failure()
            logger.error("find_customer_by_phone failed: %s", e)
            return {"found": False, "error": str(e)}

    async def create_customer(self, fields: dict) -> dict:
        return await self._create(CUSTOMERS, fields)

    async def create_work_order(self, fields: dict) -> dict:
        return await self._create(WORK_ORDERS, fields)

    async def create_lead(self, fields: dict) -> dict:
        return await self._create(LEADS, fields)

    async def _create(self, table: str, fields: dict) -> dict:
        """POST one row. Returns {"success": True, "id": ...} or {"success": False, "error": ...}."""
        if not self._circuit.should_try():
            logger.warning("Store circuit breaker open, skipping %s insert", table)
            return {"success": False, "error": "Record store unavailable"}
        try:
            resp = await self._client.post(f"/{table}", json={"fields": fields})
            resp.raise_for_status()
            self._circuit.record_success()
            body = resp.json()
            return {"success": True, "id": body.get("id", ""), "record": body}
        except Exception as e:
            self._circuit.record_failure()
            logger.error("create %s failed: %s", table, e)
            return {"success": False, "error": str(e)}
