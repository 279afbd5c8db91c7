import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

import httpx

from healthlake.errors import TransportError

logger = logging.getLogger(__name__)

AUTOMATION_NAME = "healthlake-upload"
DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)


class IngestClient:
    """HTTP client for the healthlake ingest API."""

    def __init__(
        self,
        server_url: str,
        api_key: str,
        client: Optional[httpx.Client] = None,
        attempts: int = 3,
        backoff: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.server_url = server_url.rstrip("/")
        self.attempts = attempts
        self.backoff = backoff
        self._sleep = sleep
        self._client = client or httpx.Client(timeout=DEFAULT_TIMEOUT)
        self._headers = {"X-API-Key": api_key, "automation-name": AUTOMATION_NAME}

    def close(self):
        self._client.close()

    def fetch_allowlist(self) -> Set[str]:
        """Names of the metrics the server currently accepts."""
        try:
            resp = self._client.get(f"{self.server_url}/v1/allowlist", headers=self._headers)
        except httpx.HTTPError as e:
            raise TransportError(f"fetching allowlist: {e}")
        if resp.status_code != 200:
            raise TransportError(f"allowlist request failed (status {resp.status_code}): {resp.text}")
        try:
            entries = resp.json()
        except ValueError as e:
            raise TransportError(f"decoding allowlist: {e}")
        return {m["metric_name"] for m in entries if m.get("enabled", True)}

    def send_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.send_raw(json.dumps(payload).encode("utf-8"))

    def send_raw(self, body: bytes) -> Dict[str, Any]:
        """POST a push payload that is already JSON-encoded; returns the ingest result."""
        resp = self._post("/v1/ingest/hae", body, "application/json")
        try:
            return resp.json()
        except ValueError:
            return {}

    def send_strength_csv(self, text: str) -> Dict[str, Any]:
        resp = self._post("/v1/ingest/alpha", text.encode("utf-8"), "text/csv")
        try:
            return resp.json()
        except ValueError:
            return {}

    def _post(self, path: str, body: bytes, content_type: str) -> httpx.Response:
        url = f"{self.server_url}{path}"
        headers = dict(self._headers, **{"Content-Type": content_type})
        last_error = None
        for attempt in range(self.attempts):
            if attempt > 0:
                delay = self.backoff * (2 ** (attempt - 1))
                logger.info("Retrying %s in %.1fs (attempt %d/%d)", path, delay, attempt + 1, self.attempts)
                self._sleep(delay)
            try:
                resp = self._client.post(url, content=body, headers=headers)
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                continue
            if resp.status_code == 200:
                return resp
            last_error = f"ingest failed (status {resp.status_code}): {resp.text}"
            # Client errors will not succeed on retry
            if 400 <= resp.status_code < 500:
                break
        raise TransportError(f"POST {path} after {attempt + 1} attempt(s): {last_error}")
