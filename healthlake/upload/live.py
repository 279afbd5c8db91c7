"""Client for the Health Auto Export TCP server.

The server speaks newline-delimited JSON-RPC 2.0 and closes the socket
after each response, so every call opens a fresh connection and reads
until EOF.
"""

import json
import logging
import socket
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from healthlake.errors import TransportError
from healthlake.timeutil import format_hae_time

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9000
DEFAULT_TIMEOUT = 120.0
MAX_RETRIES = 3


@dataclass(frozen=True)
class LiveMetric:
    name: str
    aggregate: bool = False  # daily summary instead of raw samples


# Queried one metric per request; asking for everything at once overwhelms the server.
# basal_energy_burned is left out: several MB per day of estimated values.
LIVE_METRICS: List[LiveMetric] = [
    LiveMetric("heart_rate"),
    LiveMetric("resting_heart_rate"),
    LiveMetric("heart_rate_variability"),
    LiveMetric("blood_oxygen_saturation"),
    LiveMetric("respiratory_rate"),
    LiveMetric("vo2_max"),
    LiveMetric("sleep_analysis"),
    LiveMetric("apple_sleeping_wrist_temperature"),
    LiveMetric("weight_body_mass"),
    LiveMetric("body_fat_percentage"),
    LiveMetric("active_energy", aggregate=True),
    LiveMetric("apple_exercise_time", aggregate=True),
]


class LiveSourceClient:
    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        probe_attempts: int = 10,
        probe_interval: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.probe_attempts = probe_attempts
        self.probe_interval = probe_interval
        self._sleep = sleep
        self._next_id = 0

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Run one callTool request and return its ``result`` (None when empty)."""
        self._next_id += 1
        request = {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": "callTool",
            "params": {"name": name, "arguments": arguments},
        }
        data = json.dumps(request).encode("utf-8") + b"\n"
        chunks = []
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout) as conn:
                conn.sendall(data)
                while True:
                    chunk = conn.recv(65536)
                    if not chunk:
                        break
                    chunks.append(chunk)
        except OSError as e:
            raise TransportError(f"calling {name} on {self.address}: {e}")

        raw = b"".join(chunks)
        if not raw.strip():
            raise TransportError(f"empty response from {self.address}")
        try:
            response = json.loads(raw)
        except ValueError as e:
            raise TransportError(f"parsing response from {self.address}: {e}")
        if not isinstance(response, dict):
            raise TransportError(
                f"unexpected response from {self.address}: expected a JSON object, got {type(response).__name__}"
            )
        error = response.get("error")
        if error:
            raise TransportError(f"live source error {error.get('code')}: {error.get('message')}")
        return response.get("result")

    def query_metrics(self, start: datetime, end: datetime, metric: str = "", aggregate: bool = False):
        args = {
            "start": format_hae_time(start),
            "end": format_hae_time(end),
            "aggregate": aggregate,
        }
        if metric:
            args["metrics"] = metric
        return self.call_tool("health_metrics", args)

    def query_workouts(self, start: datetime, end: datetime):
        return self.call_tool(
            "workouts",
            {
                "start": format_hae_time(start),
                "end": format_hae_time(end),
                "includeMetadata": True,
                "includeRoutes": True,
                "metadataAggregation": "minutes",
            },
        )

    def wait_for_server(self) -> bool:
        """Poll until the server accepts connections again."""
        for attempt in range(self.probe_attempts):
            try:
                with socket.create_connection((self.host, self.port), timeout=2.0):
                    return True
            except OSError:
                logger.info("Waiting for live source %s (attempt %d)", self.address, attempt + 1)
                self._sleep(self.probe_interval)
        return False

    def _with_retry(self, what: str, call: Callable[[], Any]) -> Any:
        last_error: Optional[TransportError] = None
        for attempt in range(MAX_RETRIES):
            if attempt > 0:
                logger.info("Retrying %s (attempt %d)", what, attempt + 1)
                if not self.wait_for_server():
                    raise TransportError(f"live source {self.address} did not come back")
            try:
                return call()
            except TransportError as e:
                last_error = e
                logger.warning("Query %s failed, will retry: %s", what, e)
        raise last_error

    def query_metrics_with_retry(self, start: datetime, end: datetime, metric: str = "", aggregate: bool = False):
        return self._with_retry(metric or "metrics", lambda: self.query_metrics(start, end, metric, aggregate))

    def query_workouts_with_retry(self, start: datetime, end: datetime):
        return self._with_retry("workouts", lambda: self.query_workouts(start, end))
