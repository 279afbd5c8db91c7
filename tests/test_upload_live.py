import json
import socket
import threading

import pytest

from conftest import utc
from healthlake.errors import TransportError
from healthlake.upload.live import LiveSourceClient


class FakeLiveServer:
    """One-response-per-connection TCP server speaking newline-delimited JSON-RPC."""

    def __init__(self, reply):
        self.reply = reply
        self.requests = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(5)
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self.serve, daemon=True)
        self.thread.start()

    def serve(self):
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            with conn:
                buf = b""
                while not buf.endswith(b"\n"):
                    chunk = conn.recv(4096)
                    if not chunk:
                        break
                    buf += chunk
                if not buf:
                    continue
                request = json.loads(buf)
                self.requests.append(request)
                conn.sendall(json.dumps(self.reply(request)).encode())

    def close(self):
        self.sock.close()


@pytest.fixture
def server():
    servers = []

    def start(reply):
        s = FakeLiveServer(reply)
        servers.append(s)
        return s

    yield start
    for s in servers:
        s.close()


def test_call_tool_round_trip(server):
    srv = server(lambda req: {"jsonrpc": "2.0", "id": req["id"], "result": {"data": {"metrics": [{"name": "vo2_max"}]}}})
    client = LiveSourceClient("127.0.0.1", srv.port, timeout=5)

    result = client.query_metrics(utc(2024, 3, 1), utc(2024, 3, 8), "vo2_max")
    assert result == {"data": {"metrics": [{"name": "vo2_max"}]}}

    (request,) = srv.requests
    assert request["jsonrpc"] == "2.0"
    assert request["method"] == "callTool"
    assert request["params"]["name"] == "health_metrics"
    assert request["params"]["arguments"] == {
        "start": "2024-03-01 00:00:00 +0000",
        "end": "2024-03-08 00:00:00 +0000",
        "aggregate": False,
        "metrics": "vo2_max",
    }


def test_workouts_query_arguments(server):
    srv = server(lambda req: {"jsonrpc": "2.0", "id": req["id"], "result": None})
    client = LiveSourceClient("127.0.0.1", srv.port, timeout=5)
    assert client.query_workouts(utc(2024, 3, 1), utc(2024, 3, 8)) is None
    args = srv.requests[0]["params"]["arguments"]
    assert args["includeRoutes"] is True
    assert args["metadataAggregation"] == "minutes"


def test_rpc_error(server):
    srv = server(lambda req: {"jsonrpc": "2.0", "id": req["id"], "error": {"code": -32000, "message": "busy"}})
    client = LiveSourceClient("127.0.0.1", srv.port, timeout=5)
    with pytest.raises(TransportError, match="busy"):
        client.call_tool("health_metrics", {})


def closed_port():
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def test_unreachable_server():
    sleeps = []
    client = LiveSourceClient("127.0.0.1", closed_port(), timeout=1, probe_attempts=2, sleep=sleeps.append)
    with pytest.raises(TransportError):
        client.call_tool("workouts", {})
    assert not client.wait_for_server()
    assert sleeps == [3.0, 3.0]


def test_retry_gives_up_when_server_stays_down():
    client = LiveSourceClient("127.0.0.1", closed_port(), timeout=1, probe_attempts=1, sleep=lambda s: None)
    with pytest.raises(TransportError, match="did not come back"):
        client.query_workouts_with_retry(utc(2024, 3, 1), utc(2024, 3, 2))


def test_retry_recovers(server):
    replies = iter([{"jsonrpc": "2.0", "id": 1, "error": {"code": 1, "message": "crashed"}}])

    def reply(req):
        return next(replies, {"jsonrpc": "2.0", "id": req["id"], "result": {"data": {"workouts": []}}})

    srv = server(reply)
    client = LiveSourceClient("127.0.0.1", srv.port, timeout=5, sleep=lambda s: None)
    assert client.query_workouts_with_retry(utc(2024, 3, 1), utc(2024, 3, 2)) == {"data": {"workouts": []}}
    assert len(srv.requests) == 2


def test_non_object_response(server):
    srv = server(lambda req: ["not", "an", "object"])
    client = LiveSourceClient("127.0.0.1", srv.port, timeout=5)
    with pytest.raises(TransportError, match="expected a JSON object"):
        client.call_tool("health_metrics", {})


def test_non_object_response_goes_through_retry(server):
    srv = server(lambda req: "busy")
    client = LiveSourceClient("127.0.0.1", srv.port, timeout=5, sleep=lambda s: None)
    with pytest.raises(TransportError):
        client.query_metrics_with_retry(utc(2024, 3, 1), utc(2024, 3, 2), "vo2_max")
    assert len(srv.requests) == 3
