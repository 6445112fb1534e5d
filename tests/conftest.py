import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest


class CollectorStub:
    """In-process OTLP/HTTP collector that records every POST.

    The first ``fail_first`` requests get ``fail_status``; later ones get 200.
    """

    def __init__(self, fail_first: int = 0, fail_status: int = 503):
        self.fail_first = fail_first
        self.fail_status = fail_status
        self.requests: list[dict] = []
        self.timestamps: list[float] = []
        self._lock = threading.Lock()
        stub = self

        class Handler(BaseHTTPRequestHandler):
            def do_POST(self):
                length = int(self.headers.get("Content-Length", 0))
                body = self.rfile.read(length)
                with stub._lock:
                    stub.timestamps.append(time.monotonic())
                    stub.requests.append(json.loads(body))
                    attempt = len(stub.requests)
                status = stub.fail_status if attempt <= stub.fail_first else 200
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", "2")
                self.end_headers()
                self.wfile.write(b"{}")

            def log_message(self, format, *args):
                pass

        self._server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def url(self) -> str:
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}/v1/logs"

    @property
    def count(self) -> int:
        with self._lock:
            return len(self.requests)

    def bodies(self) -> list[str]:
        with self._lock:
            return [
                r["resourceLogs"][0]["scopeLogs"][0]["logRecords"][0]["body"]["stringValue"]
                for r in self.requests
            ]

    def wait_for(self, n: int, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.count >= n:
                return True
            time.sleep(0.02)
        return self.count >= n

    def start(self):
        self._thread.start()
        return self

    def stop(self):
        self._server.shutdown()
        self._server.server_close()


@pytest.fixture
def collector():
    stub = CollectorStub().start()
    yield stub
    stub.stop()


@pytest.fixture
def make_collector():
    started = []

    def _make(**kwargs) -> CollectorStub:
        stub = CollectorStub(**kwargs).start()
        started.append(stub)
        return stub

    yield _make
    for stub in started:
        stub.stop()
