"""Shared fixtures for the agentwire test suite.

Sockets are replaced by FakeWebSocket through the socket_factory option, so
no test opens a real network connection.
"""

import json
from collections import defaultdict

import pytest


# ---------------------------------------------------------------------------
# Fake socket
# ---------------------------------------------------------------------------

class FakeWebSocket:
    """In-memory SocketLike. Tests drive it with the emit_* helpers."""

    def __init__(self, url="ws://localhost/ws", protocols=None, headers=None):
        self.url = url
        self.protocols = protocols
        self.headers = dict(headers or {})
        self.sent = []
        self.closed = False
        self._listeners = defaultdict(list)

    def on(self, event, listener):
        self._listeners[event].append(listener)

    def send(self, data):
        self.sent.append(data)

    def close(self):
        self.closed = True
        self._emit("close", 1000, "")

    def _emit(self, event, *args):
        for listener in list(self._listeners[event]):
            listener(*args)

    # Test drivers

    def emit_open(self):
        self._emit("open")

    def emit_message(self, data):
        self._emit("message", data)

    def emit_json(self, obj):
        self._emit("message", json.dumps(obj))

    def emit_error(self, error=None):
        self._emit("error", error if error is not None else RuntimeError("socket error"))

    def emit_close(self, code=1006, reason=""):
        self._emit("close", code, reason)

    def sent_json(self):
        return [json.loads(data) for data in self.sent]

    def sent_types(self):
        return [message["type"] for message in self.sent_json()]


class FakeSocketFactory:
    """Socket factory that records every socket it builds."""

    def __init__(self):
        self.sockets = []
        self.calls = []

    def __call__(self, url, protocols, headers):
        self.calls.append({"url": url, "protocols": protocols, "headers": dict(headers)})
        socket = FakeWebSocket(url, protocols, headers)
        self.sockets.append(socket)
        return socket

    @property
    def current(self):
        return self.sockets[-1]


@pytest.fixture
def socket_factory():
    return FakeSocketFactory()


@pytest.fixture
def no_retry():
    return {"enabled": False}


@pytest.fixture
def fast_retry():
    return {"initial_delay": 0.001, "max_delay": 0.001}


# ---------------------------------------------------------------------------
# Wire fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def start_event():
    return {
        "agentId": "a1",
        "websocketUrl": "ws://localhost/ws",
        "behaviorType": "phasic",
        "projectType": "app",
    }


@pytest.fixture
def agent_state():
    return {
        "behaviorType": "phasic",
        "projectType": "app",
        "generatedFilesMap": {
            "src/index.ts": {"filePath": "src/index.ts", "fileContents": "export {};"},
            "README.md": "# Demo",
        },
    }


@pytest.fixture
def credentials():
    return {"providers": {"openai": {"apiKey": "sk-test"}}}
