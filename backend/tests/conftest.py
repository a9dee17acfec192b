"""Shared test doubles for the Copilot SDK client."""

import os
import sys
from types import SimpleNamespace

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class FakeCopilotSession:
    """Replays a canned reply through the same events the SDK emits."""

    def __init__(self, reply: str = "", error: str | None = None, idle: bool = True):
        self.reply = reply
        self.error = error
        self.idle = idle
        self.sent: list[dict] = []
        self.destroyed = False
        self._handlers = []

    def on(self, handler):
        self._handlers.append(handler)

    async def send(self, message: dict):
        self.sent.append(message)
        if self.error:
            self._emit("session.error", message=self.error)
        elif self.idle:
            self._emit("assistant.message", content=self.reply)
            self._emit("session.idle")

    async def destroy(self):
        self.destroyed = True

    def _emit(self, event_type: str, **data):
        event = SimpleNamespace(type=event_type, data=SimpleNamespace(**data))
        for handler in self._handlers:
            handler(event)


class FakeCopilotClient:
    """Stand-in for ``copilot.CopilotClient``."""

    def __init__(self, reply: str = "", error: str | None = None, idle: bool = True, fail_start: bool = False):
        self.reply = reply
        self.error = error
        self.idle = idle
        self.fail_start = fail_start
        self.stopped = False
        self.configs: list[dict] = []
        self.sessions: list[FakeCopilotSession] = []

    async def start(self):
        if self.fail_start:
            raise ConnectionError("Copilot CLI not reachable")

    async def stop(self):
        self.stopped = True

    async def create_session(self, config: dict) -> FakeCopilotSession:
        self.configs.append(config)
        session = FakeCopilotSession(self.reply, self.error, self.idle)
        self.sessions.append(session)
        return session


@pytest.fixture
def copilot():
    return FakeCopilotClient()
