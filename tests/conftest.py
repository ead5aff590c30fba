"""Shared fixtures: an in-memory bus client and secret files on disk."""

from __future__ import annotations

from pathlib import Path
from queue import Queue

import pytest

from nm_file_secret_agent.errors import IdentityQueryFailed, RegistrationFailed

NM_OWNER = ":1.7"


class FakeBus:
    """Bus stand-in that records calls instead of talking to D-Bus.

    Covers both the BusClient protocol and the inbox/send side used by
    the AgentServer.
    """

    def __init__(self, owner: str = NM_OWNER) -> None:
        self.owner = owner
        self.fail_query = False
        self.fail_register = False
        self.watched: list[str] = []
        self.registrations: list[tuple[str, int]] = []
        self.exported: list[str] = []
        self.inbox: Queue = Queue()
        self.sent: list = []

    def get_name_owner(self, name: str) -> str:
        if self.fail_query:
            raise IdentityQueryFailed(f"Could not query owner of name {name}")
        return self.owner

    def watch_name_owner(self, name: str) -> None:
        self.watched.append(name)

    def register_agent(self, identifier: str, capabilities: int) -> None:
        if self.fail_register:
            raise RegistrationFailed("Could not register as secret agent")
        self.registrations.append((identifier, capabilities))

    def export(self, object_path: str) -> None:
        self.exported.append(object_path)

    def receive(self, timeout: float | None = None):
        return self.inbox.get(timeout=timeout)

    def send(self, message) -> None:
        self.sent.append(message)


@pytest.fixture()
def fake_bus() -> FakeBus:
    return FakeBus()


@pytest.fixture()
def secret_file(tmp_path: Path):
    """Factory writing a secret file and returning its path as a string."""

    def _write(name: str, content: str) -> str:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return str(path)

    return _write
