"""Shared fakes: a provider that records scripts instead of running them"""
import threading
from typing import Dict, List, Optional, Tuple

import pytest
from ldap3 import MOCK_SYNC, NONE, Connection, Server

from adprovider.models.ldap import LDAPConfig
from adprovider.services.ldap import LDAPClient
from adprovider.services.powershell import CommandOptions, PSCommand
from adprovider.services.runner import CommandResult


class FakeProvider:
    """Stands in for adprovider.provider.Provider.

    Responses are matched by substring against the joined fragments of each
    command, first registered match wins. Unmatched commands succeed with
    empty output.
    """

    operator = "tester"

    def __init__(self):
        self.ldap_connection: Optional[Connection] = None
        self.scripts: List[str] = []
        self.run_options: List[dict] = []
        self.uploads: Dict[str, bytes] = {}
        self._responses: List[Tuple[str, str, Optional[Exception]]] = []

    def respond(self, needle: str, stdout: str = "", error: Optional[Exception] = None) -> None:
        self._responses.append((needle, stdout, error))

    def command(self, fragments, secrets=(), **kwargs) -> PSCommand:
        kwargs.pop("gpo", None)
        return PSCommand(fragments, CommandOptions(**kwargs), secrets=secrets)

    def run(self, fragments, secrets=(), **kwargs) -> CommandResult:
        script = " ".join(fragments)
        self.scripts.append(script)
        self.run_options.append(kwargs)
        for needle, stdout, error in self._responses:
            if needle in script:
                if error is not None:
                    raise error
                return CommandResult(stdout=stdout)
        return CommandResult()

    def upload(self, path: str, data: bytes) -> None:
        self.uploads[path] = data

    def ldap_client(self) -> LDAPClient:
        return LDAPClient(LDAPConfig(host="dc1.example.com"), connection=self.ldap_connection)

    def ran(self, needle: str) -> List[str]:
        return [s for s in self.scripts if needle in s]


def mock_directory(base_dn: str, entries: Dict[str, dict]) -> Connection:
    """ldap3 in-memory directory holding base_dn and the given entries."""
    admin = "CN=admin," + base_dn
    connection = Connection(
        Server("dc1.example.com", get_info=NONE), user=admin, password="pw", client_strategy=MOCK_SYNC,
    )
    connection.strategy.add_entry(admin, {"userPassword": "pw", "objectClass": ["person"]})
    connection.strategy.add_entry(base_dn, {"objectClass": ["domain"]})
    for dn, attributes in entries.items():
        connection.strategy.add_entry(dn, dict(attributes, distinguishedName=dn))
    return connection


class FakeSession:
    """Command/file session that counts concurrent users."""

    def __init__(self, outputs=None):
        self.outputs = list(outputs or [])
        self.encoded: List[str] = []
        self.uploaded: Dict[str, bytes] = {}
        self.closed = False
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def enter(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def leave(self):
        with self._lock:
            self.active -= 1

    def run_encoded(self, encoded: str):
        self.encoded.append(encoded)
        if self.outputs:
            return self.outputs.pop(0)
        return "", "", 0

    def upload(self, path: str, data: bytes) -> None:
        self.uploaded[path] = data

    def close(self) -> None:
        self.closed = True


class FakeFactory:
    def __init__(self, outputs=None):
        self.outputs = outputs
        self.created: List[FakeSession] = []

    def command_session(self) -> FakeSession:
        session = FakeSession(self.outputs)
        self.created.append(session)
        return session

    def file_session(self) -> FakeSession:
        session = FakeSession()
        self.created.append(session)
        return session


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
