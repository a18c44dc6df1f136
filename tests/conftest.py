import dataclasses

import pytest

from nearnet import journal
from nearnet.models import ServiceHandle, SharedPath
from nearnet.orchestrator import ServiceOrchestrator


class FakeOrchestrator(ServiceOrchestrator):
    """In-memory orchestrator that records every call.

    - fail_add[service_id] = exception raised by add_service
    - bindings[service_id] = host port bindings returned by add_service
    - exec_script[service_id] = callable(argv) -> (exit_code, output), may raise
    """

    def __init__(self):
        self.added = []
        self.execs = []
        self.fail_add = {}
        self.bindings = {}
        self.exec_script = {}

    @property
    def added_ids(self):
        return [sid for sid, _ in self.added]

    def spec_for(self, service_id):
        for sid, spec in self.added:
            if sid == service_id:
                return spec
        raise KeyError(service_id)

    def add_service(self, service_id, spec):
        if service_id in self.fail_add:
            raise self.fail_add[service_id]
        ip = f"172.28.0.{len(self.added) + 2}"
        resolved = spec(ip) if callable(spec) else spec
        self.added.append((service_id, resolved))
        return ServiceHandle(service_id, f"cid-{service_id}", ip), dict(self.bindings.get(service_id, {}))

    def exec_command(self, handle, argv):
        self.execs.append((handle.service_id, list(argv)))
        script = self.exec_script.get(handle.service_id)
        if script is None:
            return 0, ""
        return script(list(argv))

    def get_shared_directory(self, handle):
        return SharedPath(host_path=f"/tmp/{handle.service_id}", container_path="/nearnet-shared")


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture()
def fake_orchestrator():
    return FakeOrchestrator()


@pytest.fixture()
def sleeper():
    return SleepRecorder()


@pytest.fixture(autouse=True)
def isolated_journal(tmp_path, monkeypatch):
    """Point the journal at a throwaway sqlite file."""
    monkeypatch.setattr(journal, "settings", dataclasses.replace(journal.settings, journal_path=str(tmp_path / "journal.db")))
    journal.init_db()
    yield
