"""
Shared fixtures: a fake container backend, scripted probes and small
socket servers standing in for the managed services.
"""
import socket
import threading
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from deplaunch.exceptions import OrchestrationError
from deplaunch.MODELS.container_spec import ContainerSpec
from deplaunch.MODELS.service_descriptor import ProbeKind, ReadinessProbe, ServiceDescriptor
from deplaunch.REGISTRY.service_registry import ServiceRegistry
from deplaunch.RUNNERS.compose_runner import ContainerBackend
from deplaunch.RUNNERS.probes import Probe


def get_free_port() -> int:
    """
    Finds a free port on localhost.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class FakeBackend(ContainerBackend):
    """
    In-memory orchestrator. Named volumes are dictionaries that survive
    ``down`` unless volumes are removed.
    """

    def __init__(self, reachable: bool = True):
        self.reachable = reachable
        self.containers: Dict[str, str] = {}
        self.volumes: Dict[str, Dict[str, str]] = {}
        self.calls: List[str] = []
        self.last_specs: List[ContainerSpec] = []
        self.down_specs: List[ContainerSpec] = []

    def ping(self) -> None:
        self.calls.append("ping")
        if not self.reachable:
            raise OrchestrationError("Cannot reach container runtime: daemon not running")

    def up(self, specs: Sequence[ContainerSpec], services: Optional[Sequence[str]] = None) -> None:
        self.calls.append("up")
        self.last_specs = list(specs)
        for spec in specs:
            if services is not None and spec.service not in services:
                continue
            self.volumes.setdefault(spec.volume_name, {})
            self.containers[spec.service] = "running"

    def down(self, specs: Sequence[ContainerSpec], remove_volumes: bool) -> None:
        self.calls.append(f"down(remove_volumes={remove_volumes})")
        self.down_specs = list(specs)
        for spec in specs:
            self.containers.pop(spec.service, None)
            if remove_volumes:
                self.volumes.pop(spec.volume_name, None)

    def ps(self) -> Dict[str, str]:
        self.calls.append("ps")
        return dict(self.containers)


class ScriptedProbe(Probe):
    """
    Probe whose answers come from a function of the attempt number.
    """

    def __init__(self, spec: ReadinessProbe, behaviour: Callable[[int], tuple]):
        super().__init__(spec)
        self.behaviour = behaviour
        self.attempts = 0

    def check(self, host: str, port: int, timeout: float):
        self.attempts += 1
        return self.behaviour(self.attempts)


class ScriptedProbeFactory:
    """
    Builds ScriptedProbes from per-service behaviours and keeps them for inspection.
    """

    def __init__(self, behaviours: Dict[str, Callable[[int], tuple]]):
        self.behaviours = behaviours
        self.probes: Dict[str, ScriptedProbe] = {}

    def __call__(self, descriptor: ServiceDescriptor) -> ScriptedProbe:
        probe = ScriptedProbe(descriptor.probe, self.behaviours[descriptor.name])
        self.probes[descriptor.name] = probe
        return probe


class StubServer:
    """
    Minimal TCP server answering every connection with fixed bytes.
    """

    def __init__(self, reply: bytes, read_first: bool = False):
        self.reply = reply
        self.read_first = read_first
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(('127.0.0.1', 0))
        self.sock.listen(8)
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self):
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            with conn:
                try:
                    if self.read_first:
                        conn.recv(1024)
                    conn.sendall(self.reply)
                except OSError:
                    pass

    def close(self):
        self.sock.close()


def make_service(name: str, port: int, kind: ProbeKind = ProbeKind.TCP, **probe) -> ServiceDescriptor:
    return ServiceDescriptor(
        name=name,
        image=f"example/{name}:1",
        container_port=port,
        default_host_port=port,
        volume_name=f"{name}_data",
        data_path="/data",
        probe=ReadinessProbe(kind=kind, **probe),
    )


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def stub_server():
    servers = []

    def start(reply: bytes, read_first: bool = False) -> StubServer:
        server = StubServer(reply, read_first)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()


@pytest.fixture
def test_registry():
    """Two services on ports that are free right now."""
    return ServiceRegistry([
        make_service("cache", get_free_port()),
        make_service("store", get_free_port()),
    ])
