# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Readiness probes: single attempts at talking to a service over its own protocol.

Each ``check`` returns ``(ready, message)`` when the service answered,
raises ProbeUnavailable when it could not be reached yet, and raises
ProbeError when the probe itself cannot work.
"""
import json
import socket
import subprocess
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Dict, Tuple, Type

from ..exceptions import ProbeError, ProbeUnavailable
from ..MODELS.service_descriptor import ProbeKind, ReadinessProbe, ServiceDescriptor

ProbeOutcome = Tuple[bool, str]


class Probe(ABC):
    """
    Base class for all probe kinds.
    """

    def __init__(self, spec: ReadinessProbe):
        self.spec = spec

    @abstractmethod
    def check(self, host: str, port: int, timeout: float) -> ProbeOutcome:
        """
        Runs one attempt.

        :param host: Resolved host address.
        :param port: Resolved host port.
        :param timeout: Upper bound for this attempt in seconds.
        """

    def _connect(self, host: str, port: int, timeout: float) -> socket.socket:
        try:
            return socket.create_connection((host, port), timeout=timeout)
        except socket.gaierror as e:
            raise ProbeError(f"Cannot resolve host {host}: {e}") from e
        except OSError as e:
            raise ProbeUnavailable(f"{host}:{port} not reachable: {e}") from e


class TcpProbe(Probe):
    """Ready as soon as the port accepts connections."""

    def check(self, host: str, port: int, timeout: float) -> ProbeOutcome:
        with self._connect(host, port, timeout):
            return True, "Port open"


class RedisProbe(Probe):
    """
    Sends an inline ``PING``. A ``NOAUTH`` reply still means the server is
    serving; ``LOADING`` means it is not ready yet.
    """

    def check(self, host: str, port: int, timeout: float) -> ProbeOutcome:
        with self._connect(host, port, timeout) as sock:
            try:
                sock.sendall(b"PING\r\n")
                reply = sock.recv(256)
            except OSError as e:
                raise ProbeUnavailable(f"No reply to PING: {e}") from e
        if not reply:
            raise ProbeUnavailable("Connection closed before PING reply")
        line = reply.split(b"\r\n", 1)[0].decode("utf-8", "replace")
        if line == "+PONG" or line.startswith("-NOAUTH"):
            return True, line
        return False, line


class MySqlProbe(Probe):
    """
    Reads the server greeting. Protocol version 10 means the server accepts
    clients; an error packet (too many connections, host blocked) does not.
    """

    def check(self, host: str, port: int, timeout: float) -> ProbeOutcome:
        with self._connect(host, port, timeout) as sock:
            try:
                header = self._recv_exact(sock, 4)
                length = int.from_bytes(header[:3], "little")
                payload = self._recv_exact(sock, min(length, 1024))
            except OSError as e:
                raise ProbeUnavailable(f"No server greeting: {e}") from e
        if not payload:
            return False, "Empty greeting"
        if payload[0] == 0x0A:
            version = payload[1:].split(b"\x00", 1)[0].decode("ascii", "replace")
            return True, f"MySQL {version}"
        if payload[0] == 0xFF:
            # Error code, then an optional "#" and five-byte SQLSTATE.
            text = payload[9:] if payload[3:4] == b"#" else payload[3:]
            message = text.decode("utf-8", "replace")
            return False, f"Server error: {message}"
        raise ProbeError(f"Unexpected greeting byte 0x{payload[0]:02x}, not a MySQL server")

    @staticmethod
    def _recv_exact(sock: socket.socket, size: int) -> bytes:
        data = b""
        while len(data) < size:
            chunk = sock.recv(size - len(data))
            if not chunk:
                raise ConnectionResetError("Connection closed during greeting")
            data += chunk
        return data


class HttpProbe(Probe):
    """
    GETs ``spec.path``. Any 2xx is ready unless ``spec.expect`` is set, in
    which case the JSON body must hold ``key`` with one of the ``|``-separated
    values, e.g. ``status=green|yellow``.
    """

    def check(self, host: str, port: int, timeout: float) -> ProbeOutcome:
        netloc = f"[{host}]" if ":" in host else host
        url = f"http://{netloc}:{port}{self.spec.path}"
        try:
            with urllib.request.urlopen(url, timeout=timeout) as resp:
                body = resp.read(65536)
                status = resp.status
        except urllib.error.HTTPError as e:
            return False, f"HTTP {e.code}"
        except urllib.error.URLError as e:
            if isinstance(e.reason, socket.gaierror):
                raise ProbeError(f"Cannot resolve host {host}: {e.reason}") from e
            raise ProbeUnavailable(f"{url} not reachable: {e.reason}") from e
        except OSError as e:
            raise ProbeUnavailable(f"{url} not reachable: {e}") from e

        if not self.spec.expect:
            return True, f"HTTP {status}"
        key, accepted = self.spec.expect.split("=", 1)
        try:
            data = json.loads(body)
        except ValueError:
            return False, "Invalid JSON"
        value = data.get(key) if isinstance(data, dict) else None
        if value is not None and str(value) in accepted.split("|"):
            return True, f"{key}={value}"
        return False, f"{key}={value}"


class CommandProbe(Probe):
    """
    Runs an external command; exit status 0 means ready.
    """

    def check(self, host: str, port: int, timeout: float) -> ProbeOutcome:
        if not self.spec.command:
            raise ProbeError("Command probe has no command")
        argv = [
            arg.replace("{host}", host).replace("{port}", str(port))
            for arg in self.spec.command
        ]
        try:
            result = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
        except (FileNotFoundError, PermissionError) as e:
            raise ProbeError(f"Cannot run probe command {argv[0]}: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeUnavailable(f"Probe command timed out after {timeout:.1f}s") from e

        if result.returncode == 0:
            return True, result.stdout[:500].strip()
        output = result.stderr[:500].strip() or f"Exit code: {result.returncode}"
        return False, output


PROBE_TYPES: Dict[ProbeKind, Type[Probe]] = {
    ProbeKind.TCP: TcpProbe,
    ProbeKind.REDIS: RedisProbe,
    ProbeKind.MYSQL: MySqlProbe,
    ProbeKind.HTTP: HttpProbe,
    ProbeKind.COMMAND: CommandProbe,
}


def build_probe(spec: ReadinessProbe) -> Probe:
    """Creates the probe implementation for a probe definition."""
    return PROBE_TYPES[spec.kind](spec)


def probe_for_service(descriptor: ServiceDescriptor) -> Probe:
    """Creates the probe for a service's own probe definition."""
    return build_probe(descriptor.probe)
