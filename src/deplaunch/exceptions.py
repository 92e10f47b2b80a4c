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
Error taxonomy for the launcher.

Every error names the affected service where there is one, and carries
the process exit status the command line maps it to.
"""
from typing import Dict, Optional


class LauncherError(Exception):
    """Base class for all launcher errors."""

    exit_code = 1

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.service = service


class ConfigError(LauncherError):
    """
    A configuration value could not be used.

    Either a single bad override (``service``/``key``/``value`` set) or an
    aggregate of per-service errors collected during resolution (``errors``).
    """

    exit_code = 3

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        key: Optional[str] = None,
        value: Optional[str] = None,
        errors: Optional[Dict[str, "ConfigError"]] = None,
    ):
        super().__init__(message, service=service)
        self.key = key
        self.value = value
        self.errors: Dict[str, ConfigError] = dict(errors or {})

    @classmethod
    def aggregate(cls, errors: Dict[str, "ConfigError"]) -> "ConfigError":
        """Builds one error out of several per-service errors."""
        lines = [str(err) for err in errors.values()]
        return cls("; ".join(lines), errors=errors)


class OrchestrationError(LauncherError):
    """The container backend was unreachable or refused an operation."""

    exit_code = 4

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        port: Optional[int] = None,
    ):
        super().__init__(message, service=service)
        self.port = port


class ProbeError(LauncherError):
    """The readiness check itself is broken (bad command, missing tool)."""

    exit_code = 5


class ProbeUnavailable(LauncherError):
    """The service did not answer yet. Drives polling, never a final result."""

    exit_code = 5


class ServiceTimeoutError(LauncherError, TimeoutError):
    """One or more services did not become ready within the time budget."""

    exit_code = 5
