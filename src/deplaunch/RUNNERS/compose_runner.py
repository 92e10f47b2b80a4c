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
Container backends. The production backend drives ``docker compose``
with a project file rendered from the resolved configuration.
"""
import json
import logging
import os
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import yaml

from ..exceptions import OrchestrationError
from ..MODELS.container_spec import ContainerSpec

logger = logging.getLogger(__name__)

SERVICE_LABEL = "deplaunch.service"


class ContainerBackend(ABC):
    """
    Start/stop/status primitives of an external container orchestrator.
    Every method is one backend invocation.
    """

    @abstractmethod
    def ping(self) -> None:
        """
        :raises OrchestrationError: If the backend cannot be reached.
        """

    @abstractmethod
    def up(self, specs: Sequence[ContainerSpec], services: Optional[Sequence[str]] = None) -> None:
        """
        Creates and starts containers, creating named volumes as needed.

        :param specs: Every container of the project.
        :param services: Names of the containers to start; all by default.
        """

    @abstractmethod
    def down(self, specs: Sequence[ContainerSpec], remove_volumes: bool) -> None:
        """
        Removes the project's containers, and its named volumes if asked.

        :param specs: Every container of the project.
        """

    @abstractmethod
    def ps(self) -> Dict[str, str]:
        """
        :return: Container state per service name, for existing containers only.
        """


class ComposeBackend(ContainerBackend):
    """
    Runs ``docker compose`` (or a compatible command) against a generated
    project file under ``state_dir``.
    """

    def __init__(
        self,
        project_name: str,
        state_dir: str = ".deplaunch",
        compose_command: Optional[List[str]] = None,
        command_timeout: float = 600.0,
    ):
        """
        Initializes the backend.

        :param project_name: Compose project name; scopes containers and volumes.
        :param state_dir: Directory holding the generated compose file.
        :param compose_command: Command prefix, ``docker compose`` by default.
        :param command_timeout: Upper bound for a single invocation, image pulls included.
        """
        self.project_name = project_name
        self.state_dir = state_dir
        self.compose_command = list(compose_command or ["docker", "compose"])
        self.command_timeout = command_timeout

    @property
    def compose_file(self) -> str:
        return os.path.join(self.state_dir, "docker-compose.yml")

    def render(self, specs: Sequence[ContainerSpec]) -> Dict[str, Any]:
        """
        Builds the compose project for the given containers.

        :param specs: Containers to run.
        :return: Compose document as a dictionary.
        """
        services: Dict[str, Any] = {}
        volumes: Dict[str, Any] = {}
        for spec in specs:
            service: Dict[str, Any] = {
                "image": spec.image,
                "ports": [spec.port_binding],
                "volumes": [spec.volume_binding],
                "labels": {SERVICE_LABEL: spec.service},
            }
            if spec.environment:
                service["environment"] = dict(spec.environment)
            services[spec.service] = service
            volumes[spec.volume_name] = {}
        return {"name": self.project_name, "services": services, "volumes": volumes}

    def write_compose_file(self, specs: Sequence[ContainerSpec]) -> str:
        os.makedirs(self.state_dir, exist_ok=True)
        with open(self.compose_file, "w") as f:
            yaml.safe_dump(self.render(specs), f, sort_keys=False)
        return self.compose_file

    def ping(self) -> None:
        self._run([self.compose_command[0], "info"], action="reach container runtime")

    def up(self, specs: Sequence[ContainerSpec], services: Optional[Sequence[str]] = None) -> None:
        # The file lists every service; ``services`` only limits what starts.
        self.write_compose_file(specs)
        self._run(self._compose_args("up", "-d", *(services or [])), action="start services")

    def down(self, specs: Sequence[ContainerSpec], remove_volumes: bool) -> None:
        self.write_compose_file(specs)
        args = ["down", "--remove-orphans"]
        if remove_volumes:
            args.append("--volumes")
        self._run(self._compose_args(*args), action="stop services")

    def ps(self) -> Dict[str, str]:
        # Nothing was ever started from this state directory.
        if not os.path.exists(self.compose_file):
            return {}
        output = self._run(
            self._compose_args("ps", "--all", "--format", "json"),
            action="query service status",
        )
        try:
            return self.parse_ps_output(output)
        except (ValueError, KeyError, TypeError) as e:
            raise OrchestrationError(f"Cannot query service status: unexpected output: {e}") from e

    @staticmethod
    def parse_ps_output(output: str) -> Dict[str, str]:
        """
        Parses ``compose ps --format json``. Older releases print one JSON
        array, newer ones one object per line.
        """
        output = output.strip()
        if not output:
            return {}
        if output.startswith("["):
            rows = json.loads(output)
        else:
            rows = [json.loads(line) for line in output.splitlines() if line.strip()]
        return {row["Service"]: row.get("State", "unknown") for row in rows}

    def _compose_args(self, *args: str) -> List[str]:
        command = self.compose_command + ["-p", self.project_name]
        if os.path.exists(self.compose_file):
            command += ["-f", self.compose_file]
        return command + list(args)

    def _run(self, command: List[str], action: str) -> str:
        logger.info("Running: %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except FileNotFoundError as e:
            raise OrchestrationError(
                f"Cannot {action}: {command[0]} is not installed or not on PATH"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise OrchestrationError(
                f"Cannot {action}: {command[0]} did not finish within {self.command_timeout:.0f}s"
            ) from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip() or f"exit code {result.returncode}"
            raise OrchestrationError(f"Cannot {action}: {detail}")
        return result.stdout
