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
Start, stop and status of the managed services through a container backend.
"""
import logging
from typing import Dict, List, Optional, Sequence

from ..exceptions import OrchestrationError
from ..MODELS.container_spec import ContainerSpec
from ..MODELS.resolved_config import ResolvedConfig
from ..REGISTRY.service_registry import ServiceRegistry
from ..RUNNERS.compose_runner import ContainerBackend
from ..UTILS.port_finder import find_port_owner, is_port_free

logger = logging.getLogger(__name__)

ABSENT = "absent"
RUNNING = "running"


class OrchestrationDriver:
    """
    Thin wrapper mapping start/stop/status onto single backend calls.

    No retries: a failed call surfaces one OrchestrationError. Callers must
    not start and stop the same project concurrently.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        config: ResolvedConfig,
        backend: ContainerBackend,
        selected: Optional[Sequence[str]] = None,
    ):
        """
        Initializes the driver.

        :param registry: Every service of the project.
        :param config: Resolved bindings, one per registered service.
        :param backend: Container orchestrator to drive.
        :param selected: Services that ``start`` brings up; all by default.
        """
        missing = [name for name in registry.names() if name not in config]
        if missing:
            raise ValueError(f"No resolved configuration for: {', '.join(missing)}")
        self.registry = registry
        self.config = config
        self.backend = backend
        self.selected = list(registry.subset(selected).names() if selected else registry.names())

    def container_specs(self) -> List[ContainerSpec]:
        """
        Joins every descriptor with its resolved binding.
        """
        specs = []
        for descriptor in self.registry:
            binding = self.config[descriptor.name]
            specs.append(ContainerSpec(
                service=descriptor.name,
                image=descriptor.image,
                host=binding.host,
                host_port=binding.port,
                container_port=descriptor.container_port,
                volume_name=descriptor.volume_name,
                data_path=descriptor.data_path,
                environment=descriptor.environment,
            ))
        return specs

    def start(self) -> None:
        """
        Starts the selected services.

        All checks run before the single ``up`` call, so either every
        service is started or nothing is touched.

        :raises OrchestrationError: Backend unreachable, host port taken by
            another process, or the backend refused to start the services.
        """
        self.backend.ping()
        specs = self.container_specs()
        self._check_ports([s for s in specs if s.service in self.selected])
        logger.info("Starting services: %s", ", ".join(self.selected))
        self.backend.up(specs, services=self.selected)

    def stop(self, *, preserve_volumes: bool) -> None:
        """
        Stops every service.

        :param preserve_volumes: Required. False also deletes the named
            volumes and with them all stored data.
        """
        if preserve_volumes:
            logger.info("Stopping services, keeping volumes")
        else:
            logger.warning(
                "Stopping services and deleting volumes: %s",
                ", ".join(d.volume_name for d in self.registry),
            )
        self.backend.down(self.container_specs(), remove_volumes=not preserve_volumes)

    def status(self) -> Dict[str, str]:
        """
        :return: State per registered service; ``absent`` if it has no container.
        """
        states = self.backend.ps()
        return {name: states.get(name, ABSENT) for name in self.registry.names()}

    def _check_ports(self, specs: List[ContainerSpec]) -> None:
        running = {name for name, state in self.backend.ps().items() if state == RUNNING}
        for spec in specs:
            # Our own running container legitimately holds the port.
            if spec.service in running:
                continue
            if is_port_free(spec.host_port, spec.host):
                continue
            owner = find_port_owner(spec.host_port)
            raise OrchestrationError(
                f"Cannot start {spec.service}: port {spec.host}:{spec.host_port} "
                f"is already in use{' by ' + owner if owner else ''}",
                service=spec.service,
                port=spec.host_port,
            )
