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
Parser for YAML files that replace the built-in service table.

Example::

    services:
      redis:
        image: redis:7-alpine
        port: 6379
        volume: redis_data:/data
        probe:
          kind: redis
"""
import yaml
from typing import Any, Dict, List

from pydantic import ValidationError

from ..exceptions import ConfigError
from ..MODELS.service_descriptor import ReadinessProbe, ServiceDescriptor
from ..REGISTRY.service_registry import ServiceRegistry


class ServicesParser:
    """
    Parses a services file into a ServiceRegistry.
    """

    def parse(self, services_path: str) -> ServiceRegistry:
        """
        Parses a services file from a path.

        :param services_path: Path to the YAML file.
        :return: Registry in file order.
        """
        try:
            with open(services_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ConfigError(f"Cannot read services file {services_path}: {e}") from e
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> ServiceRegistry:
        """
        Parses a services file from a string.

        :param content: YAML content.
        :return: Registry in file order.
        :raises ConfigError: On invalid YAML or an invalid service entry.
        """
        try:
            data = yaml.safe_load(content)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"Invalid services file: {e}") from e
        if not data:
            data = {}
        if not isinstance(data, dict) or not isinstance(data.get('services', {}), dict):
            raise ConfigError("Services file must contain a 'services' mapping")

        descriptors: List[ServiceDescriptor] = []
        for name, spec in (data.get('services') or {}).items():
            if spec is not None and not isinstance(spec, dict):
                raise ConfigError(f"Definition of service {name} must be a mapping", service=str(name))
            descriptors.append(self._parse_service(str(name), spec or {}))

        if not descriptors:
            raise ConfigError("Services file defines no services")
        try:
            return ServiceRegistry(descriptors)
        except ValueError as e:
            raise ConfigError(f"Invalid services file: {e}") from e

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceDescriptor:
        """
        Parses a single service entry.

        ``port`` is either a single number (same port on host and container)
        or ``host:container``. ``volume`` is ``name:path``.
        """
        try:
            container_port, host_port = self._parse_port(spec.get('port'))
            volume = str(spec.get('volume') or f"{name}_data:/data")
            if ':' not in volume:
                raise ValueError(f"volume must have the form name:path, got {volume!r}")
            volume_name, data_path = volume.split(':', 1)

            environment = spec.get('environment') or {}
            if isinstance(environment, list):
                environment = dict(str(e).split('=', 1) for e in environment if '=' in str(e))
            if not isinstance(environment, dict):
                raise ValueError("environment must be a mapping or a list of KEY=value")

            return ServiceDescriptor(
                name=name,
                image=spec.get('image', ''),
                container_port=container_port,
                default_host_port=host_port,
                volume_name=volume_name,
                data_path=data_path,
                environment={str(k): str(v) for k, v in environment.items()},
                probe=ReadinessProbe(**(spec.get('probe') or {})),
            )
        except (ValidationError, ValueError, TypeError) as e:
            raise ConfigError(f"Invalid definition for service {name}: {e}", service=name) from e

    def _parse_port(self, val: Any):
        """
        :return: (container_port, default_host_port)
        """
        if val is None:
            raise ValueError("port is required")
        if isinstance(val, int):
            return val, val
        parts = str(val).split(':')
        if len(parts) == 2:
            return int(parts[1]), int(parts[0])
        return int(parts[0]), int(parts[0])
