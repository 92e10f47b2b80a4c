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
Registry of the services the launcher manages.
"""
from typing import Dict, Iterable, Iterator, List

from ..exceptions import ConfigError
from ..MODELS.service_descriptor import ProbeKind, ReadinessProbe, ServiceDescriptor


class ServiceRegistry:
    """
    Read-only table of service descriptors, iterable in insertion order.
    """

    def __init__(self, descriptors: Iterable[ServiceDescriptor]):
        """
        Initializes the registry.

        :param descriptors: Descriptors in the order services should be handled.
        :raises ValueError: If two descriptors share a name.
        """
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in self._descriptors:
                raise ValueError(f"Duplicate service name: {descriptor.name}")
            self._descriptors[descriptor.name] = descriptor

    def get(self, name: str) -> ServiceDescriptor:
        """
        Looks up a descriptor by name.

        :param name: Service name.
        :return: The descriptor.
        :raises ConfigError: If no such service is registered.
        """
        try:
            return self._descriptors[name]
        except KeyError:
            known = ", ".join(self._descriptors) or "none"
            raise ConfigError(f"Unknown service '{name}' (known: {known})", service=name) from None

    def names(self) -> List[str]:
        return list(self._descriptors)

    def subset(self, names: Iterable[str]) -> "ServiceRegistry":
        """
        Returns a registry restricted to the given names, keeping registry order.
        """
        wanted = set(names)
        for name in wanted:
            self.get(name)
        return ServiceRegistry(d for d in self if d.name in wanted)

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors


DEFAULT_SERVICES = [
    ServiceDescriptor(
        name="mysql",
        image="mysql:8.0",
        container_port=3306,
        default_host_port=3306,
        volume_name="mysql_data",
        data_path="/var/lib/mysql",
        environment={
            "MYSQL_ALLOW_EMPTY_PASSWORD": "yes",
            "MYSQL_DATABASE": "app",
        },
        probe=ReadinessProbe(kind=ProbeKind.MYSQL),
    ),
    ServiceDescriptor(
        name="redis",
        image="redis:7-alpine",
        container_port=6379,
        default_host_port=6379,
        volume_name="redis_data",
        data_path="/data",
        probe=ReadinessProbe(kind=ProbeKind.REDIS),
    ),
    ServiceDescriptor(
        name="elasticsearch",
        image="docker.elastic.co/elasticsearch/elasticsearch:8.13.4",
        container_port=9200,
        default_host_port=9200,
        volume_name="elasticsearch_data",
        data_path="/usr/share/elasticsearch/data",
        environment={
            "discovery.type": "single-node",
            "xpack.security.enabled": "false",
            "ES_JAVA_OPTS": "-Xms512m -Xmx512m",
        },
        probe=ReadinessProbe(
            kind=ProbeKind.HTTP,
            path="/_cluster/health",
            expect="status=green|yellow",
            timeout=5.0,
        ),
    ),
]


def default_registry() -> ServiceRegistry:
    """Returns the built-in MySQL, Redis and Elasticsearch table."""
    return ServiceRegistry(DEFAULT_SERVICES)
