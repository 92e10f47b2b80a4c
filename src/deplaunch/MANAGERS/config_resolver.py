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
Resolution of host bindings from defaults, the settings file and the environment.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..exceptions import ConfigError
from ..MODELS.resolved_config import (
    DEFAULT_HOST,
    OverrideSource,
    ResolvedConfig,
    ResolvedService,
)
from ..MODELS.service_descriptor import ServiceDescriptor
from ..REGISTRY.service_registry import ServiceRegistry

logger = logging.getLogger(__name__)


class ConfigResolver:
    """
    Merges the three configuration sources into a ResolvedConfig.

    Lookup order per key: process environment, then the settings file,
    then the descriptor default. Empty values count as unset, matching
    ``${VAR:-default}`` substitution. Resolution is pure: neither source
    is modified, and this is the only component that reads the environment.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        file_values: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initializes the resolver.

        :param registry: Services to resolve.
        :param file_values: Key/value pairs from the settings file.
        :param environ: Process environment. Pass ``os.environ`` explicitly.
        """
        self.registry = registry
        self.file_values = dict(file_values or {})
        self.environ = dict(environ or {})

    def resolve_all(self) -> Tuple[Dict[str, ResolvedService], Dict[str, ConfigError]]:
        """
        Resolves every service, collecting errors instead of stopping at the first.

        :return: (resolved entries, errors), both keyed by service name.
        """
        entries: Dict[str, ResolvedService] = {}
        errors: Dict[str, ConfigError] = {}
        for descriptor in self.registry:
            try:
                entries[descriptor.name] = self._resolve_service(descriptor)
            except ConfigError as e:
                logger.warning("Configuration error for %s: %s", descriptor.name, e)
                errors[descriptor.name] = e
        return entries, errors

    def resolve(self, required: Optional[Iterable[str]] = None) -> ResolvedConfig:
        """
        Resolves every service.

        :param required: Services whose errors are fatal, all of them by
            default. Any other service with a bad override falls back to
            its descriptor defaults.
        :return: One entry per registered service, in registry order.
        :raises ConfigError: Aggregating the errors of required services.
        """
        entries, errors = self.resolve_all()
        required = set(self.registry.names() if required is None else required)
        fatal = {name: e for name, e in errors.items() if name in required}
        if fatal:
            raise ConfigError.aggregate(fatal)
        for name in errors:
            descriptor = self.registry.get(name)
            logger.warning("Using defaults for %s", name)
            entries[name] = ResolvedService(name=name, port=descriptor.default_host_port)
        return ResolvedConfig([entries[name] for name in self.registry.names()])

    def _lookup(self, key: str) -> Tuple[Optional[str], OverrideSource]:
        value = self.environ.get(key)
        if value is not None and value.strip():
            return value.strip(), OverrideSource.PROCESS_ENVIRONMENT
        value = self.file_values.get(key)
        if value is not None and value.strip():
            return value.strip(), OverrideSource.PERSISTED_FILE
        return None, OverrideSource.NONE

    def _resolve_service(self, descriptor: ServiceDescriptor) -> ResolvedService:
        host, host_source = self._lookup(descriptor.host_key)
        if host is None:
            host = DEFAULT_HOST
        elif any(c.isspace() for c in host):
            raise ConfigError(
                f"{descriptor.name}: {descriptor.host_key}={host!r} "
                f"from {host_source.value} is not a valid host",
                service=descriptor.name,
                key=descriptor.host_key,
                value=host,
            )

        raw_port, port_source = self._lookup(descriptor.port_key)
        if raw_port is None:
            port = descriptor.default_host_port
        else:
            port = self._parse_port(descriptor, raw_port, port_source)

        return ResolvedService(
            name=descriptor.name,
            host=host,
            port=port,
            host_source=host_source,
            port_source=port_source,
        )

    def _parse_port(self, descriptor: ServiceDescriptor, raw: str, source: OverrideSource) -> int:
        port = int(raw) if raw.isascii() and raw.isdigit() else None
        if port is None or not 1 <= port <= 65535:
            raise ConfigError(
                f"{descriptor.name}: {descriptor.port_key}={raw!r} from {source.value} "
                "is not a port number between 1 and 65535",
                service=descriptor.name,
                key=descriptor.port_key,
                value=raw,
            )
        return port


def overridden_keys(registry: ServiceRegistry, values: Mapping[str, str]) -> List[str]:
    """
    Lists the known override keys present in ``values``, e.g. for warning
    about settings shadowed by the environment.
    """
    keys = []
    for descriptor in registry:
        for key in (descriptor.host_key, descriptor.port_key):
            if values.get(key, "").strip():
                keys.append(key)
    return keys
