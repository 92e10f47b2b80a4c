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
Reading and writing the persisted settings file (``KEY=value`` lines).
"""
import logging
import os
from typing import Dict

from dotenv import dotenv_values
from jinja2 import Environment, StrictUndefined

from ..exceptions import ConfigError
from ..MODELS.resolved_config import ResolvedConfig
from ..REGISTRY.service_registry import ServiceRegistry

logger = logging.getLogger(__name__)

SETTINGS_TEMPLATE = """\
# Host bindings for local development services.
# Values set in the process environment take precedence over this file.
{% for service in services %}
# {{ service.name }} ({{ service.image }})
{{ service.host_key }}={{ env[service.host_key] }}
{{ service.port_key }}={{ env[service.port_key] }}
{% endfor %}"""


class SettingsFile:
    """
    The persisted settings file. Blank lines and ``#`` comments are ignored.
    """

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def load(self) -> Dict[str, str]:
        """
        Reads the file into a dictionary.

        A missing file yields an empty dictionary. Keys without a value
        (a bare ``KEY`` line) are dropped.

        :return: Key/value pairs exactly as written.
        """
        if not self.exists():
            logger.debug("No settings file at %s", self.path)
            return {}
        try:
            values = dotenv_values(self.path, interpolate=False)
        except (UnicodeDecodeError, OSError) as e:
            raise ConfigError(f"Cannot read settings file {self.path}: {e}") from e
        return {key: value for key, value in values.items() if value is not None}

    def render(self, registry: ServiceRegistry, config: ResolvedConfig) -> str:
        jinja = Environment(undefined=StrictUndefined, keep_trailing_newline=True, trim_blocks=True)
        template = jinja.from_string(SETTINGS_TEMPLATE)
        return template.render(services=list(registry), env=config.as_env())

    def write(self, registry: ServiceRegistry, config: ResolvedConfig) -> None:
        """
        Writes the resolved bindings to the file, replacing its content.
        """
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(self.path, "w") as f:
            f.write(self.render(registry, config))
        logger.info("Wrote settings file %s", self.path)

    def write_if_absent(self, registry: ServiceRegistry, config: ResolvedConfig) -> bool:
        """
        Persists the bindings only when no settings file exists yet.

        :return: True if the file was written.
        """
        if self.exists():
            return False
        self.write(registry, config)
        return True
