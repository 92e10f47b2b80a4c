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
Models for the configuration resolved once per invocation.
"""
from enum import Enum
from typing import Dict, Iterator, List, Mapping
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_HOST = "127.0.0.1"


class OverrideSource(str, Enum):
    """
    Where a resolved value came from. The environment beats the file,
    the file beats the descriptor default.
    """
    NONE = "default"
    PERSISTED_FILE = "file"
    PROCESS_ENVIRONMENT = "environment"


class ResolvedService(BaseModel):
    """
    Host binding of a single service after applying overrides.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    host: str = DEFAULT_HOST
    port: int = Field(ge=1, le=65535)
    host_source: OverrideSource = OverrideSource.NONE
    port_source: OverrideSource = OverrideSource.NONE


class ResolvedConfig(Mapping[str, ResolvedService]):
    """
    Immutable, ordered mapping of service name to its resolved binding.
    """

    def __init__(self, entries: List[ResolvedService]):
        entries_by_name: Dict[str, ResolvedService] = {}
        for entry in entries:
            if entry.name in entries_by_name:
                raise ValueError(f"Duplicate resolved entry for service {entry.name}")
            entries_by_name[entry.name] = entry
        self._entries = entries_by_name

    def __getitem__(self, name: str) -> ResolvedService:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ResolvedConfig({list(self._entries.values())!r})"

    def as_env(self) -> Dict[str, str]:
        """
        Renders the config as ``<SERVICE>_HOST``/``<SERVICE>_PORT`` pairs.
        """
        env = {}
        for name, entry in self._entries.items():
            prefix = name.upper().replace("-", "_")
            env[f"{prefix}_HOST"] = entry.host
            env[f"{prefix}_PORT"] = str(entry.port)
        return env
