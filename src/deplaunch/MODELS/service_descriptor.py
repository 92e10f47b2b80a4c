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
Models describing the services the launcher manages and how to probe them.
"""
import re
from typing import Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SERVICE_NAME_RE = re.compile(r"^[a-z][a-z0-9\-]{0,62}$")


class ProbeKind(str, Enum):
    """
    Mechanisms available to check whether a service can serve requests.
    """
    TCP = "tcp"
    REDIS = "redis"
    MYSQL = "mysql"
    HTTP = "http"
    COMMAND = "command"


class ReadinessProbe(BaseModel):
    """
    How to check that a service is ready.

    ``command`` probes run an external program; ``{host}`` and ``{port}``
    in its arguments are replaced with the resolved binding.
    """
    model_config = ConfigDict(frozen=True)

    kind: ProbeKind = ProbeKind.TCP
    path: str = "/"
    expect: Optional[str] = None
    command: List[str] = []
    timeout: float = Field(default=2.0, gt=0)

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "ReadinessProbe":
        if self.kind == ProbeKind.HTTP and not self.path.startswith("/"):
            raise ValueError("http probe path must start with '/'")
        if self.expect is not None and "=" not in self.expect:
            raise ValueError("expect must have the form key=value")
        return self


class ServiceDescriptor(BaseModel):
    """
    Static definition of one managed service: one image, one probe, one volume.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    image: str = Field(min_length=1)
    container_port: int = Field(ge=1, le=65535)
    default_host_port: int = Field(ge=1, le=65535)
    volume_name: str
    data_path: str
    environment: Dict[str, str] = {}
    probe: ReadinessProbe = Field(default_factory=ReadinessProbe)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not SERVICE_NAME_RE.match(value):
            raise ValueError(
                "service name must be lowercase letters/numbers and hyphen, "
                "starting with a letter"
            )
        return value

    @property
    def env_prefix(self) -> str:
        """Prefix of the override keys, e.g. ``REDIS`` for ``REDIS_PORT``."""
        return self.name.upper().replace("-", "_")

    @property
    def host_key(self) -> str:
        return f"{self.env_prefix}_HOST"

    @property
    def port_key(self) -> str:
        return f"{self.env_prefix}_PORT"
