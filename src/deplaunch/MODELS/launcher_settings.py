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
Settings of the launcher itself, as opposed to the services it manages.
"""
from typing import List, Optional
from pydantic import BaseModel, Field


class LauncherSettings(BaseModel):
    """
    Tool-level configuration, filled from command line options or
    ``DEPLAUNCH_*`` environment variables.
    """
    project_name: str = "deplaunch"
    env_file: str = ".env"
    services_file: Optional[str] = None
    state_dir: str = ".deplaunch"
    compose_command: List[str] = ["docker", "compose"]
    timeout: float = Field(default=120.0, ge=0)
    poll_interval: float = Field(default=1.0, gt=0)
