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
Models for the outcome of a readiness verification run.
"""
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional
from pydantic import BaseModel, ConfigDict

from ..exceptions import ServiceTimeoutError


class ReadinessStatus(str, Enum):
    """Terminal state of probing one service."""

    READY = "ready"
    TIMEOUT = "timeout"
    ERROR = "error"
    CANCELLED = "cancelled"


class ProbeResult(BaseModel):
    """
    Outcome for a single service.
    """
    model_config = ConfigDict(frozen=True)

    service: str
    status: ReadinessStatus
    detail: Optional[str] = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def ready(self) -> bool:
        return self.status == ReadinessStatus.READY


class ReadinessReport(Mapping[str, ProbeResult]):
    """
    Read-only mapping of service name to its probe result.
    """

    def __init__(self, results: List[ProbeResult]):
        self._results: Dict[str, ProbeResult] = {r.service: r for r in results}

    def __getitem__(self, name: str) -> ProbeResult:
        return self._results[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    @property
    def all_ready(self) -> bool:
        return all(r.ready for r in self._results.values())

    def not_ready(self) -> List[ProbeResult]:
        return [r for r in self._results.values() if not r.ready]

    def raise_for_status(self) -> None:
        """
        Raises ServiceTimeoutError naming every service that is not ready.
        """
        failed = self.not_ready()
        if failed:
            summary = ", ".join(
                f"{r.service} ({r.status.value}{': ' + r.detail if r.detail else ''})"
                for r in failed
            )
            raise ServiceTimeoutError(f"Services not ready: {summary}")
