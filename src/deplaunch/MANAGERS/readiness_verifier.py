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
Readiness verification: polls every service's probe until it succeeds,
the time budget runs out, or the caller cancels.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_before_delay,
    stop_when_event_set,
    wait_fixed,
)

from ..exceptions import ProbeError, ProbeUnavailable
from ..MODELS.readiness_report import ProbeResult, ReadinessReport, ReadinessStatus
from ..MODELS.resolved_config import ResolvedConfig, ResolvedService
from ..MODELS.service_descriptor import ServiceDescriptor
from ..REGISTRY.service_registry import ServiceRegistry
from ..RUNNERS.probes import Probe, ProbeOutcome, probe_for_service

logger = logging.getLogger(__name__)

# Lower bound for one attempt's network timeout near the end of the budget.
MIN_ATTEMPT_TIMEOUT = 0.05


class _Cancelled(Exception):
    """Raised instead of starting an attempt once the caller has cancelled."""


class ReadinessVerifier:
    """
    Probes every registered service concurrently, one worker per service.
    Services are independent: one timing out does not stop the others.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        config: ResolvedConfig,
        probe_factory: Callable[[ServiceDescriptor], Probe] = probe_for_service,
    ):
        """
        Initializes the verifier.

        :param registry: Services to verify.
        :param config: Resolved host bindings for those services.
        :param probe_factory: Builds the probe for a service.
        """
        self.registry = registry
        self.config = config
        self.probe_factory = probe_factory

    def verify(
        self,
        timeout: float,
        poll_interval: float,
        cancel: Optional[threading.Event] = None,
    ) -> ReadinessReport:
        """
        Runs the verification.

        :param timeout: Budget in seconds for each service.
        :param poll_interval: Seconds between attempts.
        :param cancel: When set, remaining probes stop and partial results are returned.
        :return: One result per service.
        """
        if timeout < 0 or poll_interval <= 0:
            raise ValueError("timeout must be >= 0 and poll_interval > 0")
        cancel = cancel or threading.Event()
        descriptors = list(self.registry)
        if not descriptors:
            return ReadinessReport([])

        with ThreadPoolExecutor(max_workers=len(descriptors), thread_name_prefix="probe") as pool:
            futures = [
                pool.submit(
                    self._verify_service,
                    descriptor,
                    self.config[descriptor.name],
                    timeout,
                    poll_interval,
                    cancel,
                )
                for descriptor in descriptors
            ]
            results = [future.result() for future in futures]

        report = ReadinessReport(results)
        for result in results:
            logger.info(
                "%s: %s after %d attempt(s), %.2fs%s",
                result.service,
                result.status.value,
                result.attempts,
                result.elapsed,
                f" ({result.detail})" if result.detail else "",
            )
        return report

    def _verify_service(
        self,
        descriptor: ServiceDescriptor,
        binding: ResolvedService,
        timeout: float,
        poll_interval: float,
        cancel: threading.Event,
    ) -> ProbeResult:
        start = time.monotonic()
        deadline = start + timeout
        attempts = 0
        last_detail: Optional[str] = None

        def elapsed() -> float:
            return time.monotonic() - start

        def result(status: ReadinessStatus, detail: Optional[str]) -> ProbeResult:
            return ProbeResult(
                service=descriptor.name,
                status=status,
                detail=detail,
                attempts=attempts,
                elapsed=round(elapsed(), 3),
            )

        if cancel.is_set():
            return result(ReadinessStatus.CANCELLED, "Cancelled before probing")

        try:
            probe = self.probe_factory(descriptor)
        except Exception as e:
            return result(ReadinessStatus.ERROR, f"Cannot build probe: {e}")

        def attempt() -> ProbeOutcome:
            nonlocal attempts, last_detail
            # The poll sleep wakes up on cancellation; do not probe again.
            if cancel.is_set():
                raise _Cancelled()
            attempts += 1
            attempt_timeout = max(
                min(descriptor.probe.timeout, deadline - time.monotonic()),
                MIN_ATTEMPT_TIMEOUT,
            )
            try:
                outcome = probe.check(binding.host, binding.port, attempt_timeout)
            except ProbeUnavailable as e:
                last_detail = str(e)
                logger.debug("%s: attempt %d: %s", descriptor.name, attempts, e)
                raise
            last_detail = outcome[1]
            logger.debug("%s: attempt %d: %s", descriptor.name, attempts, outcome)
            return outcome

        retrying = Retrying(
            stop=stop_before_delay(timeout) | stop_when_event_set(cancel),
            wait=wait_fixed(poll_interval),
            retry=retry_if_result(lambda outcome: not outcome[0])
            | retry_if_exception_type(ProbeUnavailable),
            sleep=cancel.wait,
            reraise=True,
        )

        try:
            ok, detail = retrying(attempt)
        except _Cancelled:
            return result(ReadinessStatus.CANCELLED, last_detail)
        except (RetryError, ProbeUnavailable):
            if cancel.is_set():
                return result(ReadinessStatus.CANCELLED, last_detail)
            return result(ReadinessStatus.TIMEOUT, last_detail)
        except ProbeError as e:
            return result(ReadinessStatus.ERROR, str(e))
        except Exception as e:
            logger.exception("Probe for %s crashed", descriptor.name)
            return result(ReadinessStatus.ERROR, f"{type(e).__name__}: {e}")

        return result(ReadinessStatus.READY, detail or None)
