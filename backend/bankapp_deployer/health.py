"""
Health verification of a deployed environment.
"""
import logging
import time
from typing import Callable, List, Optional

from .errors import PlatformTimeout
from .kube_client import ClusterGateway
from .kube_types import Environment, PodStatus, VerificationReason, VerificationResult, Verdict

logger = logging.getLogger(__name__)


class HealthVerifier:
    """Polls pod readiness and the stable service until both pass or time runs out. A zero poll interval checks once."""

    def __init__(
        self,
        gateway: ClusterGateway,
        service_name: str,
        poll_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gateway = gateway
        self.service_name = service_name
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def verify(self, environment: Environment, namespace: str, timeout: float) -> VerificationResult:
        """
        Verify that an environment can take traffic.

        Args:
            environment: Environment whose pods are checked (selector version=<env>)
            namespace: Namespace holding the pods and the stable service
            timeout: Overall deadline in seconds

        Returns:
            VerificationResult; a timeout is reported with reason TIMEOUT, never
            as an ordinary readiness failure
        """
        deadline = self._clock() + timeout
        result: Optional[VerificationResult] = None

        while True:
            if deadline - self._clock() <= 0:
                break
            try:
                result = self._check(environment, namespace, deadline)
            except PlatformTimeout as e:
                logger.warning(f"⚠️ Verification of {environment.value} timed out: {e}")
                return self._timed_out(environment, result)

            if self._clock() > deadline:
                logger.warning(f"⚠️ Verification of {environment.value} answered after its {timeout}s deadline")
                return self._timed_out(environment, result)
            if result.passed:
                logger.info(f"✅ {environment.value} verified: {len(result.pods)} pods ready, service reachable")
                return result
            logger.info(f"Waiting on {environment.value}: {result.reason.value}")
            if self.poll_interval <= 0 or self._clock() + self.poll_interval >= deadline:
                break
            self._sleep(self.poll_interval)

        if result is None:
            return self._timed_out(environment, None)
        logger.warning(f"⚠️ Verification of {environment.value} failed: {result.reason.value}")
        return result

    def _remaining(self, operation: str, deadline: float) -> float:
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise PlatformTimeout(operation, "verification deadline passed")
        return remaining

    def _check(self, environment: Environment, namespace: str, deadline: float) -> VerificationResult:
        pods = self.gateway.get_pods(
            namespace, environment.selector, timeout=self._remaining(f"list pods {environment.selector}", deadline),
        )
        pods_ready = bool(pods) and all(p.ready for p in pods)
        service = self.gateway.get_service(
            namespace, self.service_name, timeout=self._remaining(f"read service {self.service_name}", deadline),
        )
        reachable = service is not None

        if not pods:
            reason = VerificationReason.NO_PODS
        elif not pods_ready:
            reason = VerificationReason.PODS_NOT_READY
        elif not reachable:
            reason = VerificationReason.SERVICE_MISSING
        else:
            reason = VerificationReason.PASSED
        return VerificationResult(
            environment=environment,
            pods_ready=pods_ready,
            service_reachable=reachable,
            verdict=Verdict.PASS if reason is VerificationReason.PASSED else Verdict.FAIL,
            reason=reason,
            pods=pods,
        )

    @staticmethod
    def _timed_out(environment: Environment, last: Optional[VerificationResult]) -> VerificationResult:
        pods: List[PodStatus] = last.pods if last else []
        return VerificationResult(
            environment=environment,
            pods_ready=last.pods_ready if last else False,
            service_reachable=last.service_reachable if last else False,
            verdict=Verdict.FAIL,
            reason=VerificationReason.TIMEOUT,
            pods=pods,
        )
