"""
Blue/green deployment run: namespace, database, workload, service, verification, cutover.
"""
import logging
import threading
from typing import Callable, Iterable, List, Optional

from .adapters import Notifier, PipelineStep
from .config import Settings
from .environments import VERSION_LABEL, EnvironmentRegistry
from .errors import ConfigError, DeployError, PlatformError, RunCancelled, VerificationFailure
from .health import HealthVerifier
from .kube_client import ClusterGateway
from .kube_types import (
    DeploymentTarget,
    RunReport,
    RunState,
    VerificationPolicy,
)
from .traffic import TrafficSwitcher

logger = logging.getLogger(__name__)


class StageFailed(Exception):
    def __init__(self, stage: str, error: Exception):
        self.stage = stage
        self.error = error
        super().__init__(f"{stage}: {error}")


class DeploymentCoordinator:
    """
    Drives one deployment run through its states.

    Cluster mutations are not rolled back: if the workload applies and the
    service apply then fails, the workload stays deployed. Cancellation only
    works until the first mutating call has been issued.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        settings: Settings,
        target: Optional[DeploymentTarget] = None,
        steps: Iterable[PipelineStep] = (),
        notifier: Optional[Notifier] = None,
        verifier: Optional[HealthVerifier] = None,
        switcher: Optional[TrafficSwitcher] = None,
    ):
        self.gateway = gateway
        self.settings = settings
        self.target = target or settings.to_target()
        self.steps: List[PipelineStep] = list(steps)
        self.notifier = notifier or Notifier()
        self.namespace = settings.K8S_NAMESPACE
        self.registry = EnvironmentRegistry(gateway, self.namespace, settings.SERVICE_NAME)
        self.verifier = verifier or HealthVerifier(
            gateway, settings.SERVICE_NAME, poll_interval=settings.VERIFY_POLL_SECS,
        )
        self.switcher = switcher or TrafficSwitcher(
            gateway,
            self.registry,
            port=settings.SERVICE_PORT,
            target_port=settings.SERVICE_TARGET_PORT,
            service_type=settings.SERVICE_TYPE,
            mode=settings.SWITCH_MODE,
        )
        self._cancelled = threading.Event()
        self._mutating = False
        self._cancel_lock = threading.Lock()
        self.report = RunReport(target=self.target)

    @property
    def state(self) -> RunState:
        return self.report.state

    def cancel(self) -> bool:
        """Ask the run to stop. Returns False once a cluster mutation has been issued."""
        with self._cancel_lock:
            if self._mutating:
                logger.warning("⚠️ Cancel ignored: the run has already changed the cluster")
                return False
            self._cancelled.set()
        return True

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise RunCancelled("run cancelled before any cluster change")

    def _begin_mutation(self) -> None:
        # A cancel either lands before this point and stops the run, or after it and is refused.
        with self._cancel_lock:
            if self._cancelled.is_set():
                raise RunCancelled("run cancelled before any cluster change")
            self._mutating = True

    def _transition(self, state: RunState) -> None:
        self.report.state = state
        self.report.history.append(state)
        logger.info(f"➡️ {state.value}")

    def _stage(self, stage: str, action: Callable[[], object], state: Optional[RunState] = None):
        try:
            outcome = action()
        except DeployError as e:
            raise StageFailed(stage, e) from e
        except Exception as e:
            logger.exception(f"❌ Unexpected error in stage {stage}")
            raise StageFailed(stage, e) from e
        if state is not None:
            self._transition(state)
        return outcome

    def run(self) -> RunReport:
        """Execute the run and return its report. A failing stage ends up in the report, never raised."""
        target = self.target
        report = self.report
        report.history = [RunState.INIT]
        logger.info(
            f"🚀 Deploying {target.environment.deployment_name} (tag {target.image_tag}) "
            f"to {self.namespace}, switch_traffic={self.settings.SWITCH_TRAFFIC}"
        )

        try:
            report.warnings.extend(self._stage("Config", self.settings.validate_run))
            self._preflight()
            self._begin_mutation()
            self._deploy()
            self._verify()
            if self.settings.SWITCH_TRAFFIC:
                self._stage(
                    "TrafficSwitch",
                    lambda: self.switcher.switch_to(target.environment),
                    RunState.TRAFFIC_SWITCHED,
                )
            self._transition(RunState.DONE)
        except StageFailed as e:
            self._fail(e.stage, e.error)
        except RunCancelled as e:
            self._fail("Cancel", e)

        if report.succeeded:
            try:
                report.routing = self.registry.current()
            except PlatformError as e:
                logger.warning(f"⚠️ Could not read routing state after the run: {e}")
            logger.info(f"✅ Run finished: {report.status}")
        self.notifier.notify(
            "run-finished",
            f"{target.environment.deployment_name}: {report.status}",
            status=report.status,
            environment=target.environment.value,
            error=report.error,
        )
        return report

    def _fail(self, stage: str, error: Exception) -> None:
        self.report.failed_stage = stage
        self.report.error = str(error)
        self.report.state = RunState.FAILED
        self.report.history.append(RunState.FAILED)
        logger.error(f"❌ Run failed at {stage}: {error}")

    def _preflight(self) -> None:
        if not self.steps:
            return
        for step in self.steps:
            self._check_cancelled()
            logger.info(f"Running pre-deployment step {step.name}")
            if not self._stage(step.name, step.run):
                raise StageFailed(step.name, ConfigError(f"step {step.name} did not pass"))
        self._transition(RunState.PREFLIGHT_PASSED)
        self.notifier.notify(
            "image-pushed",
            f"image tag {self.target.image_tag} ready for {self.target.environment.deployment_name}",
            image=self.settings.image(self.target.image_tag),
        )

    def _deploy(self) -> None:
        settings = self.settings
        timeout = settings.REQUEST_TIMEOUT_SECS
        images = {settings.APP_CONTAINER: settings.image(self.target.image_tag)}

        self._stage(
            "Namespace",
            lambda: self.gateway.ensure_namespace(self.namespace, timeout=timeout),
            RunState.NAMESPACE_ENSURED,
        )
        self._stage(
            "Dependencies",
            lambda: self.gateway.apply(str(settings.manifest_path(settings.DB_MANIFEST)), self.namespace, timeout=timeout),
            RunState.DEPENDENCIES_DEPLOYED,
        )
        self._stage(
            "App",
            lambda: self.gateway.apply(self.target.manifest_ref, self.namespace, images=images, timeout=timeout),
            RunState.APP_DEPLOYED,
        )
        self._stage("Service", self._apply_service, RunState.SERVICE_DEPLOYED)

    def _apply_service(self):
        # Re-applying the manifest must not move traffic; keep whatever the service selects now.
        settings = self.settings
        active = self.registry.current().active_environment
        selectors = {settings.SERVICE_NAME: {VERSION_LABEL: active.value}} if active else None
        return self.gateway.apply(
            str(settings.manifest_path(settings.SERVICE_MANIFEST)),
            self.namespace,
            selectors=selectors,
            timeout=settings.REQUEST_TIMEOUT_SECS,
        )

    def _verify(self) -> None:
        settings = self.settings
        strict = settings.VERIFICATION_POLICY is VerificationPolicy.STRICT
        if not (settings.VERIFY_DEPLOYMENT or (settings.SWITCH_TRAFFIC and strict)):
            return

        environment = self.target.environment
        result = self._stage(
            "Verification",
            lambda: self.verifier.verify(environment, self.namespace, settings.VERIFY_TIMEOUT_SECS),
        )
        self.report.verification = result
        self.notifier.notify(
            "verification-complete",
            f"{environment.deployment_name}: {result.verdict.value} ({result.reason.value})",
            verdict=result.verdict.value,
            reason=result.reason.value,
        )
        if result.passed:
            self._transition(RunState.VERIFIED)
            return
        if settings.SWITCH_TRAFFIC and strict:
            raise StageFailed("Verification", VerificationFailure(result))
        message = f"verification of {environment.value} failed ({result.reason.value})"
        if settings.SWITCH_TRAFFIC:
            message += "; switching anyway under the permissive policy"
        logger.warning(f"⚠️ {message}")
        self.report.warnings.append(message)
