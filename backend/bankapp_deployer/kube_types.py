"""
Type definitions for Kubernetes objects and deployment run state.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Environment(str, Enum):
    """One of the two workload variants."""
    BLUE = "blue"
    GREEN = "green"

    @property
    def selector(self) -> str:
        return f"version={self.value}"

    @property
    def deployment_name(self) -> str:
        return f"bankapp-{self.value}"

    def other(self) -> "Environment":
        return Environment.GREEN if self is Environment.BLUE else Environment.BLUE


class NamespaceResult(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class DeleteResult(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


class Verdict(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class VerificationReason(str, Enum):
    PASSED = "passed"
    NO_PODS = "no_pods"
    PODS_NOT_READY = "pods_not_ready"
    SERVICE_MISSING = "service_missing"
    TIMEOUT = "timeout"


class VerificationPolicy(str, Enum):
    STRICT = "strict"
    PERMISSIVE = "permissive"


class SwitchMode(str, Enum):
    PATCH = "patch"
    RECREATE = "recreate"


class RunState(str, Enum):
    """Coordinator states, in the order a successful run visits them."""
    INIT = "init"
    PREFLIGHT_PASSED = "preflight_passed"
    NAMESPACE_ENSURED = "namespace_ensured"
    DEPENDENCIES_DEPLOYED = "dependencies_deployed"
    APP_DEPLOYED = "app_deployed"
    SERVICE_DEPLOYED = "service_deployed"
    VERIFIED = "verified"
    TRAFFIC_SWITCHED = "traffic_switched"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class DeploymentTarget:
    """What a single run deploys. Built once from the run parameters."""
    environment: Environment
    image_tag: str
    manifest_ref: str


@dataclass
class PodStatus:
    """Readiness view of a Kubernetes Pod."""
    name: str
    ready: bool
    restarts: int = 0
    phase: Optional[str] = None


@dataclass
class ServiceSpec:
    """Kubernetes Service representation."""
    name: str
    namespace: str
    selector: Dict[str, str]
    type: str = "ClusterIP"
    ports: List[Dict[str, int]] = field(default_factory=list)
    cluster_ip: Optional[str] = None
    resource_version: Optional[str] = None


@dataclass
class ApplyResult:
    """Objects touched by applying one manifest file."""
    manifest: str
    resources: List[Tuple[str, str, str]] = field(default_factory=list)  # (kind, name, "created"|"configured")


@dataclass
class RoutingState:
    """Which environment the stable service routes to. None before the first deploy."""
    service_name: str
    active_environment: Optional[Environment]


@dataclass
class VerificationResult:
    environment: Environment
    pods_ready: bool
    service_reachable: bool
    verdict: Verdict
    reason: VerificationReason
    pods: List[PodStatus] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS


@dataclass
class SwitchResult:
    environment: Environment
    previous: Optional[Environment]
    mode: SwitchMode


@dataclass
class RunReport:
    """Outcome of one coordinator run."""
    target: DeploymentTarget
    state: RunState = RunState.INIT
    failed_stage: Optional[str] = None
    history: List[RunState] = field(default_factory=list)
    verification: Optional[VerificationResult] = None
    routing: Optional[RoutingState] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.DONE

    @property
    def status(self) -> str:
        if self.succeeded:
            return "Success"
        return f"Failed-at-{self.failed_stage}"
