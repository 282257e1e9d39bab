# fastapi_app.py
from __future__ import annotations

import logging
import threading
from dataclasses import asdict
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .adapters import Notifier
from .config import Settings, load_settings
from .coordinator import DeploymentCoordinator
from .environments import EnvironmentRegistry, staging_from
from .errors import ConfigError, PlatformError
from .health import HealthVerifier
from .kube_client import ClusterGateway, KubeClient
from .kube_types import Environment, SwitchMode, VerificationPolicy
from .pipeline import build_steps
from .traffic import TrafficSwitcher

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# FastAPI app + CORS
# -----------------------------------------------------------------------------
app = FastAPI(title="Bankapp Blue/Green Deployer", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_run_locks: Dict[str, threading.Lock] = {}
_run_locks_guard = threading.Lock()

# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------
class RunRequest(BaseModel):
    deployEnvironment: Environment = Field(..., description="Workload variant to deploy")
    dockerTag: Optional[Environment] = Field(default=None, description="Image tag; defaults to deployEnvironment")
    switchTraffic: bool = Field(default=False)
    verify: bool = Field(default=True)
    verificationPolicy: VerificationPolicy = Field(default=VerificationPolicy.STRICT)
    switchMode: Optional[SwitchMode] = Field(default=None)


class SwitchRequest(BaseModel):
    mode: Optional[SwitchMode] = Field(default=None, description="patch|recreate, defaults to SWITCH_MODE")

# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------
@lru_cache
def get_settings() -> Settings:
    try:
        return load_settings()
    except ConfigError as e:
        logger.error(f"❌ {e}")
        raise HTTPException(status_code=500, detail=str(e))


@lru_cache
def _kube_client() -> KubeClient:
    settings = get_settings()
    return KubeClient(
        in_cluster=settings.K8S_IN_CLUSTER,
        context=settings.K8S_CONTEXT,
        request_timeout=settings.REQUEST_TIMEOUT_SECS,
    )


def get_gateway() -> ClusterGateway:
    try:
        return _kube_client()
    except PlatformError as e:
        logger.warning(f"⚠️ Kubernetes client initialization failed: {e}")
        raise HTTPException(status_code=503, detail=f"Kubernetes unavailable: {e}")


def get_notifier(settings: Settings = Depends(get_settings)) -> Notifier:
    return Notifier(settings.NOTIFY_WEBHOOK_URL)


def _run_lock(namespace: str) -> threading.Lock:
    with _run_locks_guard:
        return _run_locks.setdefault(namespace, threading.Lock())


def _platform_failure(e: PlatformError) -> HTTPException:
    logger.error(f"❌ {e}")
    return HTTPException(status_code=502, detail=str(e))

# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.get("/api/health")
async def api_health():
    return {"status": "healthy"}


@app.get("/api/routing")
def api_routing(
    settings: Settings = Depends(get_settings),
    gateway: ClusterGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    """Which environment the stable service routes to."""
    registry = EnvironmentRegistry(gateway, settings.K8S_NAMESPACE, settings.SERVICE_NAME)
    try:
        routing = registry.current()
        staging = staging_from(routing)
    except PlatformError as e:
        raise _platform_failure(e)
    return {**asdict(routing), "staging_environment": staging}


@app.get("/api/environments/{environment}/pods")
def api_environment_pods(
    environment: Environment,
    settings: Settings = Depends(get_settings),
    gateway: ClusterGateway = Depends(get_gateway),
):
    try:
        pods = gateway.get_pods(settings.K8S_NAMESPACE, environment.selector)
    except PlatformError as e:
        raise _platform_failure(e)
    return [asdict(p) for p in pods]


@app.post("/api/environments/{environment}/verify")
def api_verify(
    environment: Environment,
    timeout: Optional[float] = Query(default=None, gt=0),
    settings: Settings = Depends(get_settings),
    gateway: ClusterGateway = Depends(get_gateway),
):
    """Run health verification of one environment."""
    verifier = HealthVerifier(gateway, settings.SERVICE_NAME, poll_interval=settings.VERIFY_POLL_SECS)
    try:
        result = verifier.verify(environment, settings.K8S_NAMESPACE, timeout or settings.VERIFY_TIMEOUT_SECS)
    except PlatformError as e:
        raise _platform_failure(e)
    return asdict(result)


@app.post("/api/switch/{environment}")
def api_switch(
    environment: Environment,
    body: Optional[SwitchRequest] = None,
    settings: Settings = Depends(get_settings),
    gateway: ClusterGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    """Point the stable service at an environment without deploying."""
    registry = EnvironmentRegistry(gateway, settings.K8S_NAMESPACE, settings.SERVICE_NAME)
    switcher = TrafficSwitcher(
        gateway,
        registry,
        port=settings.SERVICE_PORT,
        target_port=settings.SERVICE_TARGET_PORT,
        service_type=settings.SERVICE_TYPE,
        mode=(body.mode if body and body.mode else settings.SWITCH_MODE),
    )
    try:
        result = switcher.switch_to(environment)
    except PlatformError as e:
        raise _platform_failure(e)
    notifier.notify("traffic-switched", f"{settings.SERVICE_NAME} -> {environment.deployment_name}")
    return asdict(result)


@app.post("/api/runs")
def api_run(
    run: RunRequest,
    settings: Settings = Depends(get_settings),
    gateway: ClusterGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    """Execute a full deployment run; one run per namespace at a time."""
    update = {
        "DEPLOY_ENVIRONMENT": run.deployEnvironment,
        "DOCKER_TAG": run.dockerTag or run.deployEnvironment,
        "SWITCH_TRAFFIC": run.switchTraffic,
        "VERIFY_DEPLOYMENT": run.verify,
        "VERIFICATION_POLICY": run.verificationPolicy,
    }
    if run.switchMode:
        update["SWITCH_MODE"] = run.switchMode
    run_settings = settings.model_copy(update=update)

    lock = _run_lock(run_settings.K8S_NAMESPACE)
    if not lock.acquire(blocking=False):
        raise HTTPException(status_code=409, detail=f"a run is already in progress in {run_settings.K8S_NAMESPACE}")
    try:
        coordinator = DeploymentCoordinator(
            gateway, run_settings, steps=build_steps(run_settings), notifier=notifier,
        )
        report = coordinator.run()
    finally:
        lock.release()

    logger.info(f"Run {run.deployEnvironment.value} finished: {report.status}")
    return {**asdict(report), "status": report.status}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=get_settings().HTTP_PORT)
