"""
Traffic cutover between blue and green.
"""
import logging
import threading
from typing import Dict, Tuple

from .environments import VERSION_LABEL, EnvironmentRegistry
from .errors import NotFoundIgnorable
from .kube_client import ClusterGateway
from .kube_types import DeleteResult, Environment, SwitchMode, SwitchResult

logger = logging.getLogger(__name__)

_locks: Dict[Tuple[str, str], threading.Lock] = {}
_locks_guard = threading.Lock()


def service_lock(namespace: str, service_name: str) -> threading.Lock:
    """Process-wide mutex for one stable service."""
    with _locks_guard:
        return _locks.setdefault((namespace, service_name), threading.Lock())


class TrafficSwitcher:
    """
    Points the stable service at one environment.

    PATCH rewrites the service selector in place, guarded by the
    resourceVersion that was read, so there is no moment without a stable
    service and a concurrent writer makes the patch fail instead of being
    overwritten.

    RECREATE deletes the service and exposes the target deployment under
    the same name. Between the two calls no stable service exists; clients
    see connection errors for that window.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        registry: EnvironmentRegistry,
        port: int = 80,
        target_port: int = 8080,
        service_type: str = "ClusterIP",
        mode: SwitchMode = SwitchMode.PATCH,
    ):
        self.gateway = gateway
        self.registry = registry
        self.port = port
        self.target_port = target_port
        self.service_type = service_type
        self.mode = mode

    @property
    def namespace(self) -> str:
        return self.registry.namespace

    @property
    def service_name(self) -> str:
        return self.registry.service_name

    def switch_to(self, environment: Environment) -> SwitchResult:
        with service_lock(self.namespace, self.service_name):
            previous = self.registry.current().active_environment
            logger.info(
                f"🔀 Switching {self.service_name} from {previous.value if previous else 'nothing'} "
                f"to {environment.value} ({self.mode.value})"
            )
            if self.mode is SwitchMode.RECREATE:
                self._recreate(environment)
            else:
                self._patch(environment)
            self.registry.record_switch(environment)

        logger.info(f"✅ {self.service_name} routes to {environment.deployment_name}")
        return SwitchResult(environment=environment, previous=previous, mode=self.mode)

    def _patch(self, environment: Environment) -> None:
        service = self.gateway.get_service(self.namespace, self.service_name)
        if service is None:
            self._expose(environment)
            return
        if service.selector.get(VERSION_LABEL) == environment.value:
            logger.info(f"{self.service_name} already selects {environment.value}")
            return
        selector = dict(service.selector)
        selector[VERSION_LABEL] = environment.value
        self.gateway.patch_service_selector(
            self.namespace, self.service_name, selector, resource_version=service.resource_version,
        )

    def _recreate(self, environment: Environment) -> None:
        try:
            outcome = self.gateway.delete_service(self.namespace, self.service_name)
        except NotFoundIgnorable:
            outcome = DeleteResult.NOT_FOUND
        if outcome is DeleteResult.NOT_FOUND:
            logger.info(f"No existing {self.service_name} to delete")
        self._expose(environment)

    def _expose(self, environment: Environment) -> None:
        self.gateway.expose_deployment(
            self.namespace,
            environment.deployment_name,
            port=self.port,
            target_port=self.target_port,
            service_name=self.service_name,
            type=self.service_type,
        )
