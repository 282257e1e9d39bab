"""
Which environment is live and which is staged.
"""
import logging
from typing import Optional

from .kube_client import ClusterGateway
from .kube_types import Environment, RoutingState

logger = logging.getLogger(__name__)

VERSION_LABEL = "version"


def staging_from(routing: RoutingState) -> Environment:
    """The environment not receiving traffic; blue when nothing is live yet."""
    active = routing.active_environment
    return active.other() if active else Environment.BLUE


class EnvironmentRegistry:
    """
    Derives the live environment from the stable service's selector.

    The cluster is the source of truth: every ``current()`` reads the service
    again. ``record_switch`` only remembers what this process last did, so a
    disagreement with the cluster (someone else switched, or the run
    parameters lie) can be reported.
    """

    def __init__(self, gateway: ClusterGateway, namespace: str, service_name: str):
        self.gateway = gateway
        self.namespace = namespace
        self.service_name = service_name
        self.last_switch: Optional[Environment] = None

    def current(self) -> RoutingState:
        service = self.gateway.get_service(self.namespace, self.service_name)
        active = None
        if service is not None:
            value = service.selector.get(VERSION_LABEL)
            try:
                active = Environment(value) if value else None
            except ValueError:
                logger.warning(f"⚠️ Service {self.service_name} selects unknown version {value!r}")

        if self.last_switch is not None and active is not self.last_switch:
            logger.warning(
                f"⚠️ Last recorded switch was to {self.last_switch.value} but "
                f"{self.service_name} routes to {active.value if active else 'nothing'}"
            )
        return RoutingState(service_name=self.service_name, active_environment=active)

    def staging(self) -> Environment:
        return staging_from(self.current())

    def record_switch(self, environment: Environment) -> None:
        self.last_switch = environment
        logger.info(f"Recorded switch of {self.service_name} to {environment.value}")
