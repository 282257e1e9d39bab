"""
Pipeline entry point: one deployment run configured from the environment.
"""
import logging
import os
import sys
from typing import List

from dotenv import load_dotenv

from .adapters import Notifier, PipelineStep, SonarQualityGate
from .config import Settings, load_settings
from .coordinator import DeploymentCoordinator
from .errors import ConfigError, PlatformError
from .image_registry import ImageRegistry
from .kube_client import KubeClient

logger = logging.getLogger(__name__)


def build_steps(settings: Settings) -> List[PipelineStep]:
    """Pre-deployment checks that can be answered by querying an external service."""
    steps = []
    if settings.SONAR_HOST_URL:
        steps.append(SonarQualityGate(
            settings.SONAR_HOST_URL, settings.SONAR_PROJECT_KEY, token=settings.SONAR_TOKEN,
        ).as_step())
    if settings.REGISTRY_URL:
        registry = ImageRegistry(
            settings.REGISTRY_URL, username=settings.REGISTRY_USERNAME, password=settings.REGISTRY_PASSWORD,
        )
        steps.append(registry.as_step(settings.IMAGE_REPOSITORY, settings.DOCKER_TAG.value))
    return steps


def build_coordinator(settings: Settings) -> DeploymentCoordinator:
    gateway = KubeClient(
        in_cluster=settings.K8S_IN_CLUSTER,
        context=settings.K8S_CONTEXT,
        request_timeout=settings.REQUEST_TIMEOUT_SECS,
    )
    return DeploymentCoordinator(
        gateway,
        settings,
        steps=build_steps(settings),
        notifier=Notifier(settings.NOTIFY_WEBHOOK_URL),
    )


def main() -> int:
    # Credentials kept out of the main .env
    load_dotenv(os.getenv("PIPELINE_ENV_FILE", "pipeline.env"))
    try:
        settings = load_settings()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"❌ {e}")
        print("Failed-at-Config")
        return 2

    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    try:
        coordinator = build_coordinator(settings)
    except PlatformError as e:
        logger.error(f"❌ {e}")
        print("Failed-at-Connect")
        return 1

    report = coordinator.run()
    print(report.status)
    return 0 if report.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
