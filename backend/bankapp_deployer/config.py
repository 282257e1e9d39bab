"""
Configuration settings for blue/green deployment runs.
"""
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

from .errors import ConfigError
from .kube_types import DeploymentTarget, Environment, SwitchMode, VerificationPolicy

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_DIR = Path(__file__).parent / "manifests"


class Settings(BaseSettings):
    """Run parameters and platform settings from environment variables."""

    # Run parameters
    DEPLOY_ENVIRONMENT: Environment = Field(default=Environment.BLUE, description="Workload variant to deploy: blue|green")
    DOCKER_TAG: Environment = Field(default=Environment.BLUE, description="Image tag that was built and pushed: blue|green")
    SWITCH_TRAFFIC: bool = Field(default=False, description="Point the stable service at the deployed environment")
    VERIFY_DEPLOYMENT: bool = Field(default=True, description="Run health verification after deploying")
    VERIFICATION_POLICY: VerificationPolicy = Field(default=VerificationPolicy.STRICT, description="strict|permissive")
    SWITCH_MODE: SwitchMode = Field(default=SwitchMode.PATCH, description="patch|recreate")

    # Kubernetes Configuration
    K8S_NAMESPACE: str = Field(default="webapps", min_length=1, description="Kubernetes namespace")
    K8S_CONTEXT: Optional[str] = Field(default=None, description="Kubernetes context")
    K8S_IN_CLUSTER: bool = Field(default=False, description="Running in cluster")

    # Manifests
    MANIFEST_DIR: Path = Field(default=DEFAULT_MANIFEST_DIR, description="Directory holding the manifests")
    DB_MANIFEST: str = Field(default="mysql-ds.yml", description="Database dependency manifest")
    APP_MANIFEST_TEMPLATE: str = Field(default="app-deployment-{environment}.yml", description="Workload manifest name pattern")
    SERVICE_MANIFEST: str = Field(default="bankapp-service.yml", description="Stable service manifest")

    # Stable service
    SERVICE_NAME: str = Field(default="bankapp-service", min_length=1, description="Stable service name")
    SERVICE_PORT: int = Field(default=80, ge=1, le=65535)
    SERVICE_TARGET_PORT: int = Field(default=8080, ge=1, le=65535)
    SERVICE_TYPE: str = Field(default="LoadBalancer", description="ClusterIP|NodePort|LoadBalancer")

    # Image
    IMAGE_REPOSITORY: str = Field(default="adijaiswal/bankapp", description="Image repository without tag")
    APP_CONTAINER: str = Field(default="bankapp", description="Container name inside the workload")

    # Timeouts
    VERIFY_TIMEOUT_SECS: float = Field(default=120.0, gt=0, description="Health verification deadline")
    VERIFY_POLL_SECS: float = Field(default=5.0, ge=0, description="Delay between verification polls")
    REQUEST_TIMEOUT_SECS: int = Field(default=30, gt=0, description="Per-call control plane timeout")

    # External collaborators
    NOTIFY_WEBHOOK_URL: Optional[str] = Field(default=None, description="Webhook receiving run notifications")
    SONAR_HOST_URL: Optional[str] = Field(default=None, description="SonarQube server")
    SONAR_TOKEN: Optional[str] = Field(default=None, description="SonarQube token")
    SONAR_PROJECT_KEY: str = Field(default="bankapp", description="SonarQube project key")
    REGISTRY_URL: Optional[str] = Field(default=None, description="Container registry to confirm the pushed tag on")
    REGISTRY_USERNAME: Optional[str] = Field(default=None, description="Registry user")
    REGISTRY_PASSWORD: Optional[str] = Field(default=None, description="Registry password or token")

    # Service Configuration
    HTTP_PORT: int = Field(default=8002, description="API port")
    LOG_LEVEL: str = Field(default="info", description="Log level: info|debug|warning")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    def manifest_path(self, name: str) -> Path:
        return Path(self.MANIFEST_DIR) / name

    def app_manifest(self, environment: Environment) -> Path:
        return self.manifest_path(self.APP_MANIFEST_TEMPLATE.format(environment=environment.value))

    def image(self, tag: str) -> str:
        return f"{self.IMAGE_REPOSITORY}:{tag}"

    def to_target(self) -> DeploymentTarget:
        """Build the immutable target for this run."""
        manifest = self.app_manifest(self.DEPLOY_ENVIRONMENT)
        return DeploymentTarget(
            environment=self.DEPLOY_ENVIRONMENT,
            image_tag=self.DOCKER_TAG.value,
            manifest_ref=str(manifest),
        )

    def validate_run(self) -> List[str]:
        """
        Check the run parameters against each other and the manifest directory.

        Returns:
            Warnings that do not block the run

        Raises:
            ConfigError: when a manifest the run needs is missing
        """
        for path in (
            self.manifest_path(self.DB_MANIFEST),
            self.app_manifest(self.DEPLOY_ENVIRONMENT),
            self.manifest_path(self.SERVICE_MANIFEST),
        ):
            if not path.is_file():
                raise ConfigError(f"manifest not found: {path}")

        warnings = []
        if self.DOCKER_TAG is not self.DEPLOY_ENVIRONMENT:
            warnings.append(
                f"DOCKER_TAG={self.DOCKER_TAG.value} differs from DEPLOY_ENVIRONMENT={self.DEPLOY_ENVIRONMENT.value}: "
                f"{self.DEPLOY_ENVIRONMENT.deployment_name} will run image {self.image(self.DOCKER_TAG.value)}"
            )
        if self.SWITCH_TRAFFIC and not self.VERIFY_DEPLOYMENT and self.VERIFICATION_POLICY is VerificationPolicy.STRICT:
            warnings.append("VERIFY_DEPLOYMENT is off but the strict policy verifies before every switch")
        for message in warnings:
            logger.warning(f"⚠️ {message}")
        return warnings


def load_settings(**overrides) -> Settings:
    """Load settings, turning validation errors into ConfigError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
