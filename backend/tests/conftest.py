"""Shared fixtures: an in-memory cluster gateway and settings pointing at the packaged manifests."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import pytest

from bankapp_deployer.config import DEFAULT_MANIFEST_DIR, Settings, load_settings
from bankapp_deployer.errors import PlatformError, PlatformTimeout
from bankapp_deployer.kube_types import (
    ApplyResult,
    DeleteResult,
    Environment,
    NamespaceResult,
    PodStatus,
    ServiceSpec,
)
from bankapp_deployer.manifest import customize, load_manifest


class FakeGateway:
    """
    Cluster gateway backed by dictionaries.

    Applying a Deployment labelled ``version=<env>`` creates one ready pod for
    that environment unless ``auto_ready`` is off. ``failures`` maps an
    operation name (``ensure_namespace``, ``apply:<file name>``, ``get_pods``,
    ``get_service``, ``delete_service``, ``expose_deployment``,
    ``patch_service_selector``) to the exception it should raise.
    """

    def __init__(self, auto_ready: bool = True):
        self.auto_ready = auto_ready
        self.namespaces: set[str] = set()
        self.objects: Dict[tuple, dict] = {}
        self.deployments: Dict[str, Dict[str, str]] = {}
        self.services: Dict[str, ServiceSpec] = {}
        self.pods: Dict[str, List[PodStatus]] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self._version = 0

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def operations(self) -> List[str]:
        return [call[0] for call in self.calls]

    # -- gateway contract ---------------------------------------------------

    def ensure_namespace(self, name: str, timeout: Optional[float] = None) -> NamespaceResult:
        self._record("ensure_namespace", name)
        if name in self.namespaces:
            return NamespaceResult.ALREADY_EXISTS
        self.namespaces.add(name)
        return NamespaceResult.CREATED

    def apply(self, manifest_path, namespace, images=None, selectors=None, timeout=None) -> ApplyResult:
        self._record(f"apply:{Path(manifest_path).name}", namespace)
        if namespace not in self.namespaces:
            raise PlatformError(f"apply {Path(manifest_path).name}", f'namespaces "{namespace}" not found', 404)
        result = ApplyResult(manifest=str(manifest_path))
        for document in load_manifest(manifest_path):
            body = customize(document, images=images, selectors=selectors)
            kind, name = body["kind"], body["metadata"]["name"]
            key = (kind, name)
            action = "configured" if key in self.objects else "created"
            self.objects[key] = body
            if kind == "Deployment":
                labels = body["spec"]["selector"]["matchLabels"]
                self.deployments[name] = dict(labels)
                version = labels.get("version")
                if version and self.auto_ready:
                    self.pods[version] = [PodStatus(name=f"{name}-0", ready=True, phase="Running")]
            elif kind == "Service":
                self.services[name] = ServiceSpec(
                    name=name,
                    namespace=namespace,
                    selector=dict(body["spec"].get("selector") or {}),
                    type=body["spec"].get("type", "ClusterIP"),
                    ports=[{"port": p["port"], "targetPort": p.get("targetPort")} for p in body["spec"].get("ports", [])],
                    resource_version=self._next_version(),
                )
            result.resources.append((kind, name, action))
        return result

    def get_pods(self, namespace, label_selector, timeout=None) -> List[PodStatus]:
        self._record("get_pods", label_selector)
        _, _, version = label_selector.partition("=")
        return list(self.pods.get(version, []))

    def get_service(self, namespace, name, timeout=None) -> Optional[ServiceSpec]:
        self._record("get_service", name)
        service = self.services.get(name)
        return ServiceSpec(**vars(service)) if service else None

    def delete_service(self, namespace, name, timeout=None) -> DeleteResult:
        self._record("delete_service", name)
        if self.services.pop(name, None) is None:
            return DeleteResult.NOT_FOUND
        return DeleteResult.DELETED

    def expose_deployment(self, namespace, deployment_name, port, target_port, service_name,
                          type="ClusterIP", timeout=None) -> ServiceSpec:
        self._record("expose_deployment", deployment_name, service_name)
        if deployment_name not in self.deployments:
            raise PlatformError(f"expose deployment {deployment_name}", "not found", 404)
        if service_name in self.services:
            raise PlatformError(f"expose deployment {deployment_name}", "already exists", 409)
        service = ServiceSpec(
            name=service_name,
            namespace=namespace,
            selector=dict(self.deployments[deployment_name]),
            type=type,
            ports=[{"port": port, "targetPort": target_port}],
            resource_version=self._next_version(),
        )
        self.services[service_name] = service
        return service

    def patch_service_selector(self, namespace, name, selector, resource_version=None, timeout=None) -> ServiceSpec:
        self._record("patch_service_selector", name, dict(selector))
        service = self.services.get(name)
        if service is None:
            raise PlatformError(f"patch service {name}", "not found", 404)
        if resource_version is not None and resource_version != service.resource_version:
            raise PlatformError(f"patch service {name}", "resourceVersion changed", 409)
        service.selector = dict(selector)
        service.resource_version = self._next_version()
        return service

    # -- helpers ------------------------------------------------------------

    def set_pods(self, environment: Environment, *ready: bool) -> None:
        self.pods[environment.value] = [
            PodStatus(name=f"{environment.deployment_name}-{i}", ready=flag) for i, flag in enumerate(ready)
        ]

    def route_to(self, environment: Environment, name: str = "bankapp-service") -> None:
        self.services[name] = ServiceSpec(
            name=name,
            namespace="webapps",
            selector={"app": "bankapp", "version": environment.value},
            resource_version=self._next_version(),
        )


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.events: List[tuple] = []
        self.fail = fail

    def notify(self, event: str, message: str, **details) -> bool:
        self.events.append((event, message, details))
        return not self.fail


def make_settings(**overrides) -> Settings:
    values = {"MANIFEST_DIR": DEFAULT_MANIFEST_DIR, "VERIFY_POLL_SECS": 1.0, "VERIFY_TIMEOUT_SECS": 10.0}
    values.update(overrides)
    return load_settings(_env_file=None, **values)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def timeout_error() -> PlatformTimeout:
    return PlatformTimeout("list pods version=green", "no response within 5s")
