"""
Kubernetes client for blue/green deployment operations.
"""
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import urllib3
from kubernetes import client, config, dynamic
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from .errors import PlatformError, PlatformTimeout
from .kube_types import ApplyResult, DeleteResult, NamespaceResult, PodStatus, ServiceSpec
from .manifest import customize, load_manifest

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409


class ClusterGateway(Protocol):
    """Calls the coordinator makes against the orchestration platform."""

    def ensure_namespace(self, name: str, timeout: Optional[float] = None) -> NamespaceResult: ...

    def apply(self, manifest_path: str, namespace: str, images: Optional[Dict[str, str]] = None,
              selectors: Optional[Dict[str, Dict[str, str]]] = None,
              timeout: Optional[float] = None) -> ApplyResult: ...

    def get_pods(self, namespace: str, label_selector: str, timeout: Optional[float] = None) -> List[PodStatus]: ...

    def get_service(self, namespace: str, name: str, timeout: Optional[float] = None) -> Optional[ServiceSpec]: ...

    def delete_service(self, namespace: str, name: str, timeout: Optional[float] = None) -> DeleteResult: ...

    def expose_deployment(self, namespace: str, deployment_name: str, port: int, target_port: int,
                          service_name: str, type: str = "ClusterIP",
                          timeout: Optional[float] = None) -> ServiceSpec: ...

    def patch_service_selector(self, namespace: str, name: str, selector: Dict[str, str],
                               resource_version: Optional[str] = None,
                               timeout: Optional[float] = None) -> ServiceSpec: ...


def _is_timeout(error: BaseException) -> bool:
    if isinstance(error, urllib3.exceptions.MaxRetryError):
        error = error.reason
    # NewConnectionError subclasses ConnectTimeoutError but means refused/unresolvable
    return (
        isinstance(error, urllib3.exceptions.TimeoutError)
        and not isinstance(error, urllib3.exceptions.NewConnectionError)
    )


def _service_spec(svc) -> ServiceSpec:
    return ServiceSpec(
        name=svc.metadata.name,
        namespace=svc.metadata.namespace,
        selector=dict(svc.spec.selector or {}),
        type=svc.spec.type or "ClusterIP",
        ports=[{"port": p.port, "targetPort": p.target_port} for p in (svc.spec.ports or [])],
        cluster_ip=svc.spec.cluster_ip,
        resource_version=svc.metadata.resource_version,
    )


def _pod_ready(pod) -> bool:
    conditions = pod.status.conditions or []
    for condition in conditions:
        if condition.type == "Ready":
            return condition.status == "True"
    statuses = pod.status.container_statuses or []
    return bool(statuses) and all(s.ready for s in statuses)


class KubeClient:
    """Kubernetes implementation of the cluster gateway. Errors surface verbatim, no retries."""

    def __init__(
        self,
        in_cluster: bool = True,
        context: Optional[str] = None,
        request_timeout: Optional[float] = None,
        api_client: Optional[client.ApiClient] = None,
    ):
        """
        Initialize Kubernetes client.

        Args:
            in_cluster: Whether running inside cluster (default: True)
            context: Kubernetes context name (optional)
            request_timeout: Default per-call timeout in seconds
            api_client: Preconfigured API client; skips kubeconfig loading
        """
        self.in_cluster = in_cluster
        self.request_timeout = request_timeout

        if api_client is None:
            try:
                if in_cluster:
                    config.load_incluster_config()
                else:
                    if context:
                        config.load_kube_config(context=context)
                    else:
                        config.load_kube_config()
            except config.ConfigException as e:
                logger.error(f"❌ Failed to load Kubernetes configuration: {e}")
                raise PlatformError("load_config", str(e)) from e
            api_client = client.ApiClient()

        self.api_client = api_client
        self.v1 = client.CoreV1Api(api_client)
        self.apps_v1 = client.AppsV1Api(api_client)
        self._dynamic = None
        logger.info(f"✅ Kubernetes client initialized (in_cluster={in_cluster}, context={context or 'default'})")

    def _resource(self, operation: str, api_version: str, kind: str):
        """Look up a resource type, running API discovery on first use."""
        try:
            if self._dynamic is None:
                self._dynamic = dynamic.DynamicClient(self.api_client)
            return self._dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise PlatformError(operation, f"unknown resource {api_version}/{kind}") from e
        except ApiException as e:
            raise self._platform_error(operation, e) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise self._transport_error(operation, e, self.request_timeout) from e

    def _call(self, operation: str, fn: Callable, *args, timeout: Optional[float] = None, **kwargs):
        timeout = timeout if timeout is not None else self.request_timeout
        if timeout is not None:
            kwargs["_request_timeout"] = timeout
        try:
            return fn(*args, **kwargs)
        except ApiException:
            raise
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise self._transport_error(operation, e, timeout) from e

    @staticmethod
    def _transport_error(operation: str, e: BaseException, timeout: Optional[float]) -> PlatformError:
        if _is_timeout(e):
            logger.error(f"❌ {operation} timed out after {timeout}s")
            return PlatformTimeout(operation, f"no response within {timeout}s")
        logger.error(f"❌ {operation} failed: {e}")
        return PlatformError(operation, str(e))

    @staticmethod
    def _platform_error(operation: str, e: ApiException) -> PlatformError:
        logger.error(f"❌ {operation} failed: {e.status} {e.reason}")
        return PlatformError(operation, e.body or e.reason or str(e), status=e.status)

    def ensure_namespace(self, name: str, timeout: Optional[float] = None) -> NamespaceResult:
        """Create the namespace unless it already exists."""
        operation = f"ensure namespace {name}"
        try:
            self._call(operation, self.v1.read_namespace, name, timeout=timeout)
            logger.info(f"Namespace {name} already exists")
            return NamespaceResult.ALREADY_EXISTS
        except ApiException as e:
            if e.status != HTTP_NOT_FOUND:
                raise self._platform_error(operation, e) from e

        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
        try:
            self._call(operation, self.v1.create_namespace, body, timeout=timeout)
        except ApiException as e:
            # Created between read and create
            if e.status == HTTP_CONFLICT:
                logger.info(f"Namespace {name} already exists")
                return NamespaceResult.ALREADY_EXISTS
            raise self._platform_error(operation, e) from e
        logger.info(f"✅ Created namespace {name}")
        return NamespaceResult.CREATED

    def apply(
        self,
        manifest_path: str,
        namespace: str,
        images: Optional[Dict[str, str]] = None,
        selectors: Optional[Dict[str, Dict[str, str]]] = None,
        timeout: Optional[float] = None,
    ) -> ApplyResult:
        """
        Apply every object in a manifest file.

        Objects are created, or merge-patched when they already exist, so
        re-applying an unchanged manifest leaves the cluster as it was.

        Args:
            manifest_path: YAML file, one or more documents
            namespace: Namespace for namespaced objects
            images: Container name -> image overrides for workload objects
            selectors: Service name -> selector labels to set on that Service

        Returns:
            ApplyResult listing each object and whether it was created or configured
        """
        operation = f"apply {Path(manifest_path).name}"
        documents = load_manifest(manifest_path)

        result = ApplyResult(manifest=str(manifest_path))
        for document in documents:
            body = customize(document, images=images, selectors=selectors)
            kind = body.get("kind")
            name = body.get("metadata", {}).get("name")
            resource = self._resource(operation, body.get("apiVersion"), kind)

            target_ns = None
            if resource.namespaced:
                target_ns = namespace
                body.setdefault("metadata", {})["namespace"] = namespace

            try:
                self._call(operation, resource.create, body=body, namespace=target_ns, timeout=timeout)
                action = "created"
            except ApiException as e:
                if e.status != HTTP_CONFLICT:
                    raise self._platform_error(f"{operation} ({kind}/{name})", e) from e
                try:
                    self._call(
                        operation, resource.patch, body=body, name=name, namespace=target_ns,
                        content_type="application/merge-patch+json", timeout=timeout,
                    )
                except ApiException as patch_error:
                    raise self._platform_error(f"{operation} ({kind}/{name})", patch_error) from patch_error
                action = "configured"
            result.resources.append((kind, name, action))
            logger.info(f"✅ {kind}/{name} {action}")
        return result

    def get_pods(self, namespace: str, label_selector: str, timeout: Optional[float] = None) -> List[PodStatus]:
        """
        Get pods matching a label selector.

        Args:
            namespace: Namespace to search
            label_selector: e.g. "version=blue"

        Returns:
            List of PodStatus objects
        """
        operation = f"list pods {label_selector}"
        try:
            pods = self._call(
                operation, self.v1.list_namespaced_pod,
                namespace=namespace, label_selector=label_selector, timeout=timeout,
            )
        except ApiException as e:
            raise self._platform_error(operation, e) from e

        pod_list = []
        for pod in pods.items:
            pod_list.append(PodStatus(
                name=pod.metadata.name,
                ready=_pod_ready(pod),
                restarts=sum(c.restart_count for c in (pod.status.container_statuses or [])),
                phase=pod.status.phase,
            ))
        logger.info(f"Retrieved {len(pod_list)} pods matching {label_selector} in {namespace}")
        return pod_list

    def get_service(self, namespace: str, name: str, timeout: Optional[float] = None) -> Optional[ServiceSpec]:
        operation = f"read service {name}"
        try:
            svc = self._call(operation, self.v1.read_namespaced_service, name, namespace, timeout=timeout)
        except ApiException as e:
            if e.status == HTTP_NOT_FOUND:
                return None
            raise self._platform_error(operation, e) from e
        return _service_spec(svc)

    def delete_service(self, namespace: str, name: str, timeout: Optional[float] = None) -> DeleteResult:
        operation = f"delete service {name}"
        try:
            self._call(operation, self.v1.delete_namespaced_service, name, namespace, timeout=timeout)
        except ApiException as e:
            if e.status == HTTP_NOT_FOUND:
                logger.info(f"Service {name} not found in {namespace}, nothing to delete")
                return DeleteResult.NOT_FOUND
            raise self._platform_error(operation, e) from e
        logger.info(f"✅ Deleted service {name} from {namespace}")
        return DeleteResult.DELETED

    def expose_deployment(
        self,
        namespace: str,
        deployment_name: str,
        port: int,
        target_port: int,
        service_name: str,
        type: str = "ClusterIP",
        timeout: Optional[float] = None,
    ) -> ServiceSpec:
        """Create a service selecting the pods of an existing deployment."""
        operation = f"expose deployment {deployment_name}"
        try:
            deployment = self._call(
                operation, self.apps_v1.read_namespaced_deployment, deployment_name, namespace, timeout=timeout,
            )
            selector = dict(deployment.spec.selector.match_labels or {})
            body = client.V1Service(
                api_version="v1",
                kind="Service",
                metadata=client.V1ObjectMeta(name=service_name, namespace=namespace),
                spec=client.V1ServiceSpec(
                    selector=selector,
                    type=type,
                    ports=[client.V1ServicePort(port=port, target_port=target_port, protocol="TCP")],
                ),
            )
            svc = self._call(operation, self.v1.create_namespaced_service, namespace, body, timeout=timeout)
        except ApiException as e:
            raise self._platform_error(operation, e) from e
        logger.info(f"✅ Exposed {deployment_name} as {service_name} ({type}) selecting {selector}")
        return _service_spec(svc)

    def patch_service_selector(
        self,
        namespace: str,
        name: str,
        selector: Dict[str, str],
        resource_version: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ServiceSpec:
        """
        Replace a service's selector in place.

        With resource_version set the patch only applies if nobody else has
        written the service since it was read.
        """
        operation = f"patch service {name}"
        body: List[Dict[str, Any]] = []
        if resource_version:
            body.append({"op": "test", "path": "/metadata/resourceVersion", "value": resource_version})
        body.append({"op": "replace", "path": "/spec/selector", "value": selector})
        try:
            svc = self._call(operation, self.v1.patch_namespaced_service, name, namespace, body, timeout=timeout)
        except ApiException as e:
            raise self._platform_error(operation, e) from e
        logger.info(f"✅ Service {name} now selects {selector}")
        return _service_spec(svc)

