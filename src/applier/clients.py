"""Cluster client adapter.

The apply pipeline only needs a narrow client surface (ClusterClient). The
KubernetesClusterClient implements it on top of the three kubernetes client
handles:

- CustomResourceDefinitions -> ApiextensionsV1Api (also readiness status)
- core 'v1' kinds            -> CoreV1Api (typed methods by naming convention)
- everything else            -> DynamicClient (discovery-based routing)

Remote failures are translated into the applier error taxonomy; nothing is
retried here.
"""

import logging
import os
import re
from typing import Any, Optional, Protocol, runtime_checkable

import urllib3
from kubernetes import client
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError
from kubernetes.dynamic.resource import ResourceInstance

from applier.common import (
    AlreadyExistsError,
    ApplyError,
    ConfigError,
    ConflictError,
    NotFoundError,
    RemoteTimeoutError,
    UnroutableError,
)
from applier.config import ApplierFlags
from applier.manifest import CRD_GROUP, CRD_KIND, split_group_version

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')


@runtime_checkable
class ClusterClient(Protocol):
    """Client surface required by the apply engine and readiness gate."""

    def is_namespaced(self, api_version: str, kind: str) -> bool:
        """Scope of a kind. Raises UnroutableError if not served."""

    def create(self, body: dict, timeout: Optional[float] = None) -> dict:
        """Create a resource. Raises AlreadyExistsError if present."""

    def get(self, api_version: str, kind: str, name: str,
            namespace: Optional[str] = None, timeout: Optional[float] = None) -> dict:
        """Read a resource. Raises NotFoundError if absent."""

    def update(self, body: dict, timeout: Optional[float] = None) -> dict:
        """Replace a resource. Raises ConflictError on a stale resourceVersion."""

    def schema_conditions(self, name: str, timeout: Optional[float] = None) -> list[dict]:
        """Status conditions of a CustomResourceDefinition."""


def _snake(kind: str) -> str:
    return _CAMEL_BOUNDARY.sub('_', kind).lower()


def _identity(body: dict) -> str:
    metadata = body.get('metadata') or {}
    parts = [body.get('kind', '?'), metadata.get('namespace'), metadata.get('name', '?')]
    return '/'.join(p for p in parts if p)


def _is_timeout(e: Exception) -> bool:
    if isinstance(e, urllib3.exceptions.TimeoutError):
        return True
    if isinstance(e, urllib3.exceptions.MaxRetryError):
        return isinstance(e.reason, urllib3.exceptions.TimeoutError)
    return False


def translate_error(e: Exception, operation: str, identity: str) -> ApplyError:
    """Map a kubernetes/urllib3 exception onto the applier taxonomy."""
    if _is_timeout(e):
        return RemoteTimeoutError(f"{operation} {identity} timed out: {e}")
    status = getattr(e, 'status', None)
    reason = getattr(e, 'reason', None) or str(e)
    if status == 404:
        return NotFoundError(f"{operation} {identity}: not found")
    if status == 409:
        if operation == 'create':
            return AlreadyExistsError(f"{operation} {identity}: already exists")
        return ConflictError(f"{operation} {identity}: conflict ({reason})")
    if status is not None:
        return ApplyError(f"{operation} {identity} failed: {status} {reason}")
    return ApplyError(f"{operation} {identity} failed: {e}")


class KubernetesClusterClient:
    """ClusterClient over the kubernetes typed, apiextensions and dynamic clients.

    Attributes:
        core: CoreV1Api (typed client for core 'v1' kinds)
        apiextensions: ApiextensionsV1Api (CRDs and their status)
        dynamic: DynamicClient (all other kinds)
    """

    def __init__(self, kube_client: Any, apiextensions_client: Any, dynamic_client: Any):
        missing = [name for name, value in (
            ('kube_client', kube_client),
            ('apiextensions_client', apiextensions_client),
            ('dynamic_client', dynamic_client),
        ) if value is None]
        if missing:
            raise ConfigError(f"Missing cluster client(s): {', '.join(missing)}")
        self.core = kube_client
        self.apiextensions = apiextensions_client
        self.dynamic = dynamic_client
        self._serializer = client.ApiClient()

    # Routing

    def _route(self, api_version: str, kind: str) -> str:
        group, _ = split_group_version(api_version)
        if kind == CRD_KIND and group == CRD_GROUP:
            return 'crd'
        if api_version == 'v1' and self._core_scope(kind) is not None:
            return 'core'
        return 'dynamic'

    def _core_scope(self, kind: str) -> Optional[bool]:
        """True/False for namespaced/cluster-scoped core kinds, None if unknown."""
        snake = _snake(kind)
        if hasattr(self.core, f'create_namespaced_{snake}'):
            return True
        if hasattr(self.core, f'create_{snake}'):
            return False
        return None

    def _core_method(self, verb: str, kind: str):
        snake = _snake(kind)
        if self._core_scope(kind):
            return getattr(self.core, f'{verb}_namespaced_{snake}'), True
        return getattr(self.core, f'{verb}_{snake}'), False

    def _dynamic_resource(self, api_version: str, kind: str):
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise UnroutableError(f"{kind} ({api_version}) is not served by the cluster") from e
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise translate_error(e, 'discover', f"{kind} ({api_version})") from e

    def _to_dict(self, obj: Any, api_version: str, kind: str) -> dict:
        if isinstance(obj, ResourceInstance):
            body = obj.to_dict()
        elif isinstance(obj, dict):
            body = obj
        else:
            body = self._serializer.sanitize_for_serialization(obj)
        body.setdefault('apiVersion', api_version)
        body.setdefault('kind', kind)
        return body

    @staticmethod
    def _require_namespace(namespaced: bool, namespace: Optional[str], identity: str) -> None:
        if namespaced and not namespace:
            raise UnroutableError(f"{identity}: namespace is required for a namespaced kind")

    # ClusterClient

    def is_namespaced(self, api_version: str, kind: str) -> bool:
        route = self._route(api_version, kind)
        if route == 'crd':
            return False
        if route == 'core':
            return bool(self._core_scope(kind))
        return bool(self._dynamic_resource(api_version, kind).namespaced)

    def create(self, body: dict, timeout: Optional[float] = None) -> dict:
        api_version, kind = body['apiVersion'], body['kind']
        namespace = (body.get('metadata') or {}).get('namespace')
        identity = _identity(body)
        route = self._route(api_version, kind)
        try:
            if route == 'crd':
                obj = self.apiextensions.create_custom_resource_definition(
                    body=body, _request_timeout=timeout)
            elif route == 'core':
                method, namespaced = self._core_method('create', kind)
                self._require_namespace(namespaced, namespace, identity)
                if namespaced:
                    obj = method(namespace=namespace, body=body, _request_timeout=timeout)
                else:
                    obj = method(body=body, _request_timeout=timeout)
            else:
                resource = self._dynamic_resource(api_version, kind)
                self._require_namespace(resource.namespaced, namespace, identity)
                obj = self.dynamic.create(
                    resource, body=body,
                    namespace=namespace if resource.namespaced else None,
                    _request_timeout=timeout)
        except (ApiException, DynamicApiError, urllib3.exceptions.HTTPError) as e:
            raise translate_error(e, 'create', identity) from e
        return self._to_dict(obj, api_version, kind)

    def get(self, api_version: str, kind: str, name: str,
            namespace: Optional[str] = None, timeout: Optional[float] = None) -> dict:
        identity = '/'.join(p for p in (kind, namespace, name) if p)
        route = self._route(api_version, kind)
        try:
            if route == 'crd':
                obj = self.apiextensions.read_custom_resource_definition(
                    name=name, _request_timeout=timeout)
            elif route == 'core':
                method, namespaced = self._core_method('read', kind)
                self._require_namespace(namespaced, namespace, identity)
                if namespaced:
                    obj = method(name=name, namespace=namespace, _request_timeout=timeout)
                else:
                    obj = method(name=name, _request_timeout=timeout)
            else:
                resource = self._dynamic_resource(api_version, kind)
                self._require_namespace(resource.namespaced, namespace, identity)
                obj = self.dynamic.get(
                    resource, name=name,
                    namespace=namespace if resource.namespaced else None,
                    _request_timeout=timeout)
        except (ApiException, DynamicApiError, urllib3.exceptions.HTTPError) as e:
            raise translate_error(e, 'get', identity) from e
        return self._to_dict(obj, api_version, kind)

    def update(self, body: dict, timeout: Optional[float] = None) -> dict:
        api_version, kind = body['apiVersion'], body['kind']
        metadata = body.get('metadata') or {}
        name, namespace = metadata.get('name'), metadata.get('namespace')
        identity = _identity(body)
        route = self._route(api_version, kind)
        try:
            if route == 'crd':
                obj = self.apiextensions.replace_custom_resource_definition(
                    name=name, body=body, _request_timeout=timeout)
            elif route == 'core':
                method, namespaced = self._core_method('replace', kind)
                self._require_namespace(namespaced, namespace, identity)
                if namespaced:
                    obj = method(name=name, namespace=namespace, body=body,
                                 _request_timeout=timeout)
                else:
                    obj = method(name=name, body=body, _request_timeout=timeout)
            else:
                resource = self._dynamic_resource(api_version, kind)
                self._require_namespace(resource.namespaced, namespace, identity)
                obj = self.dynamic.replace(
                    resource, body=body, name=name,
                    namespace=namespace if resource.namespaced else None,
                    _request_timeout=timeout)
        except (ApiException, DynamicApiError, urllib3.exceptions.HTTPError) as e:
            raise translate_error(e, 'update', identity) from e
        return self._to_dict(obj, api_version, kind)

    def schema_conditions(self, name: str, timeout: Optional[float] = None) -> list[dict]:
        try:
            obj = self.apiextensions.read_custom_resource_definition_status(
                name=name, _request_timeout=timeout)
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise translate_error(e, 'get status', f"{CRD_KIND}/{name}") from e
        body = self._to_dict(obj, f'{CRD_GROUP}/v1', CRD_KIND)
        return list((body.get('status') or {}).get('conditions') or [])


def connect(flags: ApplierFlags) -> KubernetesClusterClient:
    """Build a KubernetesClusterClient from kubeconfig or in-cluster config.

    In-cluster configuration is used only when no kubeconfig is given and
    the process runs inside a pod (KUBERNETES_SERVICE_HOST is set).

    Raises:
        ConfigError: If no usable cluster configuration is found
    """
    from kubernetes import config as kube_config
    from kubernetes import dynamic

    try:
        if not flags.kubeconfig and os.environ.get('KUBERNETES_SERVICE_HOST'):
            kube_config.load_incluster_config()
            api_client = client.ApiClient()
            logger.debug("Using in-cluster configuration")
        else:
            api_client = kube_config.new_client_from_config(
                config_file=flags.kubeconfig, context=flags.context)
            logger.debug(f"Using kubeconfig {flags.kubeconfig or '(default)'} "
                         f"context {flags.context or '(current)'}")
    except (kube_config.ConfigException, OSError) as e:
        raise ConfigError(f"Cannot load cluster configuration: {e}") from e

    try:
        dynamic_client = dynamic.DynamicClient(api_client)
    except (ApiException, urllib3.exceptions.HTTPError) as e:
        raise ConfigError(f"Cannot reach cluster for API discovery: {e}") from e

    return KubernetesClusterClient(
        client.CoreV1Api(api_client),
        client.ApiextensionsV1Api(api_client),
        dynamic_client,
    )
