"""Typed and unstructured resource variants.

Owners and applied objects arrive either as kubernetes client models
(V1Namespace, V1Deployment, ...) or as plain dicts. Both are wrapped behind
the Resource protocol so the rest of the pipeline never branches on type:

- TypedResource: a kubernetes model object, apiVersion/kind from a TypeRegistry
- UnstructuredResource: a dict carrying its own apiVersion/kind

TypeRegistry plays the role of a scheme: it maps model classes to their
apiVersion/kind and converts between typed and unstructured forms.
"""

import copy
import logging
import re
from typing import Any, Optional, Protocol, runtime_checkable

from dateutil import parser as date_parser
from kubernetes import client

logger = logging.getLogger(__name__)

# Type names used in the generated models' openapi_types
_LIST_TYPE = re.compile(r'^list\[(.+)\]$')
_DICT_TYPE = re.compile(r'^dict\(([^,]+), (.+)\)$')
_PRIMITIVE_TYPES = ('str', 'int', 'float', 'bool', 'object')


def _model_from_dict(body: dict, cls: type) -> Any:
    """Build a model object from its camelCase dict form."""
    kwargs = {}
    for attr, key in cls.attribute_map.items():
        if key in body:
            kwargs[attr] = _value_from_json(body[key], cls.openapi_types[attr])
    return cls(**kwargs)


def _value_from_json(value: Any, type_name: str) -> Any:
    if value is None:
        return None
    match = _LIST_TYPE.match(type_name)
    if match:
        return [_value_from_json(item, match.group(1)) for item in value]
    match = _DICT_TYPE.match(type_name)
    if match:
        return {k: _value_from_json(v, match.group(2)) for k, v in value.items()}
    if type_name in _PRIMITIVE_TYPES:
        return value
    if type_name in ('date', 'datetime'):
        parsed = date_parser.isoparse(value) if isinstance(value, str) else value
        return parsed.date() if type_name == 'date' else parsed
    return _model_from_dict(value, getattr(client, type_name))


class TypeRegistry:
    """Maps kubernetes model classes to (apiVersion, kind)."""

    def __init__(self):
        self._types: dict[type, tuple[str, str]] = {}
        self._api_client = client.ApiClient()

    def register(self, cls: type, api_version: str, kind: str) -> None:
        self._types[cls] = (api_version, kind)

    def is_registered(self, cls: type) -> bool:
        return cls in self._types

    def lookup(self, obj: Any) -> Optional[tuple[str, str]]:
        """Resolve (apiVersion, kind) for a typed or unstructured object.

        Returns:
            The pair, or None if it cannot be resolved
        """
        if isinstance(obj, dict):
            api_version, kind = obj.get('apiVersion'), obj.get('kind')
            if api_version and kind:
                return api_version, kind
            return None
        return self._types.get(type(obj))

    def serialize(self, obj: Any) -> Any:
        """camelCase JSON-ready form of a model object (or list/dict of them)."""
        return self._api_client.sanitize_for_serialization(obj)

    def to_unstructured(self, obj: Any) -> dict:
        """Convert an object to its dict form with apiVersion/kind set."""
        if isinstance(obj, dict):
            return copy.deepcopy(obj)
        body = self.serialize(obj)
        gvk = self.lookup(obj)
        if gvk is not None:
            body['apiVersion'], body['kind'] = gvk
        return body

    def from_unstructured(self, body: dict, cls: type) -> Any:
        """Convert a dict into an instance of a registered model class.

        Nested models are resolved from the generated attribute_map and
        openapi_types; timestamps are parsed into datetimes.

        Raises:
            KeyError: If `cls` is not registered
            ValueError: If the model rejects the data (e.g. a required field is missing)
        """
        if cls not in self._types:
            raise KeyError(f"{cls.__name__} is not registered")
        return _model_from_dict(body, cls)


def default_registry() -> TypeRegistry:
    """Registry pre-populated with common built-in kinds."""
    registry = TypeRegistry()
    for cls, api_version, kind in (
        (client.V1Namespace, 'v1', 'Namespace'),
        (client.V1ConfigMap, 'v1', 'ConfigMap'),
        (client.V1Secret, 'v1', 'Secret'),
        (client.V1Service, 'v1', 'Service'),
        (client.V1ServiceAccount, 'v1', 'ServiceAccount'),
        (client.V1Pod, 'v1', 'Pod'),
        (client.V1PersistentVolumeClaim, 'v1', 'PersistentVolumeClaim'),
        (client.V1Deployment, 'apps/v1', 'Deployment'),
        (client.V1StatefulSet, 'apps/v1', 'StatefulSet'),
        (client.V1DaemonSet, 'apps/v1', 'DaemonSet'),
        (client.V1ReplicaSet, 'apps/v1', 'ReplicaSet'),
        (client.V1Job, 'batch/v1', 'Job'),
        (client.V1CronJob, 'batch/v1', 'CronJob'),
        (client.V1Role, 'rbac.authorization.k8s.io/v1', 'Role'),
        (client.V1RoleBinding, 'rbac.authorization.k8s.io/v1', 'RoleBinding'),
        (client.V1ClusterRole, 'rbac.authorization.k8s.io/v1', 'ClusterRole'),
        (client.V1ClusterRoleBinding, 'rbac.authorization.k8s.io/v1', 'ClusterRoleBinding'),
        (client.V1Ingress, 'networking.k8s.io/v1', 'Ingress'),
        (client.V1CustomResourceDefinition, 'apiextensions.k8s.io/v1', 'CustomResourceDefinition'),
    ):
        registry.register(cls, api_version, kind)
    return registry


@runtime_checkable
class Resource(Protocol):
    """Common capability interface of typed and unstructured resources."""

    @property
    def api_version(self) -> str: ...

    @property
    def kind(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def namespace(self) -> Optional[str]: ...

    @property
    def uid(self) -> Optional[str]: ...

    def owner_references(self) -> list[dict]:
        """Owner references in their serialized (camelCase) form."""

    def set_owner_references(self, refs: list[dict]) -> None:
        """Replace the owner references."""

    def to_dict(self) -> dict:
        """Unstructured form of the resource."""


class UnstructuredResource:
    """Resource backed by a plain dict."""

    def __init__(self, body: dict):
        self.body = body

    @property
    def _metadata(self) -> dict:
        return self.body.setdefault('metadata', {})

    @property
    def api_version(self) -> str:
        return self.body.get('apiVersion', '')

    @property
    def kind(self) -> str:
        return self.body.get('kind', '')

    @property
    def name(self) -> str:
        return self._metadata.get('name', '')

    @property
    def namespace(self) -> Optional[str]:
        return self._metadata.get('namespace') or None

    @property
    def uid(self) -> Optional[str]:
        return self._metadata.get('uid') or None

    def owner_references(self) -> list[dict]:
        return [dict(ref) for ref in self._metadata.get('ownerReferences') or []]

    def set_owner_references(self, refs: list[dict]) -> None:
        if refs:
            self._metadata['ownerReferences'] = [dict(ref) for ref in refs]
        else:
            self._metadata.pop('ownerReferences', None)

    def to_dict(self) -> dict:
        return copy.deepcopy(self.body)


class TypedResource:
    """Resource backed by a kubernetes client model object."""

    def __init__(self, obj: Any, registry: TypeRegistry):
        self.obj = obj
        self.registry = registry

    def _gvk(self) -> tuple[str, str]:
        return self.registry.lookup(self.obj) or ('', '')

    @property
    def api_version(self) -> str:
        return getattr(self.obj, 'api_version', None) or self._gvk()[0]

    @property
    def kind(self) -> str:
        return getattr(self.obj, 'kind', None) or self._gvk()[1]

    @property
    def name(self) -> str:
        metadata = getattr(self.obj, 'metadata', None)
        return (metadata.name if metadata else None) or ''

    @property
    def namespace(self) -> Optional[str]:
        metadata = getattr(self.obj, 'metadata', None)
        return (metadata.namespace if metadata else None) or None

    @property
    def uid(self) -> Optional[str]:
        metadata = getattr(self.obj, 'metadata', None)
        return (metadata.uid if metadata else None) or None

    def owner_references(self) -> list[dict]:
        metadata = getattr(self.obj, 'metadata', None)
        refs = (metadata.owner_references if metadata else None) or []
        return [self.registry.serialize(ref) for ref in refs]

    def set_owner_references(self, refs: list[dict]) -> None:
        if self.obj.metadata is None:
            self.obj.metadata = client.V1ObjectMeta()
        self.obj.metadata.owner_references = [
            client.V1OwnerReference(
                api_version=ref['apiVersion'],
                kind=ref['kind'],
                name=ref['name'],
                uid=ref['uid'],
                controller=ref.get('controller'),
                block_owner_deletion=ref.get('blockOwnerDeletion'),
            )
            for ref in refs
        ] or None

    def to_dict(self) -> dict:
        return self.registry.to_unstructured(self.obj)


def wrap(obj: Any, registry: TypeRegistry) -> Resource:
    """Wrap a dict or model object in the matching Resource variant."""
    if isinstance(obj, (UnstructuredResource, TypedResource)):
        return obj
    if isinstance(obj, dict):
        return UnstructuredResource(obj)
    return TypedResource(obj, registry)
