"""Manifest decoding.

Splits rendered manifest text into YAML documents and decodes each into a
DecodedResource. Document order is preserved: later documents may depend on
earlier ones (a CRD before its custom resources).

A malformed document aborts the whole batch; callers never receive a subset
of a manifest set.
"""

import copy
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

import yaml

from applier.common import DecodeError

logger = logging.getLogger(__name__)

CRD_GROUP = 'apiextensions.k8s.io'
CRD_KIND = 'CustomResourceDefinition'

_SEPARATOR = re.compile(rb'^---[ \t]*\r?$', re.MULTILINE)
_COMMENT_OR_BLANK = re.compile(rb'^\s*(#.*)?$')


def split_group_version(api_version: str) -> tuple[str, str]:
    """Split 'apps/v1' into ('apps', 'v1'); core 'v1' has group ''."""
    if '/' in api_version:
        group, version = api_version.split('/', 1)
        return group, version
    return '', api_version


@dataclass
class DecodedResource:
    """A single decoded manifest document.

    Attributes:
        api_version: e.g. 'v1', 'apps/v1'
        kind: e.g. 'ConfigMap'
        name: metadata.name
        body: Full document as a dict
        namespace: metadata.namespace, None for cluster-scoped or defaulted
        is_schema_definition: True for CustomResourceDefinition documents
    """
    api_version: str
    kind: str
    name: str
    body: dict
    namespace: Optional[str] = None
    is_schema_definition: bool = False

    @property
    def group(self) -> str:
        return split_group_version(self.api_version)[0]

    @property
    def version(self) -> str:
        return split_group_version(self.api_version)[1]

    @property
    def identity(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    @property
    def defines(self) -> Optional[tuple[str, str]]:
        """(group, kind) registered by this CRD, None for non-CRDs."""
        if not self.is_schema_definition:
            return None
        spec = self.body.get('spec') or {}
        names = spec.get('names') or {}
        return spec.get('group', ''), names.get('kind', '')

    def depends_on(self, schema: 'DecodedResource') -> bool:
        """True if this resource is an instance of the kind `schema` defines."""
        defined = schema.defines
        return defined is not None and (self.group, self.kind) == defined

    def to_dict(self) -> dict:
        """Deep copy of the document body."""
        return copy.deepcopy(self.body)

    @classmethod
    def from_dict(cls, body: object, index: int = 0) -> 'DecodedResource':
        """Validate and wrap one parsed document.

        Raises:
            DecodeError: If required fields are missing or mistyped
        """
        if not isinstance(body, dict):
            raise DecodeError(index, f"expected a mapping, got {type(body).__name__}")

        api_version = body.get('apiVersion')
        kind = body.get('kind')
        if not api_version and not kind:
            raise DecodeError(index, "missing both apiVersion and kind")
        if not api_version or not isinstance(api_version, str):
            raise DecodeError(index, f"missing or invalid apiVersion (kind={kind})")
        if not kind or not isinstance(kind, str):
            raise DecodeError(index, f"missing or invalid kind (apiVersion={api_version})")

        metadata = body.get('metadata')
        if not isinstance(metadata, dict):
            raise DecodeError(index, f"{kind}: missing metadata")
        name = metadata.get('name')
        if not name or not isinstance(name, str):
            raise DecodeError(index, f"{kind}: missing metadata.name")
        namespace = metadata.get('namespace')
        if namespace is not None and not isinstance(namespace, str):
            raise DecodeError(index, f"{kind}/{name}: metadata.namespace must be a string")

        group, _ = split_group_version(api_version)
        return cls(
            api_version=api_version,
            kind=kind,
            name=name,
            body=body,
            namespace=namespace or None,
            is_schema_definition=(kind == CRD_KIND and group == CRD_GROUP),
        )


def _is_blank(block: bytes) -> bool:
    return all(_COMMENT_OR_BLANK.match(line) for line in block.splitlines())


def split_documents(data: bytes) -> list[bytes]:
    """Split multi-document YAML into raw document blocks.

    Blank and comment-only blocks are dropped; order is preserved.
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    return [block.strip(b'\r\n') + b'\n' for block in _SEPARATOR.split(data)
            if not _is_blank(block)]


def decode(data: bytes) -> list[DecodedResource]:
    """Decode rendered manifest content into resources.

    Args:
        data: Rendered manifest bytes (one or more YAML documents)

    Returns:
        One DecodedResource per non-empty document, in source order

    Raises:
        DecodeError: If any document is unparsable or malformed
    """
    resources = []
    for index, block in enumerate(split_documents(data)):
        try:
            body = yaml.safe_load(block)
        except yaml.YAMLError as e:
            raise DecodeError(index, f"invalid YAML: {e}") from e
        if body is None:
            continue
        resources.append(DecodedResource.from_dict(body, index))
    logger.debug(f"Decoded {len(resources)} document(s)")
    return resources


def decode_all(blocks: Iterable[bytes]) -> list[DecodedResource]:
    """Decode several rendered assets as one batch, preserving order."""
    resources: list[DecodedResource] = []
    offset = 0
    for data in blocks:
        try:
            decoded = decode(data)
        except DecodeError as e:
            raise DecodeError(offset + e.index, e.detail) from e
        offset += len(split_documents(data))
        resources.extend(decoded)
    return resources


def encode(resources: Iterable[DecodedResource]) -> bytes:
    """Encode resources back into multi-document YAML."""
    text = yaml.safe_dump_all(
        [r.body for r in resources],
        default_flow_style=False,
        sort_keys=False,
        explicit_start=True,
    )
    return text.encode('utf-8')
