"""Manifest templating and apply engine for Kubernetes.

Renders Jinja2 manifest templates, decodes them into resources, waits for
CustomResourceDefinitions to be established, and applies resources in
order with optional owner references.

Basic usage:
    from applier import ApplierConfig, DirFS, connect, load_flags

    flags = load_flags()
    applier = ApplierConfig.from_flags(connect(flags), flags).build()
    result = applier.apply_custom_resources(DirFS('manifests'), {'Name': 'demo'})
    result.raise_for_failures()
"""

from applier.apply.applier import Applier, ApplierConfig
from applier.apply.state import ApplyOutcome, ApplyResult
from applier.asset import AssetReader, DirFS, MemFS
from applier.clients import ClusterClient, KubernetesClusterClient, connect
from applier.common import (
    ApplierError,
    ApplyError,
    ApplyFailedError,
    ConfigError,
    DecodeError,
    OwnerResolutionError,
    RenderError,
    SchemaNotReadyError,
)
from applier.config import ApplierFlags, load_flags
from applier.manifest import DecodedResource, decode, encode
from applier.ownership import OwnerReference, OwnerSpec, compute_owner_ref
from applier.resources import TypeRegistry, default_registry
from applier.template import TemplateRenderer, default_func_map

__all__ = [
    'Applier',
    'ApplierConfig',
    'ApplyOutcome',
    'ApplyResult',
    'AssetReader',
    'DirFS',
    'MemFS',
    'ClusterClient',
    'KubernetesClusterClient',
    'connect',
    'ApplierError',
    'ApplyError',
    'ApplyFailedError',
    'ConfigError',
    'DecodeError',
    'OwnerResolutionError',
    'RenderError',
    'SchemaNotReadyError',
    'ApplierFlags',
    'load_flags',
    'DecodedResource',
    'decode',
    'encode',
    'OwnerReference',
    'OwnerSpec',
    'compute_owner_ref',
    'TypeRegistry',
    'default_registry',
    'TemplateRenderer',
    'default_func_map',
]
