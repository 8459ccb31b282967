"""Apply engine.

Walks decoded resources strictly in order and applies each one:

- CRDs are created or updated, then (when a gate is configured) waited on
  until established before the next document is touched.
- Other resources get the configured owner reference, are created, and
  fall back to get + update when they already exist. The update keeps the
  live uid, resourceVersion and owner references. Under 'replace' the
  desired body is recorded in LAST_APPLIED_ANNOTATION, and a re-apply is
  unchanged only when the live object still carries the same record.
- Dry-run validates shape and routability only; nothing is mutated and the
  gate is never consulted. Instances of a CRD validated earlier in the same
  batch are routed by that CRD's scope instead of the cluster.

Per-resource failures are recorded and, under the 'continue' policy, the
batch goes on. Instances of a CRD that failed are never attempted.
"""

import copy
import json
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from applier.apply.state import (
    CREATED,
    FAILED,
    SKIPPED,
    UNCHANGED,
    UPDATED,
    VALIDATED,
    ApplyOutcome,
    ApplyResult,
)
from applier.clients import ClusterClient
from applier.common import (
    AlreadyExistsError,
    ApplyError,
    SchemaNotReadyError,
    UnroutableError,
)
from applier.manifest import DecodedResource
from applier.ownership import OwnerReference, merge_owner_references, union_owner_references
from applier.readiness import FAILED as SCHEMA_FAILED, SchemaGate

logger = logging.getLogger(__name__)

# Metadata owned by the API server, never sent back on update
SERVER_METADATA_FIELDS = (
    'uid', 'resourceVersion', 'creationTimestamp', 'generation',
    'managedFields', 'selfLink', 'deletionTimestamp',
)

# Canonical desired body last sent under the 'replace' strategy
LAST_APPLIED_ANNOTATION = 'manifest-applier/last-applied-configuration'


def _contains(actual, expected) -> bool:
    """True if every field of `expected` is present and equal in `actual`."""
    if isinstance(expected, dict):
        return isinstance(actual, dict) and all(
            key in actual and _contains(actual[key], value)
            for key, value in expected.items()
        )
    if isinstance(expected, list):
        return (isinstance(actual, list) and len(actual) == len(expected)
                and all(_contains(a, e) for a, e in zip(actual, expected)))
    return actual == expected


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Merge `overlay` into a copy of `base`; dicts recurse, other values replace."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def strip_server_fields(body: dict) -> dict:
    """Copy of `body` without status and server-managed metadata."""
    stripped = copy.deepcopy(body)
    stripped.pop('status', None)
    metadata = stripped.get('metadata') or {}
    for key in SERVER_METADATA_FIELDS:
        metadata.pop(key, None)
    return stripped


def last_applied(body: dict) -> str:
    """Canonical JSON of a desired body, as recorded in LAST_APPLIED_ANNOTATION.

    Server fields and any earlier record are left out.
    """
    stripped = strip_server_fields(body)
    metadata = stripped.get('metadata') or {}
    annotations = metadata.get('annotations') or {}
    if LAST_APPLIED_ANNOTATION in annotations:
        del annotations[LAST_APPLIED_ANNOTATION]
        if not annotations:
            del metadata['annotations']
    return json.dumps(stripped, sort_keys=True, separators=(',', ':'))


def _served_by(schema: DecodedResource) -> dict:
    """(apiVersion, kind) -> namespaced for each version a CRD serves."""
    spec = schema.body.get('spec') or {}
    group, kind = schema.defines
    namespaced = spec.get('scope') == 'Namespaced'
    return {
        (f"{group}/{version.get('name')}", kind): namespaced
        for version in spec.get('versions') or []
        if version.get('served', True)
    }


@dataclass
class ApplyEngine:
    """Applies decoded resources against a cluster.

    Attributes:
        client: Cluster client
        gate: CRD readiness gate (None = do not wait on CRDs)
        owner_ref: Owner reference stamped on every non-CRD resource
        merge: 'replace' (desired wins) or 'merge' (desired over live)
        on_error: 'continue' or 'stop' after a failed resource
        timeout: Request timeout in seconds for each remote call
    """
    client: ClusterClient
    gate: Optional[SchemaGate] = None
    owner_ref: Optional[OwnerReference] = None
    merge: str = 'replace'
    on_error: str = 'continue'
    timeout: Optional[float] = None

    def apply_all(self, resources: Iterable[DecodedResource], dry_run: bool = False,
                  result: Optional[ApplyResult] = None) -> ApplyResult:
        """Apply resources in order.

        Args:
            resources: Decoded resources in manifest order
            dry_run: Validate only, no remote mutation
            result: Optional result to append to (keeps rendered output)

        Returns:
            ApplyResult with one outcome per resource
        """
        if result is None:
            result = ApplyResult(dry_run=dry_run)
        result.start()

        failed_schemas: list[DecodedResource] = []
        # Dry-run only: kinds served by CRDs validated earlier in the batch
        planned: dict[tuple[str, str], bool] = {}
        stopped = False

        for resource in resources:
            if stopped:
                outcome = ApplyOutcome.for_resource(resource, SKIPPED, ApplyError(
                    "not attempted: apply stopped after an earlier failure"))
                result.record(outcome)
                continue

            blocking = next((s for s in failed_schemas if resource.depends_on(s)), None)
            if blocking is not None:
                outcome = ApplyOutcome.for_resource(resource, SKIPPED, ApplyError(
                    f"not attempted: CRD {blocking.name} is not established"))
            elif dry_run:
                outcome = self._validate(resource, planned)
                if outcome.success and resource.is_schema_definition:
                    planned.update(_served_by(resource))
            elif resource.is_schema_definition:
                outcome = self._apply_schema(resource, result)
                if not outcome.success:
                    failed_schemas.append(resource)
            else:
                outcome = self._apply_instance(resource)

            result.record(outcome)
            if outcome.success:
                logger.info(f"{outcome.identity} {outcome.action}")
            else:
                logger.error(f"{outcome.identity} {outcome.action}: {outcome.error}")
                if self.on_error == 'stop':
                    stopped = True

        result.finish()
        return result

    def _desired_body(self, resource: DecodedResource) -> dict:
        body = resource.to_dict()
        if self.owner_ref is not None and not resource.is_schema_definition:
            metadata = body.setdefault('metadata', {})
            refs = merge_owner_references(metadata.get('ownerReferences') or [], self.owner_ref)
            metadata['ownerReferences'] = refs
        return body

    def _validate(self, resource: DecodedResource, planned: dict) -> ApplyOutcome:
        key = (resource.api_version, resource.kind)
        if key in planned:
            namespaced = planned[key]
        else:
            try:
                namespaced = self.client.is_namespaced(*key)
            except ApplyError as e:
                return ApplyOutcome.for_resource(resource, FAILED, e)
        if namespaced and not resource.namespace:
            return ApplyOutcome.for_resource(resource, FAILED, UnroutableError(
                f"{resource.identity}: namespace is required for a namespaced kind"))
        return ApplyOutcome.for_resource(resource, VALIDATED, live=self._desired_body(resource))

    def _update_body(self, desired: dict, live: dict) -> dict:
        if self.merge == 'merge':
            body = _deep_merge(strip_server_fields(live), desired)
        else:
            body = copy.deepcopy(desired)
        body.pop('status', None)

        live_meta = live.get('metadata') or {}
        metadata = body.setdefault('metadata', {})
        refs = union_owner_references(live_meta.get('ownerReferences') or [],
                                      metadata.get('ownerReferences') or [])
        if refs:
            metadata['ownerReferences'] = refs
        for key in ('uid', 'resourceVersion'):
            if live_meta.get(key):
                metadata[key] = live_meta[key]
        return body

    def _create_or_update(self, resource: DecodedResource) -> tuple[str, dict]:
        desired = self._desired_body(resource)
        if self.merge == 'replace':
            metadata = desired.setdefault('metadata', {})
            annotations = metadata.get('annotations') or {}
            annotations[LAST_APPLIED_ANNOTATION] = last_applied(desired)
            metadata['annotations'] = annotations
        try:
            return CREATED, self.client.create(desired, timeout=self.timeout)
        except AlreadyExistsError:
            logger.debug(f"{resource.identity} exists, comparing with live state")

        live = self.client.get(resource.api_version, resource.kind, resource.name,
                               resource.namespace, timeout=self.timeout)
        body = self._update_body(desired, live)
        if _contains(live, strip_server_fields(body)):
            return UNCHANGED, live
        return UPDATED, self.client.update(body, timeout=self.timeout)

    def _apply_instance(self, resource: DecodedResource) -> ApplyOutcome:
        try:
            action, live = self._create_or_update(resource)
        except ApplyError as e:
            return ApplyOutcome.for_resource(resource, FAILED, e)
        return ApplyOutcome.for_resource(resource, action, live=live)

    def _apply_schema(self, resource: DecodedResource, result: ApplyResult) -> ApplyOutcome:
        try:
            action, live = self._create_or_update(resource)
        except ApplyError as e:
            result.schemas[resource.name] = SCHEMA_FAILED
            return ApplyOutcome.for_resource(resource, FAILED, e)

        if self.gate is None:
            return ApplyOutcome.for_resource(resource, action, live=live)

        try:
            readiness = self.gate.wait_until_established(resource)
        except SchemaNotReadyError as e:
            result.schemas[resource.name] = SCHEMA_FAILED
            return ApplyOutcome.for_resource(resource, action, e, live=live)
        result.schemas[resource.name] = readiness.state
        return ApplyOutcome.for_resource(resource, action, live=live)
