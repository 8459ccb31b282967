"""Owner reference computation.

An owner reference ties every applied resource to a live owner object so
the garbage collector cascades deletion. The reference is computed once per
applier configuration from an already-persisted owner; no remote calls are
made here.

The controller and blockOwnerDeletion flags are pointer-like: a False input
is recorded as None and left out of the serialized reference, so "not set"
stays distinguishable from "explicitly false".
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from applier.common import OwnerResolutionError
from applier.resources import TypeRegistry, default_registry, wrap

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnerReference:
    """Reference from an owned resource to its owner."""
    api_version: str
    kind: str
    name: str
    uid: str
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = None

    def to_dict(self) -> dict:
        """Serialized (camelCase) form; unset flags are omitted."""
        d: dict[str, Any] = {
            'apiVersion': self.api_version,
            'kind': self.kind,
            'name': self.name,
            'uid': self.uid,
        }
        if self.controller is not None:
            d['controller'] = self.controller
        if self.block_owner_deletion is not None:
            d['blockOwnerDeletion'] = self.block_owner_deletion
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'OwnerReference':
        return cls(
            api_version=data['apiVersion'],
            kind=data['kind'],
            name=data['name'],
            uid=data['uid'],
            controller=data.get('controller'),
            block_owner_deletion=data.get('blockOwnerDeletion'),
        )


@dataclass(frozen=True)
class OwnerSpec:
    """Owner configuration handed to the applier.

    Attributes:
        obj: Owner object (kubernetes model or dict), already persisted
        controller: Mark the reference as the managing controller
        block_owner_deletion: Block owner deletion until dependents are gone
        registry: Type registry resolving typed owners
    """
    obj: Any
    controller: bool = False
    block_owner_deletion: bool = False
    registry: TypeRegistry = field(default_factory=default_registry)


def compute_owner_ref(owner: Any, controller: bool = False,
                      block_owner_deletion: bool = False,
                      registry: Optional[TypeRegistry] = None) -> OwnerReference:
    """Compute the owner reference for an owner object.

    Args:
        owner: kubernetes model object or unstructured dict
        controller: Set the controller flag
        block_owner_deletion: Set the blockOwnerDeletion flag
        registry: Type registry for typed owners (default: built-in kinds)

    Returns:
        OwnerReference with flags set to True or None

    Raises:
        OwnerResolutionError: If the kind cannot be resolved, or the owner
            has no name or no server-assigned uid
    """
    if owner is None:
        raise OwnerResolutionError("Owner object is None")
    registry = registry or default_registry()

    gvk = registry.lookup(owner)
    if gvk is None:
        raise OwnerResolutionError(
            f"Cannot resolve apiVersion/kind for owner of type {type(owner).__name__}"
        )
    api_version, kind = gvk

    resource = wrap(owner, registry)
    if not resource.name:
        raise OwnerResolutionError(f"Owner {kind} has no name")
    if not resource.uid:
        raise OwnerResolutionError(
            f"Owner {kind}/{resource.name} has no uid; it must be created before it can own resources"
        )

    ref = OwnerReference(
        api_version=api_version,
        kind=kind,
        name=resource.name,
        uid=resource.uid,
        controller=True if controller else None,
        block_owner_deletion=True if block_owner_deletion else None,
    )
    logger.debug(f"Owner reference resolved: {kind}/{resource.name} (uid={resource.uid})")
    return ref


def merge_owner_references(existing: list[dict], ref: Optional[OwnerReference]) -> list[dict]:
    """Add `ref` to `existing`, replacing any entry with the same uid.

    Order of existing references is kept; a new reference is appended.
    """
    merged = [dict(r) for r in existing or []]
    if ref is None:
        return merged
    new = ref.to_dict()
    for i, current in enumerate(merged):
        if current.get('uid') == ref.uid:
            merged[i] = new
            return merged
    merged.append(new)
    return merged


def union_owner_references(live: list[dict], desired: list[dict]) -> list[dict]:
    """Union of live and desired references keyed by uid (desired wins)."""
    merged = [dict(r) for r in live or []]
    index = {r.get('uid'): i for i, r in enumerate(merged)}
    for ref in desired or []:
        uid = ref.get('uid')
        if uid in index:
            merged[index[uid]] = dict(ref)
        else:
            index[uid] = len(merged)
            merged.append(dict(ref))
    return merged
