"""Outcome bookkeeping for apply runs.

Each resource processed by the engine produces one ApplyOutcome; an
ApplyResult collects them in apply order together with the rendered
documents and the readiness state of every CRD seen.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from applier.common import ApplyFailedError
from applier.manifest import DecodedResource

logger = logging.getLogger(__name__)

CREATED = 'created'
UPDATED = 'updated'
UNCHANGED = 'unchanged'
VALIDATED = 'validated'
FAILED = 'failed'
SKIPPED = 'skipped'


@dataclass
class ApplyOutcome:
    """Outcome of applying a single resource.

    Attributes:
        api_version: Resource apiVersion
        kind: Resource kind
        name: metadata.name
        namespace: metadata.namespace (None for cluster-scoped)
        action: created, updated, unchanged, validated, failed or skipped
        error: Error if the resource did not apply cleanly
        live: Body returned by the cluster (desired body in dry-run)
    """
    api_version: str
    kind: str
    name: str
    namespace: Optional[str] = None
    action: str = SKIPPED
    error: Optional[Exception] = None
    live: Optional[dict] = None

    @classmethod
    def for_resource(cls, resource: DecodedResource, action: str,
                     error: Optional[Exception] = None,
                     live: Optional[dict] = None) -> 'ApplyOutcome':
        return cls(
            api_version=resource.api_version,
            kind=resource.kind,
            name=resource.name,
            namespace=resource.namespace,
            action=action,
            error=error,
            live=live,
        )

    @property
    def identity(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def owner_references(self) -> list[dict]:
        if not self.live:
            return []
        return list((self.live.get('metadata') or {}).get('ownerReferences') or [])

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'apiVersion': self.api_version,
            'kind': self.kind,
            'name': self.name,
            'action': self.action,
        }
        if self.namespace is not None:
            d['namespace'] = self.namespace
        if self.error is not None:
            d['error'] = str(self.error)
            d['code'] = getattr(self.error, 'code', None)
        return d


class ApplyResult:
    """Ordered outcomes of one apply call.

    The call succeeded only if every outcome succeeded.
    """

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.outcomes: list[ApplyOutcome] = []
        self.rendered: list[str] = []
        self.schemas: dict[str, str] = {}
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def start(self) -> None:
        if self.started_at is None:
            self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    def record(self, outcome: ApplyOutcome) -> ApplyOutcome:
        self.outcomes.append(outcome)
        return outcome

    def get(self, identity: str) -> ApplyOutcome:
        """Get the outcome for a resource identity (Kind/[ns/]name).

        Raises:
            KeyError: If no outcome matches
        """
        for outcome in self.outcomes:
            if outcome.identity == identity:
                return outcome
        raise KeyError(identity)

    @property
    def success(self) -> bool:
        return all(o.success for o in self.outcomes)

    @property
    def failed(self) -> list[ApplyOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def error(self) -> Optional[ApplyFailedError]:
        """Aggregate error for failed outcomes, None if all succeeded."""
        failed = self.failed
        if not failed:
            return None
        return ApplyFailedError([(o.identity, o.error) for o in failed])

    def raise_for_failures(self) -> None:
        """Raise the aggregate error if any outcome failed."""
        error = self.error()
        if error is not None:
            raise error

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'dry_run': self.dry_run,
            'duration': self.duration,
            'resources': [o.to_dict() for o in self.outcomes],
            'schemas': dict(self.schemas),
        }
