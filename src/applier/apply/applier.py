"""Applier facade.

ApplierConfig is an immutable, validated bundle of everything an apply
needs: cluster client, template functions, optional owner, and options.
ApplierConfig.build() resolves the owner reference once and returns an
Applier exposing the two entry points:

- apply_directly: render + decode + apply, CRDs are not waited on
- apply_custom_resources: full pipeline, CRDs gated on readiness

Render and decode failures raise before any remote call is made.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from applier.apply.engine import ApplyEngine
from applier.apply.state import ApplyResult
from applier.asset import AssetReader, expand_assets
from applier.clients import ClusterClient
from applier.common import ConfigError
from applier.config import DEFAULT_TIMEOUT, MERGE_STRATEGIES, ON_ERROR_POLICIES, ApplierFlags
from applier.manifest import DecodedResource, decode_all
from applier.ownership import OwnerReference, OwnerSpec, compute_owner_ref
from applier.readiness import Clock, SchemaGate, SystemClock
from applier.template import FuncMap, TemplateRenderer, default_func_map

logger = logging.getLogger(__name__)


def render_assets(reader: AssetReader, values: Any = None, files: Iterable[str] = (),
                  header: Optional[str] = None, excluded: Iterable[str] = (),
                  func_map: Optional[FuncMap] = None) -> list[bytes]:
    """Render assets in order without touching the cluster.

    The header asset is never rendered on its own.
    """
    skip = set(excluded)
    if header:
        skip.add(header)
    files = list(files)
    names = expand_assets(reader, files, skip) if files else reader.asset_names(skip)
    renderer = TemplateRenderer(reader, func_map)
    rendered = [renderer.render(name, values, header) for name in names]
    logger.debug(f"Rendered {len(rendered)} asset(s)")
    return rendered


@dataclass(frozen=True)
class ApplierConfig:
    """Validated applier configuration.

    Attributes:
        client: Cluster client (required)
        func_map: Template functions (None = built-in table)
        owner: Owner stamped on every applied resource (optional)
        merge: Update strategy, 'replace' or 'merge'
        dry_run: Default dry-run mode for apply calls
        timeout: Seconds per remote call and per CRD wait (None = default wait, no request timeout)
        on_error: 'continue' or 'stop' after a failed resource
        poll_interval: Seconds between CRD status polls
        clock: Time source for the readiness gate
        max_attempts: Optional cap on CRD status polls
    """
    client: Optional[ClusterClient]
    func_map: Optional[FuncMap] = None
    owner: Optional[OwnerSpec] = None
    merge: str = 'replace'
    dry_run: bool = False
    timeout: Optional[float] = DEFAULT_TIMEOUT
    on_error: str = 'continue'
    poll_interval: float = 0.5
    clock: Clock = field(default_factory=SystemClock)
    max_attempts: Optional[int] = None

    def __post_init__(self):
        if self.client is None:
            raise ConfigError("ApplierConfig requires a cluster client")
        if self.merge not in MERGE_STRATEGIES:
            raise ConfigError(f"merge must be one of {', '.join(MERGE_STRATEGIES)}, got '{self.merge}'")
        if self.on_error not in ON_ERROR_POLICIES:
            raise ConfigError(
                f"on_error must be one of {', '.join(ON_ERROR_POLICIES)}, got '{self.on_error}'")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"timeout must be > 0 or None, got {self.timeout}")
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be > 0, got {self.poll_interval}")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")

    @classmethod
    def from_flags(cls, client: ClusterClient, flags: ApplierFlags,
                   func_map: Optional[FuncMap] = None,
                   owner: Optional[OwnerSpec] = None) -> 'ApplierConfig':
        """Build a config from CLI/file flags (timeout 0 = no request timeout)."""
        return cls(
            client=client,
            func_map=func_map,
            owner=owner,
            merge=flags.merge,
            dry_run=flags.dry_run,
            timeout=flags.timeout or None,
            on_error=flags.on_error,
            poll_interval=flags.poll_interval,
        )

    def build(self) -> 'Applier':
        """Resolve the owner reference and return an Applier.

        Raises:
            OwnerResolutionError: If the owner cannot be resolved
        """
        return Applier(self)


class Applier:
    """Render/decode/apply pipeline bound to one configuration."""

    def __init__(self, config: ApplierConfig):
        self.config = config
        self.owner_ref: Optional[OwnerReference] = None
        if config.owner is not None:
            self.owner_ref = compute_owner_ref(
                config.owner.obj,
                controller=config.owner.controller,
                block_owner_deletion=config.owner.block_owner_deletion,
                registry=config.owner.registry,
            )
        self.func_map: FuncMap = (dict(config.func_map) if config.func_map is not None
                                  else default_func_map())
        self._gate = SchemaGate(
            client=config.client,
            timeout=config.timeout or DEFAULT_TIMEOUT,
            interval=config.poll_interval,
            clock=config.clock,
            max_attempts=config.max_attempts,
        )

    def _engine(self, gated: bool) -> ApplyEngine:
        return ApplyEngine(
            client=self.config.client,
            gate=self._gate if gated else None,
            owner_ref=self.owner_ref,
            merge=self.config.merge,
            on_error=self.config.on_error,
            timeout=self.config.timeout,
        )

    def render(self, reader: AssetReader, values: Any = None, files: Iterable[str] = (),
               header: Optional[str] = None, excluded: Iterable[str] = ()) -> list[bytes]:
        """Render assets in order.

        Args:
            reader: Asset source
            values: Value context for the templates
            files: Asset names or directory prefixes (empty = all assets)
            header: Asset prepended to every rendered asset
            excluded: Asset names to leave out

        Returns:
            Rendered content, one entry per asset

        Raises:
            RenderError: If any asset fails to render
            AssetNotFoundError: If an entry matches no asset
        """
        return render_assets(reader, values, files, header, excluded, self.func_map)

    def apply_resources(self, resources: list[DecodedResource], dry_run: Optional[bool] = None,
                        gated: bool = True) -> ApplyResult:
        """Apply already-decoded resources."""
        if dry_run is None:
            dry_run = self.config.dry_run
        return self._engine(gated).apply_all(resources, dry_run=dry_run)

    def _apply(self, reader: AssetReader, values: Any, files: Iterable[str],
               dry_run: Optional[bool], header: Optional[str],
               excluded: Iterable[str], gated: bool) -> ApplyResult:
        if dry_run is None:
            dry_run = self.config.dry_run
        rendered = self.render(reader, values, files, header, excluded)
        resources = decode_all(rendered)

        result = ApplyResult(dry_run=dry_run)
        result.rendered = [r.decode('utf-8') for r in rendered]
        logger.info(f"Applying {len(resources)} resource(s)"
                    f"{' (dry-run)' if dry_run else ''}")
        return self._engine(gated).apply_all(resources, dry_run=dry_run, result=result)

    def apply_directly(self, reader: AssetReader, values: Any = None, files: Iterable[str] = (),
                       dry_run: Optional[bool] = None, header: Optional[str] = None,
                       excluded: Iterable[str] = ()) -> ApplyResult:
        """Render, decode and apply without waiting on CRDs.

        For manifests known not to define CRDs used later in the same batch.
        """
        return self._apply(reader, values, files, dry_run, header, excluded, gated=False)

    def apply_custom_resources(self, reader: AssetReader, values: Any = None,
                               files: Iterable[str] = (), dry_run: Optional[bool] = None,
                               header: Optional[str] = None,
                               excluded: Iterable[str] = ()) -> ApplyResult:
        """Render, decode and apply, gating every CRD on readiness."""
        return self._apply(reader, values, files, dry_run, header, excluded, gated=True)
