"""Applier runtime flags.

Flags are loaded from an optional YAML file and then overridden by
environment variables:

    applier:
      dry_run: false
      timeout: 60          # seconds, per remote call and per CRD wait
      poll_interval: 0.5   # seconds between CRD status polls
      kubeconfig: ~/.kube/config
      context: kind-dev
      on_error: continue   # continue | stop
      merge: replace       # replace | merge

Resolution order for the config file:
1. Explicit path argument
2. $APPLIER_CONFIG
3. none (defaults only)

Environment overrides: APPLIER_DRY_RUN, APPLIER_TIMEOUT, APPLIER_CONTEXT.
KUBECONFIG is only used when the file names no kubeconfig.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from applier.common import ConfigError

logger = logging.getLogger(__name__)

ON_ERROR_POLICIES = ('continue', 'stop')
MERGE_STRATEGIES = ('replace', 'merge')

DEFAULT_TIMEOUT = 60
DEFAULT_POLL_INTERVAL = 0.5

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off', '')


@dataclass
class ApplierFlags:
    """Flags supplied by the CLI surface to the applier.

    Attributes:
        dry_run: Render and validate only, never mutate the cluster
        timeout: Seconds allowed per remote call and per CRD readiness wait
        poll_interval: Seconds between CRD status polls
        kubeconfig: Path to kubeconfig (None = default loading rules)
        context: kubeconfig context name (None = current context)
        on_error: Per-resource failure policy ('continue' or 'stop')
        merge: Update strategy for existing resources ('replace' or 'merge')
    """
    dry_run: bool = False
    timeout: int = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    on_error: str = 'continue'
    merge: str = 'replace'

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: If any flag is out of range
        """
        if self.timeout < 0:
            raise ConfigError(f"timeout must be >= 0, got {self.timeout}")
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be > 0, got {self.poll_interval}")
        if self.on_error not in ON_ERROR_POLICIES:
            raise ConfigError(
                f"on_error must be one of {', '.join(ON_ERROR_POLICIES)}, got '{self.on_error}'"
            )
        if self.merge not in MERGE_STRATEGIES:
            raise ConfigError(
                f"merge must be one of {', '.join(MERGE_STRATEGIES)}, got '{self.merge}'"
            )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'ApplierFlags':
        """Create ApplierFlags from a dictionary (missing keys use defaults)."""
        if not data:
            return cls()
        try:
            return cls(
                dry_run=bool(data.get('dry_run', False)),
                timeout=int(data.get('timeout', DEFAULT_TIMEOUT)),
                poll_interval=float(data.get('poll_interval', DEFAULT_POLL_INTERVAL)),
                kubeconfig=data.get('kubeconfig'),
                context=data.get('context'),
                on_error=data.get('on_error', 'continue'),
                merge=data.get('merge', 'replace'),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid applier flags: {e}") from e

    def to_dict(self) -> dict:
        return {
            'dry_run': self.dry_run,
            'timeout': self.timeout,
            'poll_interval': self.poll_interval,
            'kubeconfig': self.kubeconfig,
            'context': self.context,
            'on_error': self.on_error,
            'merge': self.merge,
        }


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got '{value}'")


def _load_yaml(path: Path) -> dict:
    """Load the `applier:` section of a YAML config file."""
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with open(path, encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    section = data.get('applier', {}) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'applier' section must be a mapping: {path}")
    result: dict = section
    return result


def load_flags(path: Optional[Path] = None) -> ApplierFlags:
    """Load applier flags from file and environment.

    Args:
        path: Optional config file path (falls back to $APPLIER_CONFIG)

    Returns:
        Validated ApplierFlags

    Raises:
        ConfigError: If the file is missing/invalid or a value is out of range
    """
    data: dict = {}
    if path is None and (env_path := os.environ.get('APPLIER_CONFIG')):
        path = Path(env_path)
    if path is not None:
        data = dict(_load_yaml(Path(path).expanduser()))
        logger.debug(f"Loaded applier flags from {path}")

    if (dry_run := os.environ.get('APPLIER_DRY_RUN')) is not None:
        data['dry_run'] = _parse_bool('APPLIER_DRY_RUN', dry_run)
    if timeout := os.environ.get('APPLIER_TIMEOUT'):
        try:
            data['timeout'] = int(timeout)
        except ValueError as e:
            raise ConfigError(f"APPLIER_TIMEOUT must be an integer, got '{timeout}'") from e
    if context := os.environ.get('APPLIER_CONTEXT'):
        data['context'] = context
    if kubeconfig := os.environ.get('KUBECONFIG'):
        data.setdefault('kubeconfig', kubeconfig)

    return ApplierFlags.from_dict(data)
