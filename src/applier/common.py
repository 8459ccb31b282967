"""Error taxonomy shared by the apply pipeline.

Every error carries a short code and a human-readable message, so callers
(and the CLI's JSON output) can branch on the code without parsing text:

- E1xx: configuration and asset lookup
- E2xx: template rendering
- E3xx: manifest decoding
- E4xx: owner reference resolution
- E5xx: CRD readiness
- E6xx: per-resource apply failures
"""

from typing import Optional


class ApplierError(Exception):
    """Base exception for all applier errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class ConfigError(ApplierError):
    """Invalid or incomplete applier configuration."""

    def __init__(self, message: str):
        super().__init__("E100", message)


class AssetNotFoundError(ApplierError):
    """Named asset not present in the asset source."""

    def __init__(self, name: str):
        self.name = name
        super().__init__("E110", f"Asset not found: {name}")


class RenderError(ApplierError):
    """Template expansion failed; no partial output is produced."""

    def __init__(self, asset: str, message: str):
        self.asset = asset
        super().__init__("E200", f"Cannot render {asset}: {message}")


class DecodeError(ApplierError):
    """Malformed manifest document; aborts the whole decode batch."""

    def __init__(self, index: int, message: str):
        self.index = index
        self.detail = message
        super().__init__("E300", f"Document {index}: {message}")


class OwnerResolutionError(ApplierError):
    """Owner kind unresolvable or owner not yet persisted."""

    def __init__(self, message: str):
        super().__init__("E400", message)


class SchemaNotReadyError(ApplierError):
    """CRD did not reach Established + NamesAccepted in time."""

    def __init__(self, group: str, kind: str, reason: str,
                 conditions: Optional[list] = None,
                 last_error: Optional[Exception] = None):
        self.group = group
        self.kind = kind
        self.conditions = list(conditions or [])
        self.last_error = last_error
        observed = ', '.join(
            f"{c.get('type')}={c.get('status')}" for c in self.conditions
        ) or 'no conditions reported'
        detail = f"{kind}.{group} not ready: {reason} (last observed: {observed})"
        if last_error is not None:
            detail += f"; last error: {last_error}"
        super().__init__("E500", detail)


class ApplyError(ApplierError):
    """Per-resource remote failure, recorded in the apply outcome."""

    def __init__(self, message: str, code: str = "E600"):
        super().__init__(code, message)


class AlreadyExistsError(ApplyError):
    """Create rejected because the resource exists."""

    def __init__(self, message: str):
        super().__init__(message, code="E601")


class ConflictError(ApplyError):
    """Update rejected by the server's resourceVersion check."""

    def __init__(self, message: str):
        super().__init__(message, code="E602")


class NotFoundError(ApplyError):
    """Resource does not exist on the cluster."""

    def __init__(self, message: str):
        super().__init__(message, code="E603")


class UnroutableError(ApplyError):
    """apiVersion/kind not served by the cluster, or scope mismatch."""

    def __init__(self, message: str):
        super().__init__(message, code="E604")


class RemoteTimeoutError(ApplyError):
    """Remote call exceeded its deadline."""

    def __init__(self, message: str):
        super().__init__(message, code="E605")


class ApplyFailedError(ApplyError):
    """Aggregate error for an apply result with failed outcomes.

    Attributes:
        failures: List of (identity, error) tuples in apply order
    """

    def __init__(self, failures: list):
        self.failures = list(failures)
        lines = [f"{identity}: {error}" for identity, error in self.failures]
        super().__init__(
            f"{len(self.failures)} resource(s) failed:\n  " + '\n  '.join(lines),
            code="E610",
        )
