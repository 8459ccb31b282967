"""Apply engine and facade for rendered manifests.

Walks decoded resources in manifest order, gating CRDs on readiness and
applying everything else idempotently with optional owner references.
"""
