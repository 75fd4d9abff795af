"""Access resolution — event projection, caching, the resolver and the gate."""

from vaultledger.access.cache import AccessCache, CheckpointStore, ScanCheckpoint
from vaultledger.access.gate import AccessGate
from vaultledger.access.projection import (
    EMPTY_PROJECTION,
    PrincipalProjection,
    fold_principal_events,
)
from vaultledger.access.resolver import (
    AccessResolutionEngine,
    ResolverSettings,
    plan_chunks,
)

__all__ = [
    "AccessCache",
    "AccessGate",
    "AccessResolutionEngine",
    "CheckpointStore",
    "EMPTY_PROJECTION",
    "PrincipalProjection",
    "ResolverSettings",
    "ScanCheckpoint",
    "fold_principal_events",
    "plan_chunks",
]
