"""RPC resilience — endpoint rotation, error classification and retry."""

from vaultledger.rpc.resilience import (
    ErrorClass,
    ResilientRpc,
    RetryPolicy,
    backoff_delay_ms,
    classify,
)

__all__ = ["ErrorClass", "ResilientRpc", "RetryPolicy", "backoff_delay_ms", "classify"]
