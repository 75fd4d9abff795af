"""Logging setup and the one-line JSON event helper.

Every module logs through ``logging.getLogger("vaultledger.<area>")``.
Key material and presigned URLs never appear in log fields.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any

_CONFIGURED_ATTR = "_vaultledger_configured"


def _now_ms() -> int:
    return int(time.time() * 1000)


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the ``vaultledger`` logger.

    Level comes from the argument, else VAULT_LOG_LEVEL, else INFO.
    Safe to call multiple times.
    """
    level_name = (level or os.environ.get("VAULT_LOG_LEVEL") or "INFO").strip().upper()
    resolved = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger("vaultledger")
    if getattr(root, _CONFIGURED_ATTR, False):
        root.setLevel(resolved)
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)
    root.setLevel(resolved)
    root.propagate = False
    setattr(root, _CONFIGURED_ATTR, True)


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Emit a single JSON log line: {"event": ..., "ts_ms": ..., **fields}."""
    if not logger.isEnabledFor(level):
        return
    payload: dict[str, Any] = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(fields)
    try:
        logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))
    except (TypeError, ValueError):
        parts = [f"event={event}"] + [f"{k}={fields[k]!r}" for k in sorted(fields)]
        logger.log(level, " ".join(parts))
