"""Runtime configuration.

Defaults live in config/vault_params.json. Environment variables, loaded
from an optional .env file with python-dotenv, override them:

    VAULT_RPC_URLS               comma-separated endpoint list
    VAULT_RPC_URL                single endpoint (used if RPC_URLS unset)
    VAULT_CONTRACT_ADDRESS       registry contract; enables the web3 ledger
    VAULT_PRIVATE_KEY            signing key for state-changing calls
    VAULT_CHAIN_ID
    VAULT_CACHE_TTL_SECONDS
    VAULT_SCAN_WINDOW_BLOCKS
    VAULT_CHUNK_SIZE_BLOCKS
    VAULT_SCAN_CONCURRENCY
    VAULT_DEPLOYMENT_BLOCK
    VAULT_STRICT_VERIFICATION    true/false
    VAULT_MAX_ATTEMPTS
    VAULT_BASE_DELAY_MS
    VAULT_REQUEST_TIMEOUT_SECONDS
    VAULT_PRESIGN_TTL_SECONDS
    VAULT_DATA_DIR
    VAULT_LOG_LEVEL

Invalid values raise ValueError when the configuration is loaded.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from vaultledger.models.identity import normalize_address

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
PARAMS_FILENAME = "vault_params.json"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class VaultConfig:
    rpc_urls: tuple[str, ...] = ()
    contract_address: Optional[str] = None
    private_key: Optional[str] = field(default=None, repr=False)
    chain_id: int = 11155111
    request_timeout_seconds: float = 10.0
    max_attempts: int = 5
    base_delay_ms: int = 1000
    cache_ttl_seconds: float = 300.0
    scan_window_blocks: int = 50_000
    chunk_size_blocks: int = 10_000
    scan_concurrency: int = 4
    deployment_block: int = 0
    strict_verification: bool = False
    presign_ttl_seconds: int = 300
    data_dir: Path = Path("data")
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.contract_address is not None:
            object.__setattr__(
                self, "contract_address", normalize_address(self.contract_address),
            )
        object.__setattr__(self, "log_level", self.log_level.upper())
        object.__setattr__(self, "data_dir", Path(self.data_dir))

        if self.chain_id < 1:
            raise ValueError("chain_id must be positive")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be non-negative")
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be non-negative")
        if self.scan_window_blocks < 1:
            raise ValueError("scan_window_blocks must be at least 1")
        if self.chunk_size_blocks < 1:
            raise ValueError("chunk_size_blocks must be at least 1")
        if self.scan_concurrency < 1:
            raise ValueError("scan_concurrency must be at least 1")
        if self.deployment_block < 0:
            raise ValueError("deployment_block must be non-negative")
        if self.presign_ttl_seconds < 1:
            raise ValueError("presign_ttl_seconds must be at least 1")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Unknown log level: {self.log_level}")

    @property
    def uses_web3(self) -> bool:
        """True when a live registry contract is configured."""
        return bool(self.rpc_urls) and self.contract_address is not None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> VaultConfig:
        """Build from the nested vault_params.json layout."""
        ledger = params.get("ledger", {})
        retry = params.get("retry", {})
        resolution = params.get("resolution", {})
        storage = params.get("storage", {})
        logging_ = params.get("logging", {})
        defaults = cls()
        return cls(
            rpc_urls=tuple(ledger.get("rpc_urls", defaults.rpc_urls)),
            contract_address=ledger.get("contract_address"),
            chain_id=int(ledger.get("chain_id", defaults.chain_id)),
            request_timeout_seconds=float(
                ledger.get("request_timeout_seconds", defaults.request_timeout_seconds)
            ),
            max_attempts=int(retry.get("max_attempts", defaults.max_attempts)),
            base_delay_ms=int(retry.get("base_delay_ms", defaults.base_delay_ms)),
            cache_ttl_seconds=float(
                resolution.get("cache_ttl_seconds", defaults.cache_ttl_seconds)
            ),
            scan_window_blocks=int(
                resolution.get("scan_window_blocks", defaults.scan_window_blocks)
            ),
            chunk_size_blocks=int(
                resolution.get("chunk_size_blocks", defaults.chunk_size_blocks)
            ),
            scan_concurrency=int(
                resolution.get("scan_concurrency", defaults.scan_concurrency)
            ),
            deployment_block=int(
                resolution.get("deployment_block", defaults.deployment_block)
            ),
            strict_verification=_param_bool(
                "strict_verification",
                resolution.get("strict_verification", defaults.strict_verification),
            ),
            presign_ttl_seconds=int(
                storage.get("presign_ttl_seconds", defaults.presign_ttl_seconds)
            ),
            log_level=str(logging_.get("level", defaults.log_level)),
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> VaultConfig:
        path = config_dir / PARAMS_FILENAME
        return cls.from_params(json.loads(path.read_text(encoding="utf-8")))

    @classmethod
    def load(
        cls,
        config_dir: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Path] = None,
    ) -> VaultConfig:
        """Defaults from config_dir (if it has a params file), then env overrides.

        With env=None the process environment is used, after loading
        dotenv_path (default ./.env) if it exists. Variables already set in
        the environment win over the .env file.
        """
        config_dir = config_dir or DEFAULT_CONFIG_DIR
        if (config_dir / PARAMS_FILENAME).exists():
            base = cls.from_config_dir(config_dir)
        else:
            base = cls()

        if env is None:
            dotenv_path = dotenv_path or Path.cwd() / ".env"
            if dotenv_path.exists():
                load_dotenv(dotenv_path, override=False)
            env = os.environ

        return base.with_env(env)

    def with_env(self, env: Mapping[str, str]) -> VaultConfig:
        """Copy of this config with VAULT_* variables from env applied."""
        values: dict[str, Any] = {}

        urls = env.get("VAULT_RPC_URLS")
        if urls:
            values["rpc_urls"] = tuple(u.strip() for u in urls.split(",") if u.strip())
        elif env.get("VAULT_RPC_URL"):
            values["rpc_urls"] = (env["VAULT_RPC_URL"].strip(),)

        for name, key in (
            ("VAULT_CONTRACT_ADDRESS", "contract_address"),
            ("VAULT_PRIVATE_KEY", "private_key"),
            ("VAULT_DATA_DIR", "data_dir"),
            ("VAULT_LOG_LEVEL", "log_level"),
        ):
            if env.get(name):
                values[key] = env[name].strip()

        for name, key, parse in (
            ("VAULT_CHAIN_ID", "chain_id", int),
            ("VAULT_REQUEST_TIMEOUT_SECONDS", "request_timeout_seconds", float),
            ("VAULT_MAX_ATTEMPTS", "max_attempts", int),
            ("VAULT_BASE_DELAY_MS", "base_delay_ms", int),
            ("VAULT_CACHE_TTL_SECONDS", "cache_ttl_seconds", float),
            ("VAULT_SCAN_WINDOW_BLOCKS", "scan_window_blocks", int),
            ("VAULT_CHUNK_SIZE_BLOCKS", "chunk_size_blocks", int),
            ("VAULT_SCAN_CONCURRENCY", "scan_concurrency", int),
            ("VAULT_DEPLOYMENT_BLOCK", "deployment_block", int),
            ("VAULT_PRESIGN_TTL_SECONDS", "presign_ttl_seconds", int),
        ):
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                continue
            try:
                values[key] = parse(raw.strip())
            except ValueError as exc:
                raise ValueError(f"{name}: invalid value {raw!r}") from exc

        strict = env.get("VAULT_STRICT_VERIFICATION")
        if strict is not None:
            values["strict_verification"] = _parse_bool("VAULT_STRICT_VERIFICATION", strict)

        if not values:
            return self
        return replace(self, **values)


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name}: expected true/false, got {raw!r}")


def _param_bool(name: str, value: Any) -> bool:
    # JSON booleans pass through; quoted values get the env parser's rules.
    if isinstance(value, str):
        return _parse_bool(name, value)
    return bool(value)
