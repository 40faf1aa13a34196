"""Configuration loading for Lumenitos.

Values resolve in order: explicit overrides, ``LUMENITOS_*`` environment
variables, the TOML config file, then built-in testnet defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

try:
    import tomllib
except ImportError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from .constants import (
    DEFAULT_ACCOUNT_WASM_PATH,
    DEFAULT_AUTH_VALIDITY_LEDGERS,
    DEFAULT_CONFIG_FILE,
    DEFAULT_FACTORY_ADDRESS,
    DEFAULT_FACTORY_WASM_HASH,
    DEFAULT_FRIENDBOT_URL,
    DEFAULT_INSTRUCTION_MARGIN,
    DEFAULT_MAINTENANCE_POLL_ATTEMPTS,
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_MAX_TTL_EXTENSION,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RELAY_URLS,
    DEFAULT_RPC_URLS,
    DEFAULT_TTL_BUMP_THRESHOLD,
    NETWORK_PASSPHRASES,
)

ENV_PREFIX = "LUMENITOS_"
ADMIN_SECRET_ENV = "LUMENITOS_ADMIN_SECRET"
RELAY_API_KEY_ENV = "LUMENITOS_RELAY_API_KEY"

_ENV_KEYS = {
    "network": "NETWORK",
    "rpc_url": "RPC_URL",
    "friendbot_url": "FRIENDBOT_URL",
    "relay_url": "RELAY_URL",
    "factory_address": "FACTORY_ADDRESS",
    "account_wasm_hash": "ACCOUNT_WASM_HASH",
    "factory_wasm_hash": "FACTORY_WASM_HASH",
    "account_wasm_path": "ACCOUNT_WASM_PATH",
    "keypair_path": "KEYPAIR",
    "instruction_margin": "INSTRUCTION_MARGIN",
}

_INT_FIELDS = {
    "instruction_margin",
    "auth_validity_ledgers",
    "ttl_bump_threshold",
    "max_ttl_extension",
    "max_poll_attempts",
    "maintenance_poll_attempts",
}


@dataclass(frozen=True)
class Settings:
    network: str = "testnet"
    rpc_url: Optional[str] = None
    friendbot_url: str = DEFAULT_FRIENDBOT_URL
    relay_url: Optional[str] = None
    factory_address: str = DEFAULT_FACTORY_ADDRESS
    account_wasm_hash: Optional[str] = None
    factory_wasm_hash: Optional[str] = DEFAULT_FACTORY_WASM_HASH
    account_wasm_path: Optional[str] = DEFAULT_ACCOUNT_WASM_PATH
    keypair_path: Optional[str] = None
    instruction_margin: int = DEFAULT_INSTRUCTION_MARGIN
    auth_validity_ledgers: int = DEFAULT_AUTH_VALIDITY_LEDGERS
    ttl_bump_threshold: int = DEFAULT_TTL_BUMP_THRESHOLD
    max_ttl_extension: int = DEFAULT_MAX_TTL_EXTENSION
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS
    maintenance_poll_attempts: int = DEFAULT_MAINTENANCE_POLL_ATTEMPTS
    source: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.network not in NETWORK_PASSPHRASES:
            raise ValueError(f"network must be one of {sorted(NETWORK_PASSPHRASES)}, got '{self.network}'")
        if self.instruction_margin < 0:
            raise ValueError("instruction_margin must be >= 0")
        if self.auth_validity_ledgers <= 0:
            raise ValueError("auth_validity_ledgers must be > 0")
        if self.ttl_bump_threshold <= 0:
            raise ValueError("ttl_bump_threshold must be > 0")
        if self.max_ttl_extension <= 0:
            raise ValueError("max_ttl_extension must be > 0")
        if self.max_poll_attempts <= 0 or self.maintenance_poll_attempts <= 0:
            raise ValueError("poll attempts must be > 0")
        if self.poll_interval < 0:
            raise ValueError("poll_interval must be >= 0")

    @property
    def network_passphrase(self) -> str:
        return NETWORK_PASSPHRASES[self.network]

    @property
    def is_testnet(self) -> bool:
        return self.network != "mainnet"

    @property
    def resolved_rpc_url(self) -> str:
        return self.rpc_url or DEFAULT_RPC_URLS[self.network]

    @property
    def resolved_relay_url(self) -> str:
        return self.relay_url or DEFAULT_RELAY_URLS[self.network]

    def with_overrides(self, **overrides: Any) -> "Settings":
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)


def _load_toml(path: Path) -> Dict[str, Any]:
    return tomllib.loads(path.read_text())


def _flatten(data: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    network = data.get("network") if isinstance(data.get("network"), dict) else {}
    contracts = data.get("contracts") if isinstance(data.get("contracts"), dict) else {}
    tuning = data.get("tuning") if isinstance(data.get("tuning"), dict) else {}
    wallet = data.get("wallet") if isinstance(data.get("wallet"), dict) else {}

    if isinstance(network.get("name"), str):
        out["network"] = network["name"]
    for key in ("rpc_url", "friendbot_url", "relay_url"):
        if isinstance(network.get(key), str) and network.get(key):
            out[key] = network[key]
    for key in ("factory_address", "account_wasm_hash", "factory_wasm_hash", "account_wasm_path"):
        if isinstance(contracts.get(key), str) and contracts.get(key):
            out[key] = contracts[key]
    if isinstance(wallet.get("keypair"), str) and wallet.get("keypair"):
        out["keypair_path"] = wallet["keypair"]
    for key in _INT_FIELDS:
        if key in tuning:
            if not isinstance(tuning[key], int):
                raise ValueError(f"tuning.{key} must be an integer")
            out[key] = tuning[key]
    if "poll_interval" in tuning:
        if not isinstance(tuning["poll_interval"], (int, float)):
            raise ValueError("tuning.poll_interval must be a number")
        out["poll_interval"] = float(tuning["poll_interval"])
    return out


def _from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for attr, suffix in _ENV_KEYS.items():
        raw = environ.get(ENV_PREFIX + suffix)
        if raw is None or not raw.strip():
            continue
        value = raw.strip()
        if attr in _INT_FIELDS:
            try:
                out[attr] = int(value, 0)
            except ValueError as exc:
                raise ValueError(f"{ENV_PREFIX + suffix} must be an integer") from exc
        else:
            out[attr] = value
    return out


def load_settings(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> Settings:
    """Resolve settings from file, environment and explicit overrides.

    A missing default config file is fine; a missing explicitly-named file is
    a ``FileNotFoundError``.
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    source: Optional[str] = None

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        config_path = Path(DEFAULT_CONFIG_FILE)
    if config_path.exists():
        values.update(_flatten(_load_toml(config_path)))
        source = str(config_path)

    values.update(_from_env(environ))
    values.update({key: value for key, value in overrides.items() if value is not None})
    return Settings(source=source, **values)


def admin_secret(environ: Mapping[str, str] | None = None) -> Optional[str]:
    environ = os.environ if environ is None else environ
    secret = environ.get(ADMIN_SECRET_ENV, "").strip()
    return secret or None


def relay_api_key(environ: Mapping[str, str] | None = None) -> Optional[str]:
    """API key for the fee-paying relayer. Like the admin secret, env only."""
    environ = os.environ if environ is None else environ
    key = environ.get(RELAY_API_KEY_ENV, "").strip()
    return key or None


def settings_to_toml(settings: Settings) -> Dict[str, Any]:
    network: Dict[str, Any] = {"name": settings.network, "friendbot_url": settings.friendbot_url}
    if settings.rpc_url:
        network["rpc_url"] = settings.rpc_url
    if settings.relay_url:
        network["relay_url"] = settings.relay_url
    contracts: Dict[str, Any] = {"factory_address": settings.factory_address}
    for key in ("account_wasm_hash", "factory_wasm_hash", "account_wasm_path"):
        value = getattr(settings, key)
        if value:
            contracts[key] = value
    data: Dict[str, Any] = {
        "network": network,
        "contracts": contracts,
        "tuning": {
            "instruction_margin": settings.instruction_margin,
            "auth_validity_ledgers": settings.auth_validity_ledgers,
            "ttl_bump_threshold": settings.ttl_bump_threshold,
            "max_ttl_extension": settings.max_ttl_extension,
            "poll_interval": settings.poll_interval,
            "max_poll_attempts": settings.max_poll_attempts,
            "maintenance_poll_attempts": settings.maintenance_poll_attempts,
        },
    }
    if settings.keypair_path:
        data["wallet"] = {"keypair": settings.keypair_path}
    return data


def write_config(path: str | Path, settings: Settings, *, overwrite: bool = False) -> Path:
    """Write settings to a TOML file. The admin secret and relay key are never written."""
    out = Path(path)
    if out.exists() and not overwrite:
        raise ValueError(f"Config file already exists: {out} (use --force to overwrite)")
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(tomli_w.dumps(settings_to_toml(settings)).encode())
    return out
