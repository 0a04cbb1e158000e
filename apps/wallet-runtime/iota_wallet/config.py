from __future__ import annotations

import json
import math
import os
import pathlib
import re
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Mapping

from .errors import IotaWalletError
from .validation import is_iota_address, normalize_iota_address

NETWORKS = ("mainnet", "testnet", "devnet", "localnet", "custom")
SIGNER_MODES = ("local-keystore", "external-signature", "kms")
URL_SCHEMES = {"http", "https", "ws", "wss"}

CLI_PATH_ENV = "IOTA_CLI_PATH"
CONFIG_PATH_ENV = "IOTA_WALLET_CONFIG"

DEFAULT_CLI_PATH = "iota"
DEFAULT_NETWORK = "mainnet"
DEFAULT_APPROVAL_TTL_SECONDS = 1800
DEFAULT_MAX_TRANSFER_NANOS = 1_000_000_000
DEFAULT_COMMAND_TIMEOUT_MS = 30_000
MIN_APPROVAL_TTL_SECONDS = 60
MAX_APPROVAL_TTL_SECONDS = 86_400
MIN_COMMAND_TIMEOUT_MS = 1_000
MAX_COMMAND_TIMEOUT_MS = 120_000


@dataclass(frozen=True)
class SignerConfig:
    mode: str = "local-keystore"
    keystore_path: str | None = None
    key_id: str | None = None
    base64_public_key: str | None = None
    intent: str | None = None


@dataclass(frozen=True)
class WalletConfig:
    enabled: bool = True
    cli_path: str = DEFAULT_CLI_PATH
    default_network: str = DEFAULT_NETWORK
    custom_rpc_url: str | None = None
    require_approval: bool = True
    approval_ttl_seconds: int = DEFAULT_APPROVAL_TTL_SECONDS
    max_transfer_nanos: int = DEFAULT_MAX_TRANSFER_NANOS
    recipient_allowlist: frozenset[str] = frozenset()
    command_timeout_ms: int = DEFAULT_COMMAND_TIMEOUT_MS
    draft_store_path: str | None = None
    signer: SignerConfig = field(default_factory=SignerConfig)


DEFAULT_CONFIG = WalletConfig()


def _as_record(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_boolean(value: Any, fallback: bool) -> bool:
    return value if isinstance(value, bool) else fallback


def _as_string(value: Any, fallback: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else fallback


def _as_optional_string(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_number(value: Any, fallback: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if isinstance(value, float) and not math.isfinite(value):
        return fallback
    return value


def _clamp_int(value: Any, fallback: int, low: int, high: int) -> int:
    return max(low, min(high, math.floor(_as_number(value, fallback))))


def _as_nanos(value: Any, fallback: int) -> int:
    if isinstance(value, str) and re.fullmatch(r"[0-9]+", value.strip()):
        return int(value.strip())
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return fallback


def _as_optional_url(value: Any) -> str | None:
    raw = _as_optional_string(value)
    if raw is None:
        return None
    # Syntax only; reachability is the CLI's concern.
    try:
        parsed = urllib.parse.urlsplit(raw)
    except ValueError:
        return None
    if parsed.scheme.lower() not in URL_SCHEMES or not parsed.hostname:
        return None
    return urllib.parse.urlunsplit(parsed)


def _as_allowlist(value: Any) -> frozenset[str]:
    if not isinstance(value, (list, tuple)):
        return frozenset()
    entries = set()
    for entry in value:
        if isinstance(entry, str) and is_iota_address(normalize_iota_address(entry)):
            entries.add(normalize_iota_address(entry))
    return frozenset(entries)


def resolve_wallet_config(raw: Any, env: Mapping[str, str] | None = None) -> WalletConfig:
    """Resolve a raw plugin config mapping into a WalletConfig.

    Never raises: malformed fields fall back to their defaults. When the raw config has
    no usable cliPath, IOTA_CLI_PATH from the environment is preferred over the default.
    """
    environ = os.environ if env is None else env
    cfg = _as_record(raw)
    signer = _as_record(cfg.get("signer"))

    network = _as_string(cfg.get("defaultNetwork"), DEFAULT_NETWORK)
    if network not in NETWORKS:
        network = DEFAULT_NETWORK

    signer_mode = _as_string(signer.get("mode"), DEFAULT_CONFIG.signer.mode)
    if signer_mode not in SIGNER_MODES:
        signer_mode = DEFAULT_CONFIG.signer.mode

    cli_fallback = _as_string(environ.get(CLI_PATH_ENV), DEFAULT_CLI_PATH)

    return WalletConfig(
        enabled=_as_boolean(cfg.get("enabled"), DEFAULT_CONFIG.enabled),
        cli_path=_as_string(cfg.get("cliPath"), cli_fallback),
        default_network=network,
        custom_rpc_url=_as_optional_url(cfg.get("customRpcUrl")),
        require_approval=_as_boolean(cfg.get("requireApproval"), DEFAULT_CONFIG.require_approval),
        approval_ttl_seconds=_clamp_int(
            cfg.get("approvalTtlSeconds"),
            DEFAULT_APPROVAL_TTL_SECONDS,
            MIN_APPROVAL_TTL_SECONDS,
            MAX_APPROVAL_TTL_SECONDS,
        ),
        max_transfer_nanos=_as_nanos(cfg.get("maxTransferNanos"), DEFAULT_MAX_TRANSFER_NANOS),
        recipient_allowlist=_as_allowlist(cfg.get("recipientAllowlist")),
        command_timeout_ms=_clamp_int(
            cfg.get("commandTimeoutMs"),
            DEFAULT_COMMAND_TIMEOUT_MS,
            MIN_COMMAND_TIMEOUT_MS,
            MAX_COMMAND_TIMEOUT_MS,
        ),
        draft_store_path=_as_optional_string(cfg.get("draftStorePath")),
        signer=SignerConfig(
            mode=signer_mode,
            keystore_path=_as_optional_string(signer.get("keystorePath")),
            key_id=_as_optional_string(signer.get("keyId")),
            base64_public_key=_as_optional_string(signer.get("base64PublicKey")),
            intent=_as_optional_string(signer.get("intent")),
        ),
    )


def resolve_config_path(explicit: str | None = None, env: Mapping[str, str] | None = None) -> pathlib.Path | None:
    environ = os.environ if env is None else env
    raw = (explicit or environ.get(CONFIG_PATH_ENV) or "").strip()
    if not raw:
        return None
    return pathlib.Path(raw).expanduser()


def load_plugin_config(path: pathlib.Path | None) -> dict[str, Any]:
    if path is None or not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise IotaWalletError(
            "invalid_input",
            f"Invalid JSON in config file '{path}': {exc}",
            {"configFile": str(path)},
            "Repair the config file and retry.",
        ) from exc
    if not isinstance(payload, dict):
        raise IotaWalletError(
            "invalid_input",
            "Config file must be a JSON object.",
            {"configFile": str(path)},
            "Repair the config file and retry.",
        )
    return payload
