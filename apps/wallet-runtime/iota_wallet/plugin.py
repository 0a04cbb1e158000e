"""Host composition: builds the wallet tools and registers them with a plugin runtime.

The host API is expected to expose `plugin_config` (raw mapping), `logger` and
`register_tool(tool, optional=...)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .config import WalletConfig, resolve_wallet_config
from .draft_store import DraftStore
from .iota_cli import ExecFn, exec_iota_cli
from .read_tools import ReadTools
from .tool_output import to_tool_text
from .tx_tools import TransferTools

PLUGIN_ID = "openclaw-iota-wallet"
PLUGIN_NAME = "IOTA Wallet"
PLUGIN_DESCRIPTION = "IOTA wallet tools with approval-gated transaction flow."

ADDRESS_SCHEMA = {"type": "string", "pattern": "^0x[a-fA-F0-9]{64}$"}
UINT_STRING_SCHEMA = {"type": "string", "pattern": "^[0-9]+$"}
DRAFT_ID_SCHEMA = {"type": "string", "minLength": 1}


def _object_schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties, "additionalProperties": False}
    if required:
        schema["required"] = required
    return schema


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    parameters: dict[str, Any]
    handler: Callable[[Mapping[str, Any] | None], dict[str, Any]]

    def execute(self, tool_call_id: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return to_tool_text(self.handler(params))


# name -> (description, parameters); order is the registration order.
TOOL_DEFINITIONS: dict[str, tuple[str, dict[str, Any]]] = {
    "iota_active_env": (
        "Get the active IOTA environment from the local CLI config.",
        _object_schema({}),
    ),
    "iota_get_balance": (
        "Read wallet balances using iota client balance.",
        _object_schema(
            {
                "address": ADDRESS_SCHEMA,
                "coinType": {"type": "string"},
                "withCoins": {"type": "boolean"},
            }
        ),
    ),
    "iota_get_gas": (
        "List gas coin objects for an address.",
        _object_schema({"address": ADDRESS_SCHEMA}),
    ),
    "iota_prepare_transfer": (
        "Prepare a transfer by building unsigned tx bytes and decoding preview. Requires inputCoins.",
        _object_schema(
            {
                "recipient": ADDRESS_SCHEMA,
                "amountNanos": UINT_STRING_SCHEMA,
                "inputCoins": {"type": "array", "items": ADDRESS_SCHEMA, "minItems": 1},
                "gasBudget": UINT_STRING_SCHEMA,
            },
            ["recipient", "amountNanos", "inputCoins"],
        ),
    ),
    "iota_approve_transfer": (
        "Approve or reject a prepared transfer draft.",
        _object_schema({"draftId": DRAFT_ID_SCHEMA, "approve": {"type": "boolean"}}, ["draftId", "approve"]),
    ),
    "iota_dry_run_transfer": (
        "Dry-run a prepared draft using iota client serialized-tx --dry-run.",
        _object_schema({"draftId": DRAFT_ID_SCHEMA}, ["draftId"]),
    ),
    "iota_execute_transfer": (
        "Execute an approved transfer draft via sign, verify and execute-signed-tx.",
        _object_schema(
            {
                "draftId": DRAFT_ID_SCHEMA,
                "signerAddress": ADDRESS_SCHEMA,
                "signature": {"type": "string"},
            },
            ["draftId"],
        ),
    ),
}


def tool_schemas() -> list[dict[str, Any]]:
    return [
        {"name": name, "description": description, "parameters": parameters}
        for name, (description, parameters) in TOOL_DEFINITIONS.items()
    ]


def build_tools(
    cfg: WalletConfig,
    store: DraftStore | None = None,
    exec_fn: ExecFn = exec_iota_cli,
) -> dict[str, Tool]:
    draft_store = store if store is not None else DraftStore(cfg.draft_store_path)
    read = ReadTools(cfg, exec_fn)
    tx = TransferTools(cfg, draft_store, exec_fn)

    handlers = {
        "iota_active_env": read.get_active_env,
        "iota_get_balance": read.get_balance,
        "iota_get_gas": read.get_gas,
        "iota_prepare_transfer": tx.prepare_transfer,
        "iota_approve_transfer": tx.approve_transfer,
        "iota_dry_run_transfer": tx.dry_run_transfer,
        "iota_execute_transfer": tx.execute_transfer,
    }
    return {
        name: Tool(name, description, parameters, handlers[name])
        for name, (description, parameters) in TOOL_DEFINITIONS.items()
    }


def register(api: Any, store: DraftStore | None = None, exec_fn: ExecFn = exec_iota_cli) -> dict[str, Tool]:
    cfg = resolve_wallet_config(getattr(api, "plugin_config", None))
    if not cfg.enabled:
        api.logger.info(f"{PLUGIN_ID} plugin is disabled by config")
        return {}

    tools = build_tools(cfg, store, exec_fn)
    for tool in tools.values():
        api.register_tool(tool, optional=True)
    return tools
