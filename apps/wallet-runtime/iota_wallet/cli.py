#!/usr/bin/env python3
"""IOTA wallet agent runtime CLI.

Exposes the wallet tools as subcommands for skill wrappers and operators. Every command
prints exactly one JSON envelope on stdout; diagnostics go to stderr.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Any

from .config import WalletConfig, load_plugin_config, resolve_config_path, resolve_wallet_config
from .errors import IotaWalletError, to_tool_error_payload
from .plugin import Tool, build_tools, tool_schemas
from .tool_output import to_json

LOG_LEVEL_ENV = "IOTA_WALLET_LOG_LEVEL"


def emit(payload: dict[str, Any]) -> None:
    print(to_json(payload, compact=True))


def exit_code_for(payload: dict[str, Any]) -> int:
    if payload.get("ok") is True:
        return 0
    error = payload.get("error")
    if isinstance(error, dict) and error.get("code") == "invalid_input":
        return 2
    return 1


def fail(code: str, message: str, action_hint: str | None = None, exit_code: int = 1) -> int:
    error: dict[str, Any] = {"code": code, "message": message}
    if action_hint:
        error["actionHint"] = action_hint
    emit({"ok": False, "error": error})
    return exit_code


def require_json_flag(args: argparse.Namespace) -> int | None:
    if getattr(args, "json", False):
        return None
    return fail("missing_flag", "This command requires --json output mode.", "Re-run with --json.", exit_code=2)


def _configure_logging() -> None:
    level_name = (os.environ.get(LOG_LEVEL_ENV) or "WARNING").strip().upper()
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(args: argparse.Namespace) -> WalletConfig:
    raw = load_plugin_config(resolve_config_path(getattr(args, "config", None)))
    return resolve_wallet_config(raw)


def _enabled_config(args: argparse.Namespace) -> tuple[WalletConfig | None, int]:
    """Resolve config for a command; on failure the envelope is already emitted."""
    chk = require_json_flag(args)
    if chk is not None:
        return None, chk
    try:
        cfg = _load_config(args)
    except IotaWalletError as exc:
        payload = to_tool_error_payload(exc)
        emit(payload)
        return None, exit_code_for(payload)
    if not cfg.enabled:
        return None, fail(
            "plugin_disabled", "IOTA wallet tools are disabled by config.", "Set enabled=true in plugin config."
        )
    return cfg, 0


def _run_tool(args: argparse.Namespace, name: str, params: dict[str, Any]) -> int:
    cfg, code = _enabled_config(args)
    if cfg is None:
        return code

    tools: dict[str, Tool] = build_tools(cfg)
    payload = tools[name].handler(params)
    emit(payload)
    return exit_code_for(payload)


def cmd_env_active(args: argparse.Namespace) -> int:
    return _run_tool(args, "iota_active_env", {})


def cmd_balance(args: argparse.Namespace) -> int:
    params: dict[str, Any] = {"withCoins": bool(args.with_coins)}
    if args.address:
        params["address"] = args.address
    if args.coin_type:
        params["coinType"] = args.coin_type
    return _run_tool(args, "iota_get_balance", params)


def cmd_gas(args: argparse.Namespace) -> int:
    params: dict[str, Any] = {}
    if args.address:
        params["address"] = args.address
    return _run_tool(args, "iota_get_gas", params)


def cmd_transfer_prepare(args: argparse.Namespace) -> int:
    params: dict[str, Any] = {
        "recipient": args.recipient,
        "amountNanos": args.amount_nanos,
        "inputCoins": list(args.input_coin or []),
    }
    if args.gas_budget:
        params["gasBudget"] = args.gas_budget
    return _run_tool(args, "iota_prepare_transfer", params)


def cmd_transfer_approve(args: argparse.Namespace) -> int:
    return _run_tool(args, "iota_approve_transfer", {"draftId": args.draft_id, "approve": bool(args.approve)})


def cmd_transfer_dry_run(args: argparse.Namespace) -> int:
    return _run_tool(args, "iota_dry_run_transfer", {"draftId": args.draft_id})


def cmd_transfer_execute(args: argparse.Namespace) -> int:
    params: dict[str, Any] = {"draftId": args.draft_id}
    if args.signer_address:
        params["signerAddress"] = args.signer_address
    if args.signature:
        params["signature"] = args.signature
    return _run_tool(args, "iota_execute_transfer", params)


def cmd_tools_list(args: argparse.Namespace) -> int:
    cfg, code = _enabled_config(args)
    if cfg is None:
        return code
    emit({"ok": True, "tools": tool_schemas()})
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="iota-wallet-agent", add_help=True)
    p.add_argument("--config", help="Path to plugin config JSON (default: $IOTA_WALLET_CONFIG).")
    sub = p.add_subparsers(dest="top")

    env = sub.add_parser("env")
    env_sub = env.add_subparsers(dest="env_cmd")
    env_active = env_sub.add_parser("active")
    env_active.add_argument("--json", action="store_true")
    env_active.set_defaults(func=cmd_env_active)

    balance = sub.add_parser("balance")
    balance.add_argument("--address")
    balance.add_argument("--coin-type")
    balance.add_argument("--with-coins", action="store_true")
    balance.add_argument("--json", action="store_true")
    balance.set_defaults(func=cmd_balance)

    gas = sub.add_parser("gas")
    gas.add_argument("--address")
    gas.add_argument("--json", action="store_true")
    gas.set_defaults(func=cmd_gas)

    transfer = sub.add_parser("transfer")
    transfer_sub = transfer.add_subparsers(dest="transfer_cmd")

    t_prepare = transfer_sub.add_parser("prepare")
    t_prepare.add_argument("--recipient", required=True)
    t_prepare.add_argument("--amount-nanos", required=True)
    t_prepare.add_argument("--input-coin", action="append", required=True)
    t_prepare.add_argument("--gas-budget")
    t_prepare.add_argument("--json", action="store_true")
    t_prepare.set_defaults(func=cmd_transfer_prepare)

    t_approve = transfer_sub.add_parser("approve")
    t_approve.add_argument("--draft-id", required=True)
    decision = t_approve.add_mutually_exclusive_group(required=True)
    decision.add_argument("--approve", dest="approve", action="store_true")
    decision.add_argument("--reject", dest="approve", action="store_false")
    t_approve.add_argument("--json", action="store_true")
    t_approve.set_defaults(func=cmd_transfer_approve)

    t_dry_run = transfer_sub.add_parser("dry-run")
    t_dry_run.add_argument("--draft-id", required=True)
    t_dry_run.add_argument("--json", action="store_true")
    t_dry_run.set_defaults(func=cmd_transfer_dry_run)

    t_execute = transfer_sub.add_parser("execute")
    t_execute.add_argument("--draft-id", required=True)
    t_execute.add_argument("--signer-address")
    t_execute.add_argument("--signature")
    t_execute.add_argument("--json", action="store_true")
    t_execute.set_defaults(func=cmd_transfer_execute)

    tools = sub.add_parser("tools")
    tools_sub = tools.add_subparsers(dest="tools_cmd")
    tools_list = tools_sub.add_parser("list")
    tools_list.add_argument("--json", action="store_true")
    tools_list.set_defaults(func=cmd_tools_list)

    return p


def main(argv: list[str] | None = None) -> int:
    _configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
