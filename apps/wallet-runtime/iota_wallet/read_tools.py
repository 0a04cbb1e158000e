from __future__ import annotations

from typing import Any, Mapping

from .config import WalletConfig
from .iota_cli import ExecFn, build_client_args_with_network, exec_iota_cli
from .tool_output import run_tool
from .validation import assert_iota_address, assert_optional_coin_type


def _optional_address(params: Mapping[str, Any], field: str) -> str | None:
    value = params.get(field)
    if value is None or value == "":
        return None
    return assert_iota_address(value, field)


class ReadTools:
    """Read-only CLI queries. No drafts, no policy."""

    def __init__(self, cfg: WalletConfig, exec_fn: ExecFn = exec_iota_cli):
        self.cfg = cfg
        self.exec = exec_fn

    def get_active_env(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return run_tool("iota_active_env", self._active_env, params)

    def get_balance(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        return run_tool("iota_get_balance", self._balance, params)

    def get_gas(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        return run_tool("iota_get_gas", self._gas, params)

    def _active_env(self, params: Mapping[str, Any]) -> dict[str, Any]:
        result = self.exec(self.cfg, ["client", "active-env"], expect_json=True)
        payload: dict[str, Any] = {"result": result, "network": self.cfg.default_network}
        if self.cfg.custom_rpc_url:
            payload["customRpcUrl"] = self.cfg.custom_rpc_url
        return payload

    def _balance(self, params: Mapping[str, Any]) -> dict[str, Any]:
        args = build_client_args_with_network(self.cfg, ["client", "balance"])

        address = _optional_address(params, "address")
        if address:
            args.append(address)

        coin_type = assert_optional_coin_type(params.get("coinType"))
        if coin_type:
            args.extend(["--coin-type", coin_type])

        if params.get("withCoins") is True:
            args.append("--with-coins")

        return {"result": self.exec(self.cfg, args, expect_json=True)}

    def _gas(self, params: Mapping[str, Any]) -> dict[str, Any]:
        args = build_client_args_with_network(self.cfg, ["client", "gas"])
        address = _optional_address(params, "address")
        if address:
            args.append(address)
        return {"result": self.exec(self.cfg, args, expect_json=True)}
