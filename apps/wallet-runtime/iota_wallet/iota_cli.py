"""Execution harness for the external iota CLI.

Every call goes through an allow-list of top-level commands, runs without a shell, and is
bounded by the configured command timeout. Output is returned as trimmed text or parsed
JSON; the CLI may print warnings ahead of the JSON document on stdout.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any, Protocol, Sequence

from .config import WalletConfig
from .errors import IotaWalletError

logger = logging.getLogger(__name__)

SAFE_TOP_LEVEL = frozenset({"client", "keytool"})
VALUE_FLAGS = frozenset({"--client.env", "--client.config"})
JSON_FLAG = "--json"
OUTPUT_SAMPLE_CHARS = 500
DIAGNOSTIC_CHARS = 2000

_json_decoder = json.JSONDecoder()


class ExecFn(Protocol):
    def __call__(self, cfg: WalletConfig, args: Sequence[str], *, expect_json: bool = True) -> Any: ...


def resolve_top_level_command(args: Sequence[str]) -> str | None:
    index = 0
    while index < len(args):
        token = args[index]
        if not token.startswith("-"):
            return token
        # Global flags such as --client.env consume the next token.
        if token in VALUE_FLAGS:
            index += 1
        index += 1
    return None


def assert_safe_iota_args(args: Sequence[str]) -> None:
    if not args:
        raise IotaWalletError("invalid_input", "iota command args are empty")
    command = resolve_top_level_command(args)
    if command is None or command not in SAFE_TOP_LEVEL:
        raise IotaWalletError(
            "invalid_input",
            f"unsupported iota command: {command or '<none>'}",
            {"allowed": sorted(SAFE_TOP_LEVEL)},
        )


def build_client_args_with_network(cfg: WalletConfig, args: Sequence[str]) -> list[str]:
    if cfg.default_network == "custom":
        return list(args)
    return ["--client.env", cfg.default_network, *args]


def build_keytool_args(cfg: WalletConfig, args: Sequence[str]) -> list[str]:
    if not args or args[0] != "keytool" or not cfg.signer.keystore_path:
        return list(args)
    return ["keytool", "--keystore-path", cfg.signer.keystore_path, *args[1:]]


def _try_parse(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (ValueError, RecursionError):
        return False, None


def _parse_trailing_json(text: str) -> tuple[bool, Any]:
    for index, char in enumerate(text):
        if char not in "{[\"":
            continue
        try:
            value, end = _json_decoder.raw_decode(text, index)
        except (ValueError, RecursionError):
            continue
        if not text[end:].strip():
            return True, value
    return False, None


def parse_json_from_stdout(stdout: str) -> Any:
    trimmed = (stdout or "").strip()
    if not trimmed:
        raise IotaWalletError("cli_parse_error", "empty JSON output from iota command")

    parsed, value = _try_parse(trimmed)
    if parsed:
        return value

    parsed, value = _parse_trailing_json(trimmed)
    if parsed:
        return value

    raise IotaWalletError(
        "cli_parse_error",
        "iota command did not return valid JSON",
        {"sample": trimmed[:OUTPUT_SAMPLE_CHARS]},
    )


def exec_iota_cli(cfg: WalletConfig, args: Sequence[str], *, expect_json: bool = True) -> Any:
    assert_safe_iota_args(args)

    final_args = list(args)
    if expect_json and JSON_FLAG not in final_args:
        final_args.append(JSON_FLAG)

    cmd = [cfg.cli_path, *final_args]
    timeout_sec = cfg.command_timeout_ms / 1000
    logger.debug("running iota command: %s", final_args)
    try:
        # subprocess.run kills the child before re-raising TimeoutExpired.
        proc = subprocess.run(
            cmd,
            shell=False,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_sec,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("iota command timed out after %sms: %s", cfg.command_timeout_ms, final_args)
        raise IotaWalletError(
            "cli_timeout",
            f"iota command timed out after {cfg.command_timeout_ms}ms",
            {"args": final_args, "timeoutMs": cfg.command_timeout_ms},
            "Check RPC connectivity or raise commandTimeoutMs, then retry.",
        ) from exc
    except OSError as exc:
        logger.warning("failed to start iota command %s: %s", cfg.cli_path, exc)
        raise IotaWalletError(
            "cli_failed",
            "failed to start iota command",
            {"cause": str(exc), "cliPath": cfg.cli_path, "args": final_args},
            "Install the iota CLI or set cliPath / IOTA_CLI_PATH.",
        ) from exc

    stdout = (proc.stdout or "").strip()
    stderr = (proc.stderr or "").strip()
    if proc.returncode != 0:
        logger.warning("iota command failed (%s): %s", proc.returncode, final_args)
        raise IotaWalletError(
            "cli_failed",
            f"iota command failed ({proc.returncode})",
            {
                "returnCode": proc.returncode,
                "stdout": stdout[:DIAGNOSTIC_CHARS],
                "stderr": stderr[:DIAGNOSTIC_CHARS],
                "args": final_args,
            },
        )

    if not expect_json:
        return stdout
    return parse_json_from_stdout(stdout)
