from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping

from .errors import IotaWalletError, to_tool_error_payload

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Mapping[str, Any]], dict[str, Any]]


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def to_json(payload: Any, *, compact: bool = False) -> str:
    if compact:
        return json.dumps(payload, separators=(",", ":"), default=_json_default)
    return json.dumps(payload, indent=2, default=_json_default)


def to_tool_text(payload: Any) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": to_json(payload)}]}


def run_tool(name: str, handler: ToolHandler, params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Run a tool handler and convert any failure into the error envelope."""
    try:
        result = handler(params if isinstance(params, Mapping) else {})
    except IotaWalletError as exc:
        logger.info("%s failed: %s (%s)", name, exc.code, exc.message)
        return to_tool_error_payload(exc)
    except Exception as exc:  # noqa: BLE001
        logger.exception("%s failed unexpectedly", name)
        return to_tool_error_payload(exc)
    return {"ok": True, **result}
