from __future__ import annotations

from typing import Any

ERROR_CODES = frozenset(
    {
        "invalid_input",
        "policy_denied",
        "cli_timeout",
        "cli_failed",
        "cli_parse_error",
        "draft_not_found",
        "draft_expired",
        "approval_required",
    }
)


class IotaWalletError(Exception):
    """Domain failure carrying a stable error code for the tool envelope."""

    def __init__(self, code: str, message: str, details: Any = None, action_hint: str | None = None):
        if code not in ERROR_CODES:
            raise ValueError(f"unknown error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.action_hint = action_hint


def to_tool_error_payload(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, IotaWalletError):
        error: dict[str, Any] = {"code": exc.code, "message": exc.message}
        if exc.details is not None:
            error["details"] = exc.details
        if exc.action_hint:
            error["actionHint"] = exc.action_hint
        return {"ok": False, "error": error}

    return {
        "ok": False,
        "error": {
            "code": "unknown",
            "message": str(exc) or "Unexpected plugin error",
        },
    }
