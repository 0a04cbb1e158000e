from __future__ import annotations

import re
from typing import Any

from .errors import IotaWalletError

IOTA_ADDRESS_RE = re.compile(r"0x[a-f0-9]{64}", re.IGNORECASE)
COIN_TYPE_RE = re.compile(r"[^\s:]+::[^\s:]+::[^\s:]+")
DIGITS_RE = re.compile(r"[0-9]+")
MAX_SAFE_INTEGER = 2**53 - 1


def is_iota_address(value: str) -> bool:
    return bool(IOTA_ADDRESS_RE.fullmatch(value))


def normalize_iota_address(value: str) -> str:
    return value.strip().lower()


def _is_int(value: Any) -> bool:
    # bool is an int subclass; JSON true/false must never pass as amounts.
    return isinstance(value, int) and not isinstance(value, bool)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def assert_iota_address(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise IotaWalletError("invalid_input", f"{field} must be a string")
    normalized = normalize_iota_address(value)
    if not is_iota_address(normalized):
        raise IotaWalletError(
            "invalid_input",
            f"{field} must be a valid 0x-prefixed 64-byte IOTA address",
            {"field": field},
        )
    return normalized


def assert_optional_coin_type(value: Any) -> str | None:
    if _is_empty(value):
        return None
    if not isinstance(value, str):
        raise IotaWalletError("invalid_input", "coinType must be a string")
    trimmed = value.strip()
    if not COIN_TYPE_RE.fullmatch(trimmed):
        raise IotaWalletError("invalid_input", "coinType must match <address>::<module>::<type>", {"coinType": trimmed})
    return trimmed


def parse_positive_big_int(value: Any, field: str) -> int:
    if isinstance(value, str) and DIGITS_RE.fullmatch(value):
        parsed = int(value)
        if parsed <= 0:
            raise IotaWalletError("invalid_input", f"{field} must be greater than 0")
        return parsed
    if _is_int(value) and 0 < value <= MAX_SAFE_INTEGER:
        return value
    raise IotaWalletError("invalid_input", f"{field} must be a positive integer string")


def parse_optional_positive_int(value: Any, field: str) -> int | None:
    if _is_empty(value):
        return None
    if _is_int(value) and 0 < value <= MAX_SAFE_INTEGER:
        return value
    if isinstance(value, str) and DIGITS_RE.fullmatch(value):
        parsed = int(value)
        if 0 < parsed <= MAX_SAFE_INTEGER:
            return parsed
    raise IotaWalletError("invalid_input", f"{field} must be a positive integer")


def assert_string_array(value: Any, field: str) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise IotaWalletError("invalid_input", f"{field} must be an array")
    out: list[str] = []
    for entry in value:
        if not isinstance(entry, str) or not entry.strip():
            raise IotaWalletError("invalid_input", f"{field} must only contain non-empty strings")
        out.append(entry.strip())
    return out


def assert_draft_id(value: Any) -> str:
    draft_id = value.strip() if isinstance(value, str) else ""
    if not draft_id:
        raise IotaWalletError("invalid_input", "draftId must be a non-empty string")
    return draft_id


def as_boolean(value: Any) -> bool:
    return value is True
