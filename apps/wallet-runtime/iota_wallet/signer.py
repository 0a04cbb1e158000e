from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass
from typing import Any

from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from .errors import IotaWalletError

BASE64_RE = re.compile(r"[A-Za-z0-9+/=]+")
SIGNATURE_KEYS = (
    "iotaSignature",
    "signature",
    "serializedSignature",
    "serialized_signature",
    "serializedSigBase64",
    "serialized_sig_base64",
)
MAX_SIGNATURE_SEARCH_DEPTH = 16

# IOTA signature scheme flags, prepended to the public key when deriving an address.
FLAG_ED25519 = 0x00
FLAG_SECP256K1 = 0x01
FLAG_SECP256R1 = 0x02
SCHEME_NAMES = {FLAG_ED25519: "ed25519", FLAG_SECP256K1: "secp256k1", FLAG_SECP256R1: "secp256r1"}


@dataclass(frozen=True)
class PublicKeyInfo:
    scheme: str
    address: str


def _is_base64(value: Any) -> bool:
    return isinstance(value, str) and bool(BASE64_RE.fullmatch(value))


def find_signature(value: Any, max_depth: int = MAX_SIGNATURE_SEARCH_DEPTH) -> str | None:
    """Find a serialized signature anywhere in a CLI JSON response.

    Known keys on the current object win over nested values. Traversal stops at max_depth.
    """
    if max_depth < 0:
        return None
    if isinstance(value, dict):
        for key in SIGNATURE_KEYS:
            candidate = value.get(key)
            if _is_base64(candidate):
                return candidate
        nested = value.values()
    elif isinstance(value, list):
        nested = value
    else:
        return None

    for item in nested:
        if isinstance(item, (dict, list)):
            found = find_signature(item, max_depth - 1)
            if found:
                return found
    return None


def is_verification_successful(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    result = payload.get("result")
    if result is None:
        return False
    if isinstance(result, str):
        return result.strip().lower() == "ok"
    if isinstance(result, dict):
        if any(key in result for key in ("Err", "err", "error")):
            return False
        return any(key in result for key in ("Ok", "ok", "success"))
    return False


def _split_public_key(raw: bytes) -> tuple[int, bytes]:
    if len(raw) == 32:
        return FLAG_ED25519, raw
    if len(raw) == 33 and raw[0] == FLAG_ED25519:
        return FLAG_ED25519, raw[1:]
    if len(raw) == 33 and raw[0] in (0x02, 0x03):
        # Bare compressed SEC1 point; KMS keys are secp256k1.
        return FLAG_SECP256K1, raw
    if len(raw) == 34 and raw[0] in (FLAG_SECP256K1, FLAG_SECP256R1):
        return raw[0], raw[1:]
    raise ValueError(f"unsupported public key length {len(raw)}")


def _load_public_key(flag: int, key: bytes) -> None:
    if flag == FLAG_ED25519:
        ed25519.Ed25519PublicKey.from_public_bytes(key)
    elif flag == FLAG_SECP256K1:
        ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), key)
    else:
        ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), key)


def inspect_public_key(base64_public_key: str) -> PublicKeyInfo:
    """Validate a configured KMS public key and derive the IOTA address it signs for."""
    try:
        raw = base64.b64decode(base64_public_key.strip(), validate=True)
        flag, key = _split_public_key(raw)
        _load_public_key(flag, key)
    except (binascii.Error, ValueError) as exc:
        raise IotaWalletError(
            "invalid_input",
            "signer.base64PublicKey is not a valid ed25519/secp256k1/secp256r1 public key",
            {"cause": str(exc)},
            "Export the KMS public key as base64 (optionally IOTA flag-prefixed) and update plugin config.",
        ) from exc

    digest = hashlib.blake2b(bytes([flag]) + key, digest_size=32).hexdigest()
    return PublicKeyInfo(scheme=SCHEME_NAMES[flag], address=f"0x{digest}")
