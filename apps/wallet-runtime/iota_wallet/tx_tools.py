"""Approval-gated transfer pipeline.

prepare -> approve/reject -> dry-run (observational) -> execute. Policy is enforced once,
at prepare; execute never submits a signature the CLI has not verified against the
draft's unsigned bytes.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any, Callable, Mapping

from .config import WalletConfig
from .draft_store import DraftStore, PreparedTransfer
from .errors import IotaWalletError
from .iota_cli import (
    OUTPUT_SAMPLE_CHARS,
    ExecFn,
    build_client_args_with_network,
    build_keytool_args,
    exec_iota_cli,
    parse_json_from_stdout,
)
from .policy import enforce_transfer_policy
from .signer import find_signature, inspect_public_key, is_verification_successful
from .tool_output import run_tool
from .validation import (
    assert_draft_id,
    assert_iota_address,
    assert_string_array,
    parse_optional_positive_int,
    parse_positive_big_int,
)

logger = logging.getLogger(__name__)

BASE64_RE = re.compile(r"[A-Za-z0-9+/=]+")
BASE64_LINE_RE = re.compile(r"[A-Za-z0-9+/=]{20,}")
TX_BYTES_KEYS = ("txBytes", "tx_bytes", "unsignedTxBytes", "unsigned_tx_bytes")


def _now_ms() -> int:
    return int(time.time() * 1000)


def extract_unsigned_tx_bytes(raw_output: str) -> str:
    """Pull base64 unsigned tx bytes out of `pay-iota --serialize-unsigned-transaction` output.

    Strategies, in order: the whole output is base64; the output is JSON holding a base64
    string (bare or under a known key); the first line that looks like base64.
    """
    trimmed = (raw_output or "").strip()
    if not trimmed:
        raise IotaWalletError("cli_parse_error", "unsigned transaction output is empty")

    if BASE64_RE.fullmatch(trimmed):
        return trimmed

    try:
        parsed = parse_json_from_stdout(trimmed)
    except IotaWalletError:
        parsed = None
    if isinstance(parsed, str) and BASE64_RE.fullmatch(parsed):
        return parsed
    if isinstance(parsed, dict):
        for key in TX_BYTES_KEYS:
            candidate = parsed.get(key)
            if isinstance(candidate, str) and BASE64_RE.fullmatch(candidate):
                return candidate

    for line in trimmed.splitlines():
        candidate = line.strip()
        if BASE64_LINE_RE.fullmatch(candidate):
            return candidate

    raise IotaWalletError(
        "cli_parse_error",
        "could not extract unsigned tx bytes from CLI output",
        {"sample": trimmed[:OUTPUT_SAMPLE_CHARS]},
    )


class TransferTools:
    def __init__(
        self,
        cfg: WalletConfig,
        store: DraftStore,
        exec_fn: ExecFn = exec_iota_cli,
        now_ms: Callable[[], int] = _now_ms,
    ):
        self.cfg = cfg
        self.store = store
        self.exec = exec_fn
        self.now_ms = now_ms

    # Tool entry points: always return the envelope, never raise.

    def prepare_transfer(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        return run_tool("iota_prepare_transfer", self._prepare, params)

    def approve_transfer(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        return run_tool("iota_approve_transfer", self._approve, params)

    def dry_run_transfer(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        return run_tool("iota_dry_run_transfer", self._dry_run, params)

    def execute_transfer(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        return run_tool("iota_execute_transfer", self._execute, params)

    def _get_draft(self, draft_id: str) -> PreparedTransfer:
        draft = self.store.get(draft_id)
        if draft is None:
            raise IotaWalletError("draft_not_found", "draft not found", {"draftId": draft_id})
        if draft.is_expired(self.now_ms()):
            self.store.delete(draft_id)
            raise IotaWalletError(
                "draft_expired",
                "draft expired",
                {"draftId": draft_id, "expiresAt": draft.expires_at},
                "Prepare a new transfer.",
            )
        return draft

    @staticmethod
    def _require_tx_bytes(draft: PreparedTransfer) -> str:
        if not draft.tx_bytes:
            raise IotaWalletError("invalid_input", "draft does not contain txBytes", {"draftId": draft.id})
        return draft.tx_bytes

    def _prepare(self, params: Mapping[str, Any]) -> dict[str, Any]:
        self.store.prune_expired(self.now_ms())

        recipient = assert_iota_address(params.get("recipient"), "recipient")
        amount_nanos = parse_positive_big_int(params.get("amountNanos"), "amountNanos")
        input_coins = [
            assert_iota_address(entry, "inputCoins[]")
            for entry in assert_string_array(params.get("inputCoins"), "inputCoins")
        ]
        if not input_coins:
            raise IotaWalletError("invalid_input", "inputCoins must contain at least one coin object id")
        gas_budget = parse_optional_positive_int(params.get("gasBudget"), "gasBudget")

        enforce_transfer_policy(self.cfg, recipient, amount_nanos)

        prepare_args = build_client_args_with_network(
            self.cfg,
            [
                "client",
                "pay-iota",
                "--recipients",
                recipient,
                "--input-coins",
                *input_coins,
                "--amounts",
                str(amount_nanos),
                "--serialize-unsigned-transaction",
            ],
        )
        if gas_budget is not None:
            prepare_args.extend(["--gas-budget", str(gas_budget)])

        unsigned_output = self.exec(self.cfg, prepare_args, expect_json=False)
        tx_bytes = extract_unsigned_tx_bytes(str(unsigned_output))

        decoded_tx = self.exec(
            self.cfg,
            ["keytool", "decode-or-verify-tx", "--tx-bytes", tx_bytes],
            expect_json=True,
        )

        now = self.now_ms()
        draft = PreparedTransfer(
            id=str(uuid.uuid4()),
            recipient=recipient,
            amount_nanos=amount_nanos,
            created_at=now,
            expires_at=now + self.cfg.approval_ttl_seconds * 1000,
            approved=not self.cfg.require_approval,
            tx_bytes=tx_bytes,
            decoded_tx=decoded_tx,
        )
        self.store.set(draft)
        logger.info("prepared draft %s (approved=%s)", draft.id, draft.approved)

        return {"status": "prepared", "draft": draft.to_payload(), "preview": decoded_tx}

    def _approve(self, params: Mapping[str, Any]) -> dict[str, Any]:
        draft_id = assert_draft_id(params.get("draftId"))
        with self.store.draft_lock(draft_id):
            draft = self._get_draft(draft_id)

            if params.get("approve") is True:
                draft.approved = True
                self.store.set(draft)
                logger.info("approved draft %s", draft_id)
                return {"status": "approved", "draft": draft.to_payload()}

            self.store.delete(draft_id)
            logger.info("rejected draft %s", draft_id)
            return {"status": "rejected", "draftId": draft_id}

    def _dry_run(self, params: Mapping[str, Any]) -> dict[str, Any]:
        draft_id = assert_draft_id(params.get("draftId"))
        draft = self._get_draft(draft_id)
        tx_bytes = self._require_tx_bytes(draft)

        args = build_client_args_with_network(self.cfg, ["client", "serialized-tx", tx_bytes, "--dry-run"])
        result = self.exec(self.cfg, args, expect_json=True)
        return {"status": "dry_run", "result": result}

    def _sign_with_kms(self, draft: PreparedTransfer, tx_bytes: str) -> str:
        signer = self.cfg.signer
        if not signer.key_id or not signer.base64_public_key:
            raise IotaWalletError(
                "invalid_input",
                "kms signer mode requires signer.keyId and signer.base64PublicKey in plugin config",
            )
        key_info = inspect_public_key(signer.base64_public_key)

        kms_args = [
            "keytool",
            "sign-kms",
            "--data",
            tx_bytes,
            "--keyid",
            signer.key_id,
            "--base64pk",
            signer.base64_public_key,
        ]
        if signer.intent:
            kms_args.extend(["--intent", signer.intent])

        sign_result = self.exec(self.cfg, kms_args, expect_json=True)
        signature = find_signature(sign_result)
        if not signature:
            raise IotaWalletError("cli_parse_error", "could not extract signature from keytool sign-kms output")

        draft.signer_address = key_info.address
        draft.signature = signature
        self.store.set(draft)
        return signature

    def _sign_with_keystore(self, draft: PreparedTransfer, tx_bytes: str, signer_address: Any) -> str:
        address = assert_iota_address(
            signer_address if signer_address is not None else draft.signer_address,
            "signerAddress",
        )
        sign_result = self.exec(
            self.cfg,
            build_keytool_args(self.cfg, ["keytool", "sign", "--address", address, "--data", tx_bytes]),
            expect_json=True,
        )
        signature = find_signature(sign_result)
        if not signature:
            raise IotaWalletError("cli_parse_error", "could not extract signature from keytool output")

        draft.signer_address = address
        draft.signature = signature
        self.store.set(draft)
        return signature

    def _resolve_signature(self, draft: PreparedTransfer, tx_bytes: str, params: Mapping[str, Any]) -> str:
        explicit = params.get("signature")
        if isinstance(explicit, str) and explicit.strip():
            return explicit.strip()

        mode = self.cfg.signer.mode
        if mode == "external-signature":
            raise IotaWalletError(
                "invalid_input",
                "signature is required in external-signature mode",
                action_hint="Sign the draft txBytes externally and pass the serialized signature.",
            )
        if mode == "kms":
            return self._sign_with_kms(draft, tx_bytes)
        return self._sign_with_keystore(draft, tx_bytes, params.get("signerAddress"))

    def _execute(self, params: Mapping[str, Any]) -> dict[str, Any]:
        draft_id = assert_draft_id(params.get("draftId"))
        with self.store.draft_lock(draft_id):
            draft = self._get_draft(draft_id)
            tx_bytes = self._require_tx_bytes(draft)

            if self.cfg.require_approval and not draft.approved:
                raise IotaWalletError(
                    "approval_required",
                    "draft is not approved",
                    {"draftId": draft_id},
                    "Approve the draft with iota_approve_transfer before executing.",
                )

            signature = self._resolve_signature(draft, tx_bytes, params)

            verify_result = self.exec(
                self.cfg,
                ["keytool", "decode-or-verify-tx", "--tx-bytes", tx_bytes, "--sig", signature],
                expect_json=True,
            )
            if not is_verification_successful(verify_result):
                logger.warning("signature verification failed for draft %s", draft_id)
                raise IotaWalletError("policy_denied", "signature verification failed", verify_result)

            execute_args = build_client_args_with_network(
                self.cfg,
                ["client", "execute-signed-tx", "--tx-bytes", tx_bytes, "--signatures", signature],
            )
            result = self.exec(self.cfg, execute_args, expect_json=True)
            self.store.delete(draft_id)
            logger.info("executed draft %s", draft_id)

            return {"status": "executed", "result": result, "verifyResult": verify_result}
