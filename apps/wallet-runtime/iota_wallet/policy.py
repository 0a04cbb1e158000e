from __future__ import annotations

from .config import WalletConfig
from .errors import IotaWalletError


def enforce_transfer_policy(cfg: WalletConfig, recipient: str, amount_nanos: int) -> None:
    """Gate creation of signable intent. Runs once, at prepare time."""
    if amount_nanos > cfg.max_transfer_nanos:
        raise IotaWalletError(
            "policy_denied",
            "amount exceeds maxTransferNanos policy",
            {"amountNanos": str(amount_nanos), "maxTransferNanos": str(cfg.max_transfer_nanos)},
            "Reduce the amount or raise maxTransferNanos in plugin config.",
        )

    if cfg.recipient_allowlist and recipient not in cfg.recipient_allowlist:
        raise IotaWalletError(
            "policy_denied",
            "recipient is not in recipientAllowlist",
            {"recipient": recipient},
            "Add the recipient to recipientAllowlist before preparing a transfer.",
        )
