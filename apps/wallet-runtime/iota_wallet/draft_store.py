"""File-backed store of in-flight transfer drafts.

The whole store is rewritten through a temp file and renamed into place on every
mutation, so readers never observe a partially written file. A missing or corrupt file
loads as an empty store.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

logger = logging.getLogger(__name__)

STATE_DIR_ENV = "OPENCLAW_STATE_DIR"


@dataclass
class PreparedTransfer:
    id: str
    recipient: str
    amount_nanos: int
    created_at: int
    expires_at: int
    approved: bool
    tx_bytes: str | None = None
    decoded_tx: Any = None
    signer_address: str | None = None
    signature: str | None = None

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expires_at

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "recipient": self.recipient,
            "amountNanos": str(self.amount_nanos),
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "approved": self.approved,
        }
        if self.tx_bytes is not None:
            payload["txBytes"] = self.tx_bytes
        if self.decoded_tx is not None:
            payload["decodedTx"] = self.decoded_tx
        if self.signer_address is not None:
            payload["signerAddress"] = self.signer_address
        if self.signature is not None:
            payload["signature"] = self.signature
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> PreparedTransfer:
        draft_id = payload.get("id")
        amount = payload.get("amountNanos")
        if not isinstance(draft_id, str) or not isinstance(amount, str) or not re.fullmatch(r"[0-9]+", amount):
            raise ValueError("draft record requires string id and decimal amountNanos")
        return cls(
            id=draft_id,
            recipient=str(payload.get("recipient", "")),
            amount_nanos=int(amount),
            created_at=int(payload.get("createdAt", 0)),
            expires_at=int(payload.get("expiresAt", 0)),
            approved=payload.get("approved") is True,
            tx_bytes=payload.get("txBytes"),
            decoded_tx=payload.get("decodedTx"),
            signer_address=payload.get("signerAddress"),
            signature=payload.get("signature"),
        )


def default_store_path(env: Mapping[str, str] | None = None) -> pathlib.Path:
    environ = os.environ if env is None else env
    state_dir = (environ.get(STATE_DIR_ENV) or "").strip()
    if state_dir:
        return pathlib.Path(state_dir) / "iota-wallet" / "drafts.json"
    return pathlib.Path.cwd() / ".iota-wallet" / "drafts.json"


class DraftStore:
    def __init__(self, file_path: str | os.PathLike[str] | None = None):
        self.file_path = pathlib.Path(file_path) if file_path is not None else default_store_path()
        self._drafts: dict[str, PreparedTransfer] = {}
        self._lock = threading.RLock()
        self._draft_locks: dict[str, tuple[threading.Lock, int]] = {}
        self._draft_locks_guard = threading.Lock()
        self._load()

    def _load(self) -> None:
        if not self.file_path.exists():
            return
        try:
            raw = json.loads(self.file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError, RecursionError) as exc:
            logger.warning("ignoring unreadable draft store '%s': %s", self.file_path, exc)
            return
        if not isinstance(raw, list):
            logger.warning("ignoring draft store '%s': expected a JSON array", self.file_path)
            return
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            try:
                draft = PreparedTransfer.from_payload(entry)
            except (TypeError, ValueError):
                logger.warning("skipping malformed draft record in '%s'", self.file_path)
                continue
            self._drafts[draft.id] = draft

    def _ensure_dir(self) -> None:
        directory = self.file_path.parent
        directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        if os.name != "nt":
            os.chmod(directory, 0o700)

    def _persist(self) -> None:
        self._ensure_dir()
        serialized = json.dumps([draft.to_payload() for draft in self._drafts.values()], indent=2)
        tmp = pathlib.Path(f"{self.file_path}.{os.getpid()}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as handle:
                handle.write(serialized)
                handle.flush()
                os.fsync(handle.fileno())
            if os.name != "nt":
                os.chmod(tmp, 0o600)
            tmp.replace(self.file_path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    def __len__(self) -> int:
        with self._lock:
            return len(self._drafts)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._drafts)

    def get(self, draft_id: str) -> PreparedTransfer | None:
        with self._lock:
            return self._drafts.get(draft_id)

    def set(self, draft: PreparedTransfer) -> None:
        with self._lock:
            self._drafts[draft.id] = draft
            self._persist()

    def delete(self, draft_id: str) -> bool:
        with self._lock:
            if self._drafts.pop(draft_id, None) is None:
                return False
            self._persist()
            return True

    def prune_expired(self, now_ms: int) -> int:
        with self._lock:
            expired = [draft_id for draft_id, draft in self._drafts.items() if draft.is_expired(now_ms)]
            for draft_id in expired:
                del self._drafts[draft_id]
            if expired:
                self._persist()
                logger.info("pruned %d expired draft(s)", len(expired))
            return len(expired)

    @contextmanager
    def draft_lock(self, draft_id: str) -> Iterator[None]:
        """Serialize read-validate-mutate-persist sequences on a single draft id."""
        with self._draft_locks_guard:
            lock, users = self._draft_locks.get(draft_id, (threading.Lock(), 0))
            self._draft_locks[draft_id] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._draft_locks_guard:
                lock, users = self._draft_locks[draft_id]
                if users <= 1:
                    del self._draft_locks[draft_id]
                else:
                    self._draft_locks[draft_id] = (lock, users - 1)
