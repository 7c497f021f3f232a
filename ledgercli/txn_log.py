"""Append-only transaction log backing a local pool."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, Optional


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class TransactionLogError(RuntimeError):
    """Raised when the transaction log cannot be read or appended."""


class TransactionLog:
    """JSON-lines log; each appended entry receives the next ``seqNo``."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def entries(self) -> Iterator[Dict[str, object]]:
        try:
            handle = self._path.open("r", encoding="utf-8")
        except FileNotFoundError:
            return
        with handle:
            for line_no, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as exc:
                    raise TransactionLogError(f"Corrupted transaction log entry at line {line_no}") from exc

    def size(self) -> int:
        return sum(1 for _ in self.entries())

    def get(self, seq_no: int) -> Optional[Dict[str, object]]:
        for entry in self.entries():
            if entry.get("seqNo") == seq_no:
                return entry
        return None

    def find_latest(self, txn_type: str) -> Optional[Dict[str, object]]:
        latest: Optional[Dict[str, object]] = None
        for entry in self.entries():
            if entry.get("txn", {}).get("type") == txn_type:
                latest = entry
        return latest

    def append(self, txn: Dict[str, object]) -> Dict[str, object]:
        """Append *txn* and return the committed entry."""

        seq_no = self.size() + 1
        serialized = json.dumps(txn, sort_keys=True, ensure_ascii=False)
        entry: Dict[str, object] = {
            "seqNo": seq_no,
            "txnTime": int(_now_utc().timestamp()),
            "txnId": hashlib.sha256(serialized.encode("utf-8")).hexdigest(),
            "txn": txn,
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as exc:
            raise TransactionLogError(str(exc)) from exc
        return entry


__all__ = ["TransactionLog", "TransactionLogError"]
