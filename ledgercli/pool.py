"""Local network collaborator: pool configs, connections and request handling."""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ledgercli.environment import EnvironmentPaths
from ledgercli.errors import CollaboratorError
from ledgercli.txn_log import TransactionLog, TransactionLogError

logger = logging.getLogger("ledgercli.pool")

SUPPORTED_PROTOCOL_VERSIONS = (1, 2)
CONFIG_FILE = "config.json"

POOL_LEDGER = 0
DOMAIN_LEDGER = 1
CONFIG_LEDGER = 2
LEDGER_NAMES = {"pool": POOL_LEDGER, "domain": DOMAIN_LEDGER, "config": CONFIG_LEDGER}

NODE = "0"
NYM = "1"
GET_TXN = "3"
TXN_AUTHOR_AGREEMENT = "4"
GET_TXN_AUTHOR_AGREEMENT = "6"
LEDGERS_FREEZE = "9"
GET_FROZEN_LEDGERS = "10"
GET_NYM = "105"

READ_TYPES = {GET_TXN, GET_TXN_AUTHOR_AGREEMENT, GET_FROZEN_LEDGERS, GET_NYM}
CONFIG_TYPES = {TXN_AUTHOR_AGREEMENT, LEDGERS_FREEZE}


class PoolError(CollaboratorError):
    """Raised when a pool configuration or connection operation fails."""


@dataclass
class PoolConfig:
    protocol_version: int = 2
    ack_timeout: int = 20
    reply_timeout: int = 60
    request_read_nodes: int = 2
    preordered_nodes: List[str] = field(default_factory=list)


def agreement_digest(text: str, version: str) -> str:
    return hashlib.sha256((version + text).encode("utf-8")).hexdigest()


def _reply(result: Dict[str, Any]) -> Dict[str, Any]:
    return {"op": "REPLY", "result": result}


def _nack(request: Dict[str, Any], reason: str) -> Dict[str, Any]:
    return {"op": "REQNACK", "reqId": request.get("reqId"), "identifier": request.get("identifier"), "reason": reason}


def _reject(request: Dict[str, Any], reason: str) -> Dict[str, Any]:
    return {"op": "REJECT", "reqId": request.get("reqId"), "identifier": request.get("identifier"), "reason": reason}


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return None


def read_genesis(path: Path) -> List[Dict[str, Any]]:
    """Parse a genesis transactions file (one JSON object per line)."""

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError as exc:
        raise PoolError(f"Genesis transactions file {path} does not exist") from exc
    except OSError as exc:
        raise PoolError(f"Cannot read genesis transactions file {path}: {exc}") from exc
    txns: List[Dict[str, Any]] = []
    for line_no, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            raise PoolError(f"Invalid genesis transaction at line {line_no}") from exc
        if not isinstance(payload, dict):
            raise PoolError(f"Invalid genesis transaction at line {line_no}")
        txns.append(payload)
    if not txns:
        raise PoolError(f"Genesis transactions file {path} is empty")
    return txns


def node_alias(txn: Dict[str, Any]) -> Optional[str]:
    data = txn.get("txn", {}).get("data", {}).get("data", {})
    alias = data.get("alias") if isinstance(data, dict) else None
    return str(alias) if alias else None


# ---------------------------------------------------------------------------
# Persisted pool configurations
# ---------------------------------------------------------------------------


class PoolDirectory:
    """Name -> config lookup for pools configured under the CLI home."""

    def __init__(self, paths: EnvironmentPaths) -> None:
        self._paths = paths

    def pool_path(self, name: str) -> Path:
        return self._paths.pool_path(name)

    def exists(self, name: str) -> bool:
        return (self.pool_path(name) / CONFIG_FILE).is_file()

    def create(self, name: str, genesis_file: Path) -> Path:
        path = self.pool_path(name)
        if path.exists():
            raise PoolError(f'Pool "{name}" already exists')
        read_genesis(genesis_file)
        path.mkdir(parents=True)
        txn_path = path / f"{name}.txn"
        shutil.copyfile(genesis_file, txn_path)
        config = {"genesis_txn": str(txn_path)}
        (path / CONFIG_FILE).write_text(json.dumps(config) + "\n", encoding="utf-8")
        return txn_path

    def read_config(self, name: str) -> Dict[str, Any]:
        try:
            return json.loads((self.pool_path(name) / CONFIG_FILE).read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise PoolError(f'Pool "{name}" does not exist.') from exc
        except json.JSONDecodeError as exc:
            raise PoolError(f'Pool "{name}" config is corrupted') from exc

    def delete(self, name: str) -> None:
        path = self.pool_path(name)
        if not path.exists():
            raise PoolError(f'Pool "{name}" does not exist.')
        shutil.rmtree(path)

    def names(self) -> List[str]:
        home = self._paths.pools_home
        if not home.is_dir():
            return []
        return [entry.name for entry in sorted(home.iterdir()) if (entry / CONFIG_FILE).is_file()]

    def ledger_log(self, name: str, ledger_id: int) -> TransactionLog:
        label = {DOMAIN_LEDGER: "domain", CONFIG_LEDGER: "config"}.get(ledger_id)
        if label is None:
            raise PoolError(f"Ledger {ledger_id} is not writable")
        return TransactionLog(self.pool_path(name) / f"{label}.jsonl")


# ---------------------------------------------------------------------------
# Connected pool handle
# ---------------------------------------------------------------------------


class Pool:
    """Connected pool handle; a refreshed state is returned as a new handle."""

    def __init__(
        self,
        name: str,
        config: PoolConfig,
        directory: PoolDirectory,
        genesis: Sequence[Dict[str, Any]],
    ) -> None:
        self.name = name
        self.config = config
        self._directory = directory
        self._genesis = list(genesis)
        self._logs = {
            DOMAIN_LEDGER: directory.ledger_log(name, DOMAIN_LEDGER),
            CONFIG_LEDGER: directory.ledger_log(name, CONFIG_LEDGER),
        }
        self._state = self._snapshot()
        self._closed = False

    def __repr__(self) -> str:
        return f"Pool(name={self.name!r}, nodes={len(self.nodes)}, closed={self._closed})"

    @classmethod
    def connect(cls, directory: PoolDirectory, name: str, config: PoolConfig) -> "Pool":
        if config.protocol_version not in SUPPORTED_PROTOCOL_VERSIONS:
            raise PoolError(f'Unexpected Pool protocol version "{config.protocol_version}".')
        pool_config = directory.read_config(name)
        genesis = read_genesis(Path(pool_config["genesis_txn"]))
        pool = cls(name, config, directory, genesis)
        unknown = [node for node in config.preordered_nodes if node not in pool.nodes]
        if unknown:
            raise PoolError(f"Unknown pre-ordered nodes: {', '.join(unknown)}")
        logger.debug("Connected to pool %s with %d nodes", name, len(pool.nodes))
        return pool

    @property
    def nodes(self) -> List[str]:
        return [alias for alias in (node_alias(txn) for txn in self._genesis) if alias]

    @property
    def closed(self) -> bool:
        return self._closed

    def disconnect(self) -> None:
        self._closed = True

    def _ensure_connected(self) -> None:
        if self._closed:
            raise PoolError(f'Pool "{self.name}" is not connected')

    def _snapshot(self) -> Tuple[int, ...]:
        try:
            return tuple(self._logs[ledger].size() for ledger in sorted(self._logs))
        except TransactionLogError as exc:
            raise PoolError(str(exc)) from exc

    def ledger_size(self, ledger_id: int = DOMAIN_LEDGER) -> int:
        if ledger_id == POOL_LEDGER:
            return len(self._genesis)
        return self._state[sorted(self._logs).index(ledger_id)]

    def refresh(self) -> Optional["Pool"]:
        """Catch up with the ledger; return a replacement handle if it moved."""

        self._ensure_connected()
        pool_config = self._directory.read_config(self.name)
        genesis = read_genesis(Path(pool_config["genesis_txn"]))
        state = self._snapshot()
        if state == self._state and genesis == self._genesis:
            return None
        refreshed = Pool(self.name, replace(self.config), self._directory, genesis)
        self._closed = True
        return refreshed

    # -------------------- agreement / freeze ------------------
    def get_agreement(self) -> Optional[Dict[str, str]]:
        self._ensure_connected()
        entry = self._logs[CONFIG_LEDGER].find_latest(TXN_AUTHOR_AGREEMENT)
        if entry is None:
            return None
        data = entry["txn"].get("data", {})
        text = str(data.get("text", ""))
        version = str(data.get("version", ""))
        if not text:
            return None
        return {"text": text, "version": version, "digest": agreement_digest(text, version)}

    def frozen_ledgers(self) -> List[int]:
        entry = self._logs[CONFIG_LEDGER].find_latest(LEDGERS_FREEZE)
        if entry is None:
            return []
        ledgers = entry["txn"].get("data", {}).get("ledgers_ids", [])
        return [ledger for ledger in (_as_int(item) for item in ledgers) if ledger is not None]

    def _ledger_state(self, ledger_id: int) -> Dict[str, Any]:
        if ledger_id == POOL_LEDGER:
            entries = list(self._genesis)
        elif ledger_id in self._logs:
            entries = list(self._logs[ledger_id].entries())
        else:
            return {"ledger": None, "state": None, "seq_no": 0}
        last = entries[-1] if entries else {}
        return {"ledger": last.get("txnId"), "state": None, "seq_no": len(entries)}

    # -------------------- requests ----------------------------
    def submit(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self._ensure_connected()
        operation = request.get("operation")
        if not isinstance(operation, dict) or "type" not in operation:
            return _nack(request, "Request has no operation type")
        if "reqId" not in request or "identifier" not in request:
            return _nack(request, "Request must contain reqId and identifier")
        version = request.get("protocolVersion", self.config.protocol_version)
        if version != self.config.protocol_version:
            return _nack(request, f"Unsupported protocol version {version}")
        txn_type = str(operation["type"])
        try:
            if txn_type in READ_TYPES:
                return self._read(request, txn_type, operation)
            return self._write(request, txn_type, operation)
        except TransactionLogError as exc:
            raise PoolError(f'Pool "{self.name}" ledger failure: {exc}') from exc

    def _read(self, request: Dict[str, Any], txn_type: str, operation: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": txn_type, "reqId": request["reqId"], "identifier": request["identifier"]}
        if txn_type == GET_TXN:
            ledger_id = _as_int(operation.get("ledgerId", DOMAIN_LEDGER))
            seq_no = _as_int(operation.get("data"))
            if ledger_id is None:
                return _nack(request, f"Invalid ledgerId {operation.get('ledgerId')!r}")
            if seq_no is None or seq_no <= 0:
                return _nack(request, f"Invalid transaction sequence number {operation.get('data')!r}")
            if ledger_id == POOL_LEDGER:
                data = self._genesis[seq_no - 1] if 0 < seq_no <= len(self._genesis) else None
            elif ledger_id in self._logs:
                data = self._logs[ledger_id].get(seq_no)
            else:
                return _nack(request, f"Unknown ledger {ledger_id}")
            result.update({"seqNo": seq_no, "data": data})
        elif txn_type == GET_TXN_AUTHOR_AGREEMENT:
            result["data"] = self.get_agreement()
        elif txn_type == GET_FROZEN_LEDGERS:
            result["data"] = {str(ledger): self._ledger_state(ledger) for ledger in self.frozen_ledgers()}
        elif txn_type == GET_NYM:
            dest = operation.get("dest")
            data: Optional[Dict[str, Any]] = None
            for entry in self._logs[DOMAIN_LEDGER].entries():
                txn = entry.get("txn", {})
                if txn.get("type") != NYM or txn.get("data", {}).get("dest") != dest:
                    continue
                if data is None:
                    data = {"identifier": txn.get("metadata", {}).get("from")}
                data.update(txn.get("data", {}))
                data["seqNo"] = entry["seqNo"]
            result.update({"dest": dest, "data": data})
        return _reply(result)

    def _write(self, request: Dict[str, Any], txn_type: str, operation: Dict[str, Any]) -> Dict[str, Any]:
        if not request.get("signature") and not request.get("signatures"):
            return _nack(request, "MissingSignature()")
        if txn_type == LEDGERS_FREEZE:
            ledgers = operation.get("ledgers_ids")
            if not isinstance(ledgers, list) or any(_as_int(ledger) is None for ledger in ledgers):
                return _nack(request, "ledgers_ids must be a list of ledger ids")
        ledger_id = CONFIG_LEDGER if txn_type in CONFIG_TYPES else DOMAIN_LEDGER
        if ledger_id in self.frozen_ledgers() and txn_type != LEDGERS_FREEZE:
            return _reject(request, f"Ledger {ledger_id} is frozen")
        if ledger_id == DOMAIN_LEDGER:
            agreement = self.get_agreement()
            if agreement is not None:
                acceptance = request.get("taaAcceptance") or {}
                if acceptance.get("taaDigest") != agreement["digest"]:
                    return _reject(request, "Txn Author Agreement acceptance is required for this ledger")
        data = {key: value for key, value in operation.items() if key != "type"}
        txn = {
            "type": txn_type,
            "data": data,
            "metadata": {"from": request["identifier"], "reqId": request["reqId"]},
        }
        entry = self._logs[ledger_id].append(txn)
        self._state = self._snapshot()
        return _reply({"ledgerId": ledger_id, **entry})


__all__ = [
    "CONFIG_LEDGER",
    "DOMAIN_LEDGER",
    "LEDGER_NAMES",
    "POOL_LEDGER",
    "Pool",
    "PoolConfig",
    "PoolDirectory",
    "PoolError",
    "agreement_digest",
    "read_genesis",
]
