import json
from pathlib import Path

import pytest

from ledgercli.environment import EnvironmentPaths
from ledgercli.pool import (
    CONFIG_LEDGER,
    DOMAIN_LEDGER,
    Pool,
    PoolConfig,
    PoolDirectory,
    PoolError,
    agreement_digest,
)
from ledgercli.txn_log import TransactionLog, TransactionLogError


def write_genesis(path: Path, nodes=("Node1", "Node2", "Node3", "Node4")) -> Path:
    lines = []
    for index, alias in enumerate(nodes, start=1):
        txn = {
            "txn": {
                "type": "0",
                "data": {
                    "data": {"alias": alias, "node_ip": "127.0.0.1", "node_port": 9700 + index * 2, "services": ["VALIDATOR"]},
                    "dest": f"Node{index}Dest",
                },
            },
            "txnMetadata": {"seqNo": index},
        }
        lines.append(json.dumps(txn))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _connect(tmp_path: Path, name: str = "sandbox", **config) -> Pool:
    directory = PoolDirectory(EnvironmentPaths(tmp_path / "home"))
    if not directory.exists(name):
        directory.create(name, write_genesis(tmp_path / "genesis.txn"))
    return Pool.connect(directory, name, PoolConfig(**config))


def _write(operation, identifier="V4SGRU86Z58d6TV7PBUe6f", req_id=1, **extra):
    request = {"reqId": req_id, "identifier": identifier, "operation": operation, "protocolVersion": 2, "signature": "sig"}
    request.update(extra)
    return request


def test_transaction_log_sequence_and_corruption(tmp_path: Path) -> None:
    log = TransactionLog(tmp_path / "ledger.jsonl")
    assert log.size() == 0
    first = log.append({"type": "1", "data": {"dest": "a"}})
    second = log.append({"type": "1", "data": {"dest": "b"}})
    assert (first["seqNo"], second["seqNo"]) == (1, 2)
    assert log.get(2)["txn"]["data"]["dest"] == "b"
    assert log.find_latest("1")["seqNo"] == 2
    with log.path.open("a", encoding="utf-8") as handle:
        handle.write("{not json\n")
    with pytest.raises(TransactionLogError):
        log.size()


def test_pool_directory(tmp_path: Path) -> None:
    directory = PoolDirectory(EnvironmentPaths(tmp_path / "home"))
    genesis = write_genesis(tmp_path / "genesis.txn")
    directory.create("beta", genesis)
    directory.create("alpha", genesis)
    assert directory.names() == ["alpha", "beta"]
    with pytest.raises(PoolError):
        directory.create("alpha", genesis)
    directory.delete("alpha")
    assert directory.names() == ["beta"]
    with pytest.raises(PoolError):
        directory.delete("alpha")


def test_invalid_genesis_rejected(tmp_path: Path) -> None:
    directory = PoolDirectory(EnvironmentPaths(tmp_path / "home"))
    bad = tmp_path / "bad.txn"
    bad.write_text("not json\n", encoding="utf-8")
    with pytest.raises(PoolError):
        directory.create("broken", bad)
    with pytest.raises(PoolError):
        directory.create("missing", tmp_path / "absent.txn")
    assert directory.names() == []


def test_connect_validates_config(tmp_path: Path) -> None:
    pool = _connect(tmp_path)
    assert pool.nodes == ["Node1", "Node2", "Node3", "Node4"]
    with pytest.raises(PoolError):
        _connect(tmp_path, protocol_version=3)
    with pytest.raises(PoolError):
        _connect(tmp_path, preordered_nodes=["Node9"])
    with pytest.raises(PoolError):
        _connect(tmp_path, name="unknown")


def test_write_then_read_transaction(tmp_path: Path) -> None:
    pool = _connect(tmp_path)
    reply = pool.submit(_write({"type": "1", "dest": "VsKV7grR1BUE29mG2Fm2kX"}))
    assert reply["op"] == "REPLY"
    assert reply["result"]["seqNo"] == 1
    assert reply["result"]["ledgerId"] == DOMAIN_LEDGER

    read = pool.submit({"reqId": 2, "identifier": "x", "operation": {"type": "3", "ledgerId": 1, "data": 1}, "protocolVersion": 2})
    assert read["op"] == "REPLY"
    assert read["result"]["data"]["txn"]["data"]["dest"] == "VsKV7grR1BUE29mG2Fm2kX"

    missing = pool.submit({"reqId": 3, "identifier": "x", "operation": {"type": "3", "ledgerId": 1, "data": 9}, "protocolVersion": 2})
    assert missing["result"]["data"] is None

    genesis = pool.submit({"reqId": 4, "identifier": "x", "operation": {"type": "3", "ledgerId": 0, "data": 2}, "protocolVersion": 2})
    assert genesis["result"]["data"]["txn"]["data"]["data"]["alias"] == "Node2"


def test_nacks(tmp_path: Path) -> None:
    pool = _connect(tmp_path)
    assert pool.submit({"reqId": 1, "identifier": "x"})["op"] == "REQNACK"
    unsigned = _write({"type": "1", "dest": "a"})
    del unsigned["signature"]
    assert pool.submit(unsigned)["op"] == "REQNACK"
    assert pool.submit(_write({"type": "1", "dest": "a"}, protocolVersion=1))["op"] == "REQNACK"


def test_malformed_fields_are_nacked(tmp_path: Path) -> None:
    pool = _connect(tmp_path)
    bad_seq = pool.submit({"reqId": 1, "identifier": "x", "operation": {"type": "3", "data": "abc"}, "protocolVersion": 2})
    assert bad_seq["op"] == "REQNACK"
    assert "sequence number" in bad_seq["reason"]
    bad_ledger = pool.submit({"reqId": 2, "identifier": "x", "operation": {"type": "3", "ledgerId": [1], "data": 1}, "protocolVersion": 2})
    assert bad_ledger["op"] == "REQNACK"
    assert pool.submit(_write({"type": "9", "ledgers_ids": ["one"]}))["op"] == "REQNACK"
    assert pool.frozen_ledgers() == []


def test_agreement_required_after_taa(tmp_path: Path) -> None:
    pool = _connect(tmp_path)
    assert pool.get_agreement() is None
    reply = pool.submit(_write({"type": "4", "text": "Be nice", "version": "1.0"}))
    assert reply["result"]["ledgerId"] == CONFIG_LEDGER
    agreement = pool.get_agreement()
    assert agreement == {"text": "Be nice", "version": "1.0", "digest": agreement_digest("Be nice", "1.0")}

    rejected = pool.submit(_write({"type": "1", "dest": "a"}, req_id=2))
    assert rejected["op"] == "REJECT"
    accepted = pool.submit(
        _write({"type": "1", "dest": "a"}, req_id=3, taaAcceptance={"taaDigest": agreement["digest"], "mechanism": "for_session", "time": 0})
    )
    assert accepted["op"] == "REPLY"


def test_frozen_ledger_rejects_writes(tmp_path: Path) -> None:
    pool = _connect(tmp_path)
    pool.submit(_write({"type": "9", "ledgers_ids": [DOMAIN_LEDGER]}))
    assert pool.frozen_ledgers() == [DOMAIN_LEDGER]
    assert pool.submit(_write({"type": "1", "dest": "a"}, req_id=2))["op"] == "REJECT"


def test_refresh_returns_new_handle_only_when_ledger_moved(tmp_path: Path) -> None:
    pool = _connect(tmp_path)
    assert pool.refresh() is None

    other = _connect(tmp_path)
    other.submit(_write({"type": "1", "dest": "a"}))
    refreshed = pool.refresh()
    assert refreshed is not None
    assert refreshed is not pool
    assert refreshed.ledger_size(DOMAIN_LEDGER) == 1
    assert pool.closed
    with pytest.raises(PoolError):
        pool.submit(_write({"type": "1", "dest": "b"}))


def test_disconnect_closes_handle(tmp_path: Path) -> None:
    pool = _connect(tmp_path)
    pool.disconnect()
    with pytest.raises(PoolError):
        pool.get_agreement()
