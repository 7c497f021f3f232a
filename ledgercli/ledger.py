"""Ledger request construction, signing and response handling."""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Iterable, List, Optional

from ledgercli.command_context import AgreementAcceptance
from ledgercli.errors import CollaboratorError
from ledgercli.pool import (
    DOMAIN_LEDGER,
    GET_FROZEN_LEDGERS,
    GET_NYM,
    GET_TXN,
    LEDGER_NAMES,
    LEDGERS_FREEZE,
    NYM,
    TXN_AUTHOR_AGREEMENT,
)
from ledgercli.store import Store, b58encode, short_did

ROLES = {
    "TRUSTEE": "0",
    "STEWARD": "2",
    "TRUST_ANCHOR": "101",
    "ENDORSER": "101",
    "NETWORK_MONITOR": "201",
}

ROLE_TITLES = {"0": "TRUSTEE", "2": "STEWARD", "101": "ENDORSER", "201": "NETWORK_MONITOR"}

_SIGNATURE_FIELDS = ("signature", "signatures")


class LedgerError(CollaboratorError):
    """Raised for malformed requests and rejected transactions."""


def next_request_id() -> int:
    return time.time_ns() // 1000


def build_request(
    submitter: Optional[str],
    operation: Dict[str, Any],
    protocol_version: int,
) -> Dict[str, Any]:
    request: Dict[str, Any] = {
        "reqId": next_request_id(),
        "identifier": short_did(submitter) if submitter else "LibindyDid111111111111",
        "operation": operation,
        "protocolVersion": protocol_version,
    }
    return request


def build_nym_request(
    submitter: str,
    dest: str,
    verkey: Optional[str],
    role: Optional[str],
    protocol_version: int,
) -> Dict[str, Any]:
    operation: Dict[str, Any] = {"type": NYM, "dest": short_did(dest)}
    if verkey:
        operation["verkey"] = verkey
    if role is not None:
        operation["role"] = resolve_role(role)
    return build_request(submitter, operation, protocol_version)


def role_title(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    return ROLE_TITLES.get(str(code), str(code))


def resolve_role(role: str) -> Optional[str]:
    if role == "":
        return None
    try:
        return ROLES[role.upper()]
    except KeyError:
        raise LedgerError(f'Invalid role "{role}"') from None


def resolve_ledger_id(ledger_type: Optional[str]) -> int:
    if ledger_type is None:
        return DOMAIN_LEDGER
    if ledger_type.isdigit():
        return int(ledger_type)
    try:
        return LEDGER_NAMES[ledger_type.lower()]
    except KeyError:
        raise LedgerError(f'Invalid ledger type "{ledger_type}"') from None


def build_get_txn_request(
    submitter: Optional[str],
    ledger_id: int,
    seq_no: int,
    protocol_version: int,
) -> Dict[str, Any]:
    operation = {"type": GET_TXN, "ledgerId": ledger_id, "data": seq_no}
    return build_request(submitter, operation, protocol_version)


def build_get_nym_request(
    submitter: Optional[str],
    dest: str,
    protocol_version: int,
) -> Dict[str, Any]:
    operation = {"type": GET_NYM, "dest": short_did(dest)}
    return build_request(submitter, operation, protocol_version)


def build_get_frozen_ledgers_request(submitter: Optional[str], protocol_version: int) -> Dict[str, Any]:
    return build_request(submitter, {"type": GET_FROZEN_LEDGERS}, protocol_version)


def build_freeze_ledgers_request(
    submitter: str,
    ledger_ids: Iterable[int],
    protocol_version: int,
) -> Dict[str, Any]:
    operation = {"type": LEDGERS_FREEZE, "ledgers_ids": sorted(set(ledger_ids))}
    return build_request(submitter, operation, protocol_version)


def build_agreement_request(
    submitter: str,
    text: str,
    version: str,
    protocol_version: int,
) -> Dict[str, Any]:
    operation = {"type": TXN_AUTHOR_AGREEMENT, "text": text, "version": version}
    return build_request(submitter, operation, protocol_version)


def parse_request(text: str) -> Dict[str, Any]:
    try:
        request = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LedgerError(f"Invalid transaction JSON: {exc.msg}") from exc
    if not isinstance(request, dict) or not isinstance(request.get("operation"), dict):
        raise LedgerError("Transaction must be a JSON object with an operation")
    return request


def dump_request(request: Dict[str, Any]) -> str:
    return json.dumps(request, sort_keys=True)


def signing_payload(request: Dict[str, Any]) -> bytes:
    unsigned = {key: value for key, value in request.items() if key not in _SIGNATURE_FIELDS}
    return json.dumps(unsigned, sort_keys=True, separators=(",", ":")).encode("utf-8")


def sign_request(store: Store, did: str, request: Dict[str, Any]) -> Dict[str, Any]:
    signed = dict(request)
    signed["identifier"] = request.get("identifier") or short_did(did)
    signed.pop("signatures", None)
    signed["signature"] = b58encode(store.sign(did, signing_payload(signed)))
    return signed


def multi_sign_request(store: Store, did: str, request: Dict[str, Any]) -> Dict[str, Any]:
    """Add *did*'s signature to the ``signatures`` map, folding in a single signature."""

    signed = dict(request)
    signatures: Dict[str, str] = dict(signed.pop("signatures", None) or {})
    single = signed.pop("signature", None)
    if single:
        signatures[str(signed.get("identifier"))] = single
    signatures[short_did(did)] = b58encode(store.sign(did, signing_payload(signed)))
    signed["signatures"] = signatures
    return signed


def append_agreement(
    request: Dict[str, Any],
    acceptance: Optional[AgreementAcceptance],
    digest: Optional[str],
) -> Dict[str, Any]:
    if acceptance is None or digest is None or "taaAcceptance" in request:
        return request
    updated = dict(request)
    updated["taaAcceptance"] = acceptance.as_request_field(digest)
    return updated


def check_response(response: Dict[str, Any]) -> Dict[str, Any]:
    """Return the ``result`` body of a reply; raise for NACKs and rejections."""

    op = response.get("op")
    if op == "REPLY":
        return response.get("result", {})
    if op in ("REQNACK", "REJECT"):
        raise LedgerError(f"Transaction has been rejected: {response.get('reason', '')}")
    raise LedgerError(f"Invalid data has been received: {json.dumps(response)}")


def describe_reply(result: Dict[str, Any]) -> List[str]:
    lines: List[str] = []
    for key in ("ledgerId", "seqNo", "txnTime"):
        if key in result:
            lines.append(f"{key}: {result[key]}")
    txn = result.get("txn")
    if isinstance(txn, dict):
        lines.append(f"type: {txn.get('type')}")
        lines.append(f"data: {json.dumps(txn.get('data', {}), sort_keys=True)}")
    elif "data" in result:
        lines.append(f"data: {json.dumps(result['data'], sort_keys=True)}")
    return lines


__all__ = [
    "LedgerError",
    "ROLES",
    "append_agreement",
    "build_agreement_request",
    "build_freeze_ledgers_request",
    "build_get_frozen_ledgers_request",
    "build_get_nym_request",
    "build_get_txn_request",
    "build_nym_request",
    "build_request",
    "check_response",
    "describe_reply",
    "dump_request",
    "multi_sign_request",
    "parse_request",
    "resolve_ledger_id",
    "resolve_role",
    "role_title",
    "sign_request",
    "signing_payload",
]
