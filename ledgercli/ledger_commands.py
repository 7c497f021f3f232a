"""Ledger transaction commands: build, sign, buffer and submit requests."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ledgercli.command_context import CommandContext
from ledgercli.command_metadata import CommandGroupMetadata, CommandMetadata, CompletionCategory
from ledgercli.command_registry import CommandResult, command, success, table
from ledgercli.errors import CommandError
from ledgercli.ledger import (
    LedgerError,
    append_agreement,
    build_agreement_request,
    build_freeze_ledgers_request,
    build_get_frozen_ledgers_request,
    build_get_nym_request,
    build_get_txn_request,
    build_nym_request,
    check_response,
    describe_reply,
    dump_request,
    multi_sign_request,
    parse_request,
    resolve_ledger_id,
    role_title,
    sign_request,
)
from ledgercli.params_parser import CommandParams
from ledgercli.toolbox import Toolbox

GROUP = CommandGroupMetadata("ledger", "Ledger management commands")

CONTEXT_TXN = "context"

logger = logging.getLogger("ledgercli.commands.ledger")


def _signed(context: CommandContext, request: Dict[str, Any]) -> Dict[str, Any]:
    store = context.ensure_opened_store()
    did = context.ensure_active_identity()
    return sign_request(store, did, request)


def with_agreement(context: CommandContext, request: Dict[str, Any]) -> Dict[str, Any]:
    pool = context.get_connected_network()
    acceptance = context.get_agreement()
    if pool is None or acceptance is None:
        return request
    agreement = pool.get_agreement()
    if agreement is None or agreement["version"] != acceptance.version:
        return request
    return append_agreement(request, acceptance, agreement["digest"])


def submit(context: CommandContext, request: Dict[str, Any]) -> List[str]:
    pool = context.ensure_connected_network()
    logger.debug("Submitting request %s to pool %s", request.get("reqId"), pool.name)
    result = check_response(pool.submit(request))
    return describe_reply(result)


def send_or_store(
    context: CommandContext,
    request: Dict[str, Any],
    *,
    send: bool,
    sign: bool = True,
    title: str = "Transaction has been sent to Ledger.",
) -> CommandResult:
    """Sign *request* and submit it, or buffer it as the pending transaction."""

    if send:
        context.ensure_connected_network()
    request = with_agreement(context, request)
    if sign:
        request = _signed(context, request)
    if not send:
        context.set_pending_transaction(dump_request(request))
        return success("Transaction has been created:", f"     {dump_request(request)}")
    return success(title, *submit(context, request), audit={"reqId": request.get("reqId")})


def _load_txn(context: CommandContext, raw: Optional[str]) -> Dict[str, Any]:
    if raw is None or raw == CONTEXT_TXN:
        return parse_request(context.ensure_pending_transaction())
    return parse_request(raw)


@command(
    CommandMetadata.build("custom", "Send custom transaction to the Ledger")
    .add_main_param("txn", 'Transaction JSON to send, or "context" to use the pending transaction')
    .add_optional_param("sign", "Sign the transaction with the active DID (false by default)")
    .add_optional_param("send", "Send the transaction to the Ledger (true by default)")
    .add_example('ledger custom {"reqId":1,"identifier":"V4SGRU86Z58d6TV7PBUe6f","operation":{"type":"105","dest":"V4SGRU86Z58d6TV7PBUe6f"},"protocolVersion":2}')
    .add_example("ledger custom context sign=true")
    .finalize(),
    group=GROUP,
)
def custom(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    raw = params.get_str("txn")
    request = _load_txn(context, raw)
    sign = bool(params.get_opt_bool("sign"))
    send = params.get_opt_bool("send")
    send = True if send is None else send
    lines: List[str] = []
    if raw == CONTEXT_TXN and send:
        built_for = context.get_pending_transaction_network()
        pool = context.ensure_connected_network()
        if built_for is not None and built_for != pool.name:
            lines.append(f'Transaction was built while connected to pool "{built_for}"')
    result = send_or_store(context, request, send=send, sign=sign, title="Response:")
    if lines:
        result.stdout = "".join(line + "\n" for line in lines) + result.stdout
    return result


@command(
    CommandMetadata.build("nym", "Add NYM to Ledger.")
    .add_required_param_with_dynamic_completion("did", "DID of new identity", CompletionCategory.IDENTITY)
    .add_optional_param("verkey", "Verification key of new identity")
    .add_optional_param("role", "Role of identity. One of: STEWARD, TRUSTEE, TRUST_ANCHOR, ENDORSER, NETWORK_MONITOR or empty in case of blacklisting NYM")
    .add_optional_param("send", "Send the request to the Ledger (true by default)")
    .add_example("ledger nym did=VsKV7grR1BUE29mG2Fm2kX")
    .add_example("ledger nym did=VsKV7grR1BUE29mG2Fm2kX verkey=GjZWsBLgZCR18aL468JAT7w9CZRiBnpxUPPgyQxh4voa")
    .add_example("ledger nym did=VsKV7grR1BUE29mG2Fm2kX role=TRUSTEE send=false")
    .finalize(),
    group=GROUP,
)
def nym(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    submitter = context.ensure_active_identity()
    request = build_nym_request(
        submitter,
        params.get_identity("did"),
        params.get_opt_str("verkey"),
        params.get_opt_empty_str("role"),
        context.get_protocol_version(),
    )
    send = params.get_opt_bool("send")
    return send_or_store(context, request, send=True if send is None else send, title="Nym request has been sent to Ledger.")


@command(
    CommandMetadata.build("get-nym", "Get NYM from Ledger.")
    .add_required_param_with_dynamic_completion("did", "DID of identity presented in Ledger", CompletionCategory.IDENTITY)
    .add_optional_param("send", "Send the request to the Ledger (true by default)")
    .add_example("ledger get-nym did=VsKV7grR1BUE29mG2Fm2kX")
    .finalize(),
    group=GROUP,
)
def get_nym(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    request = build_get_nym_request(
        context.get_active_identity(),
        params.get_identity("did"),
        context.get_protocol_version(),
    )
    send = params.get_opt_bool("send")
    if send is False:
        return send_or_store(context, request, send=False, sign=False)
    result = check_response(context.ensure_connected_network().submit(request))
    data = result.get("data")
    if not data:
        raise LedgerError("NYM not found")
    row = (data.get("identifier"), data.get("dest"), data.get("verkey"), role_title(data.get("role")))
    return success(
        "Following NYM has been received.",
        *table(("Identifier", "Dest", "Verkey", "Role"), [row]),
    )


@command(
    CommandMetadata.build("get-txn", "Get any transaction by sequence number from the Ledger.")
    .add_required_param("seq_no", "Sequence number of the transaction")
    .add_optional_param("ledger_type", "Ledger to query: pool, domain, config or a numeric ledger id (domain by default)")
    .add_optional_param("send", "Send the request to the Ledger (true by default)")
    .add_example("ledger get-txn seq_no=1")
    .add_example("ledger get-txn seq_no=1 ledger_type=config")
    .finalize(),
    group=GROUP,
)
def get_txn(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    seq_no = params.get_int("seq_no")
    if seq_no <= 0:
        raise CommandError('Parameter "seq_no" must be a positive number')
    ledger_id = resolve_ledger_id(params.get_opt_str("ledger_type"))
    request = build_get_txn_request(
        context.get_active_identity(),
        ledger_id,
        seq_no,
        context.get_protocol_version(),
    )
    send = params.get_opt_bool("send")
    if send is False:
        return send_or_store(context, request, send=False, sign=False)
    result = check_response(context.ensure_connected_network().submit(request))
    if result.get("data") is None:
        return success("Transaction not found")
    return success("Following transaction has been received.", json.dumps(result["data"], sort_keys=True, indent=2))


@command(
    CommandMetadata.build("ledgers-freeze", "Freeze ledgers with the specified identifiers.")
    .add_required_param("ledgers_ids", "Comma-separated list of ledger ids or ranges, e.g. 1,2 or 1-3")
    .add_optional_param("send", "Send the request to the Ledger (true by default)")
    .add_example("ledger ledgers-freeze ledgers_ids=1,2")
    .finalize(),
    group=GROUP,
)
def ledgers_freeze(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    submitter = context.ensure_active_identity()
    request = build_freeze_ledgers_request(
        submitter,
        params.get_number_list("ledgers_ids"),
        context.get_protocol_version(),
    )
    send = params.get_opt_bool("send")
    return send_or_store(context, request, send=True if send is None else send, title="Ledgers freeze request has been sent to Ledger.")


@command(
    CommandMetadata.build("get-frozen-ledgers", "Get a list of frozen ledgers")
    .add_example("ledger get-frozen-ledgers")
    .finalize(),
    group=GROUP,
)
def get_frozen_ledgers(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    submitter = context.ensure_active_identity()
    request = build_get_frozen_ledgers_request(submitter, context.get_protocol_version())
    result = check_response(context.ensure_connected_network().submit(request))
    frozen = result.get("data") or {}
    if not frozen:
        return success("Frozen ledgers has been received.", "No frozen ledgers found.")
    rows = [
        (ledger_id, info.get("ledger"), info.get("state"), info.get("seq_no"))
        for ledger_id, info in sorted(frozen.items(), key=lambda item: int(item[0]))
    ]
    return success(
        "Frozen ledgers has been received.",
        *table(("Ledger id", "Ledger root hash", "State root hash", "Last sequence number"), rows),
    )


@command(
    CommandMetadata.build("txn-author-agreement", "Send Transaction Author Agreement to the Ledger.")
    .add_optional_param("text", "The content of a new agreement")
    .add_optional_param("file", "The path to file containing a content of agreement to send (an alternative to the `text` parameter)")
    .add_required_param("version", "The version of a new agreement")
    .add_optional_param("send", "Send the request to the Ledger (true by default)")
    .add_example("ledger txn-author-agreement text=\"Indy transaction agreement\" version=1")
    .add_example("ledger txn-author-agreement file=/home/agreement_content.txt version=1")
    .finalize(),
    group=GROUP,
)
def txn_author_agreement(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    submitter = context.ensure_active_identity()
    text = params.get_opt_str("text")
    file = params.get_opt_str("file")
    if (text is None) == (file is None):
        raise CommandError('Exactly one of "text" or "file" parameters must be specified')
    if file is not None:
        path = Path(file).expanduser()
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise LedgerError(f"Can't read the agreement file: {exc}") from exc
    request = build_agreement_request(
        submitter,
        text,
        params.get_str("version"),
        context.get_protocol_version(),
    )
    send = params.get_opt_bool("send")
    return send_or_store(context, request, send=True if send is None else send, title="Transaction Author Agreement has been sent to Ledger.")


@command(
    CommandMetadata.build("sign-multi", "Add multi signature by the active DID to the transaction")
    .add_optional_param("txn", "Transaction JSON to sign (the pending transaction by default)")
    .add_example('ledger sign-multi txn={"reqId":1496822211362017764}')
    .add_example("ledger sign-multi")
    .finalize(),
    group=GROUP,
)
def sign_multi(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    raw = params.get_opt_str("txn")
    request = _load_txn(context, raw)
    store = context.ensure_opened_store()
    did = context.ensure_active_identity()
    signed = dump_request(multi_sign_request(store, did, request))
    lines = ["Transaction has been signed:", f"     {signed}"]
    if raw is None or raw == CONTEXT_TXN:
        context.set_pending_transaction(signed)
        lines.append("Transaction has been stored into CLI context.")
    return success(*lines)


@command(
    CommandMetadata.build("save-transaction", "Save the pending transaction into a file.")
    .add_required_param("file", "The path to the file")
    .add_example("ledger save-transaction file=/home/transaction.json")
    .finalize(),
    group=GROUP,
)
def save_transaction(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    txn = context.ensure_pending_transaction()
    path = Path(params.get_str("file")).expanduser()
    if path.exists():
        raise CommandError(f'File "{path}" already exists')
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(txn, encoding="utf-8")
    except OSError as exc:
        raise LedgerError(f"Can't write the transaction file: {exc}") from exc
    return success(f'The transaction has been saved into the file "{path}"')


@command(
    CommandMetadata.build("load-transaction", "Read a transaction from a file and store it into CLI context.")
    .add_required_param("file", "The path to the file containing the transaction")
    .add_example("ledger load-transaction file=/home/transaction.json")
    .finalize(),
    group=GROUP,
)
def load_transaction(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    path = Path(params.get_str("file")).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise LedgerError(f"Can't read the transaction file: {exc}") from exc
    request = parse_request(text.strip())
    context.set_pending_transaction(dump_request(request))
    return success("Transaction has been loaded:", f"     {dump_request(request)}")


__all__ = [
    "GROUP",
    "custom",
    "get_frozen_ledgers",
    "get_nym",
    "get_txn",
    "ledgers_freeze",
    "load_transaction",
    "nym",
    "save_transaction",
    "send_or_store",
    "sign_multi",
    "submit",
    "txn_author_agreement",
    "with_agreement",
]
