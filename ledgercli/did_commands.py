"""Identity management commands operating on the opened store."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from ledgercli.command_context import CommandContext
from ledgercli.command_metadata import CommandGroupMetadata, CommandMetadata, CompletionCategory
from ledgercli.command_registry import CommandResult, command, success, table
from ledgercli.errors import CommandError
from ledgercli.ledger import build_get_nym_request, build_nym_request, check_response, sign_request
from ledgercli.ledger_commands import with_agreement
from ledgercli.params_parser import CommandParams
from ledgercli.store import abbreviate_verkey
from ledgercli.toolbox import Toolbox

GROUP = CommandGroupMetadata("did", "Identity management commands")


@command(
    CommandMetadata.build("new", "Create new DID")
    .add_optional_param("did", "Known DID for new wallet instance")
    .add_optional_deferred_param("seed", "Seed for creating DID key-pair (UTF-8, base64 or hex)")
    .add_optional_param("method", "Method name to create fully qualified DID")
    .add_optional_param("metadata", "DID metadata")
    .add_example("did new")
    .add_example("did new did=VsKV7grR1BUE29mG2Fm2kX")
    .add_example("did new did=VsKV7grR1BUE29mG2Fm2kX method=indy")
    .add_example("did new seed=00000000000000000000000000000My1 metadata=did_metadata")
    .finalize(),
    group=GROUP,
)
def new(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    store = context.ensure_opened_store()
    did = params.get_opt_identity("did")
    info = store.create_identity(
        did=did,
        seed=params.get_opt_str("seed"),
        metadata=params.get_opt_empty_str("metadata"),
        method=params.get_opt_str("method"),
    )
    lines = [f'Did "{info.did}" has been created with "{abbreviate_verkey(info.did, info.verkey)}" verkey']
    if info.metadata is not None:
        lines.append(f'Metadata has been saved for DID "{info.did}"')
    return success(*lines, audit={"did": info.did})


@command(
    CommandMetadata.build("use", "Use DID")
    .add_main_param_with_dynamic_completion("did", "Did stored in wallet", CompletionCategory.IDENTITY)
    .add_example("did use VsKV7grR1BUE29mG2Fm2kX")
    .finalize(),
    group=GROUP,
)
def use(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    store = context.ensure_opened_store()
    did = params.get_identity("did")
    store.get_identity(did)
    context.set_active_identity(did)
    return success(f'Did "{did}" has been set as active')


@command(
    CommandMetadata.build("list", "List my DIDs stored in the opened wallet.")
    .add_example("did list")
    .finalize(),
    group=GROUP,
)
def list_identities(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    store = context.ensure_opened_store()
    identities = store.list_identities()
    if not identities:
        return success("There are no dids")
    rows = [
        (info.did, abbreviate_verkey(info.did, info.verkey), info.metadata or "")
        for info in identities
    ]
    lines = table(("Did", "Verkey", "Metadata"), rows)
    active = context.get_active_identity()
    if active is not None:
        lines.append(f"Current did: {active}")
    return success(*lines)


@command(
    CommandMetadata.build("set-metadata", "Updates metadata for a DID in the wallet")
    .add_required_param_with_dynamic_completion("did", "DID stored in the wallet", CompletionCategory.IDENTITY)
    .add_required_param("metadata", "Metadata to store")
    .add_example("did set-metadata did=VsKV7grR1BUE29mG2Fm2kX metadata=did_metadata")
    .finalize(),
    group=GROUP,
)
def set_metadata(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    store = context.ensure_opened_store()
    did = params.get_identity("did")
    metadata = params.get_opt_empty_str("metadata") or ""
    store.set_metadata(did, metadata)
    return success(f'Metadata has been saved for DID "{did}"')


@command(
    CommandMetadata.build("qualify", "Update DID stored in the wallet to make it fully qualified")
    .add_required_param_with_dynamic_completion("did", "DID stored in the wallet", CompletionCategory.IDENTITY)
    .add_required_param("method", "Method to apply to the DID")
    .add_example("did qualify did=VsKV7grR1BUE29mG2Fm2kX method=indy")
    .finalize(),
    group=GROUP,
)
def qualify(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    store = context.ensure_opened_store()
    did = params.get_identity("did")
    method = params.get_str("method")
    qualified = store.qualify_identity(did, method)
    lines = [f'Fully qualified DID "{qualified}"']
    if context.get_active_identity() == did:
        context.set_active_identity(qualified)
        lines.append(f'Target DID is the same as CLI active. Active DID has been updated to "{qualified}"')
    return success(*lines, audit={"did": qualified})


def _ledger_verkey(context: CommandContext, did: str) -> Optional[str]:
    pool = context.get_connected_network()
    if pool is None:
        return None
    request = build_get_nym_request(did, did, context.get_protocol_version())
    data = check_response(pool.submit(request)).get("data") or {}
    return data.get("verkey")


def _send_verkey(context: CommandContext, did: str, verkey: str) -> None:
    store = context.ensure_opened_store()
    request = build_nym_request(did, did, verkey, None, context.get_protocol_version())
    request = sign_request(store, did, with_agreement(context, request))
    check_response(context.ensure_connected_network().submit(request))


@command(
    CommandMetadata.build("rotate-key", "Rotate keys for active did")
    .add_optional_deferred_param("seed", "If not provided then the keys will be randomly generated")
    .add_optional_param("resume", "Resume interrupted operation")
    .add_example("did rotate-key")
    .add_example("did rotate-key seed=00000000000000000000000000000My2")
    .add_example("did rotate-key resume=true")
    .finalize(),
    group=GROUP,
)
def rotate_key(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    store = context.ensure_opened_store()
    did = context.ensure_active_identity()
    ledger_verkey = _ledger_verkey(context, did)
    lines = []
    if params.get_opt_bool("resume"):
        info = store.get_identity(did)
        if info.next_verkey is None:
            raise CommandError("Unable to resume, have you already run rotate-key?")
        new_verkey = info.next_verkey
        update_ledger = ledger_verkey is not None
        if ledger_verkey is not None:
            next_verkey, current_verkey = info.next_verkey, info.verkey
            if ledger_verkey.startswith("~"):
                next_verkey = abbreviate_verkey(did, next_verkey)
                current_verkey = abbreviate_verkey(did, current_verkey)
            if ledger_verkey == next_verkey:
                update_ledger = False
            elif ledger_verkey != current_verkey:
                raise CommandError("Unable to resume, verkey on ledger is completely different from verkey in wallet")
    else:
        new_verkey = store.replace_keys_start(did, params.get_opt_str("seed"))
        update_ledger = ledger_verkey is not None
    if ledger_verkey is None:
        lines.append("DID is not registered on the ledger")
    if update_ledger:
        _send_verkey(context, did, new_verkey)
    store.replace_keys_apply(did)
    lines.append(f'Verkey for did "{did}" has been updated')
    lines.append(f'New verkey is "{abbreviate_verkey(did, new_verkey)}"')
    return success(*lines, audit={"did": did})


@command(
    CommandMetadata.build("import", "Import DIDs entities from file to the current wallet.")
    .add_main_param("file", "Path to file with DIDs")
    .add_example("did import /home/user/dids.json")
    .finalize(),
    group=GROUP,
)
def import_identities(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    """Create every DID listed in a ``{"version": 1, "dids": [...]}`` file."""

    store = context.ensure_opened_store()
    path = Path(params.get_str("file")).expanduser()
    try:
        config = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise CommandError("Unable to read DID import config from the provided file") from exc
    if not isinstance(config, dict) or not isinstance(config.get("dids"), list):
        raise CommandError("Unable to read DID import config from the provided file")
    if config.get("version") != 1:
        raise CommandError("Unsupported DID import config version")
    lines = []
    for entry in config["dids"]:
        if not isinstance(entry, dict) or "seed" not in entry:
            raise CommandError("Unable to read DID import config from the provided file")
        info = store.create_identity(did=entry.get("did"), seed=entry["seed"])
        lines.append(f'Did "{info.did}" has been created with "{abbreviate_verkey(info.did, info.verkey)}" verkey')
    lines.append("DIDs import finished")
    return success(*lines)


__all__ = ["GROUP", "import_identities", "list_identities", "new", "qualify", "rotate_key", "set_metadata", "use"]
