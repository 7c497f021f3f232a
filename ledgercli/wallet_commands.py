"""Wallet (credential store) management commands."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ledgercli.command_context import CommandContext
from ledgercli.command_metadata import CommandGroupMetadata, CommandMetadata, CompletionCategory
from ledgercli.command_registry import CommandResult, command, success, table
from ledgercli.errors import CommandError
from ledgercli.params_parser import CommandParams
from ledgercli.store import Credentials, Store, StoreAlreadyExists, StoreConfig, StoreError, StoreNotFound
from ledgercli.toolbox import Toolbox

GROUP = CommandGroupMetadata("wallet", "Wallet management commands")

logger = logging.getLogger("ledgercli.commands.wallet")


def _store_config(name: str, params: CommandParams) -> StoreConfig:
    return StoreConfig(
        id=name,
        storage_type=params.get_opt_str("storage_type") or "default",
        storage_config=params.get_opt_object("storage_config"),
    )


def _credentials(params: CommandParams) -> Credentials:
    return Credentials(
        key=params.get_str("key"),
        key_derivation_method=params.get_opt_str("key_derivation_method"),
        rekey=params.get_opt_str("rekey"),
        rekey_derivation_method=params.get_opt_str("rekey_derivation_method"),
        storage_credentials=params.get_opt_object("storage_credentials"),
    )


def close_opened_store(context: CommandContext) -> Optional[str]:
    """Close and detach the opened store from the context; return its name."""

    store = context.take_opened_store()
    if store is None:
        return None
    store.close()
    return store.name


@command(
    CommandMetadata.build("create", "Create new wallet and attach to CLI")
    .add_main_param("name", "Identifier of the wallet")
    .add_required_deferred_param("key", "Key or passphrase used for wallet key derivation")
    .add_optional_param("key_derivation_method", "Algorithm to use for wallet key derivation: pbkdf2, pbkdf2-fast, raw")
    .add_optional_param("storage_type", "Type of the wallet storage")
    .add_optional_param("storage_config", "The JSON object with storage configuration")
    .add_optional_param("storage_credentials", "The JSON object with storage credentials")
    .add_example("wallet create wallet1 key")
    .add_example("wallet create wallet1 key storage_type=default")
    .add_example('wallet create wallet1 key storage_type=default storage_config={"key1":"value1"}')
    .finalize(),
    group=GROUP,
)
def create(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    name = params.get_str("name")
    if tools.stores.exists(name):
        raise StoreAlreadyExists(f'Wallet "{name}" is already attached to CLI')
    Store.create(tools.stores, _store_config(name, params), _credentials(params))
    return success(f'Wallet "{name}" has been created')


@command(
    CommandMetadata.build("attach", "Attach existing wallet to CLI")
    .add_main_param("name", "Identifier of the wallet")
    .add_optional_param("storage_type", "Type of the wallet storage")
    .add_optional_param("storage_config", "The JSON object with storage configuration")
    .add_example("wallet attach wallet1")
    .add_example("wallet attach wallet1 storage_type=default")
    .finalize(),
    group=GROUP,
)
def attach(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    name = params.get_str("name")
    if tools.stores.exists(name):
        raise StoreAlreadyExists(f'Wallet "{name}" is already attached to CLI')
    if not tools.stores.data_path(name).is_file():
        raise StoreNotFound(f'Wallet "{name}" not found')
    tools.stores.store_config(_store_config(name, params))
    return success(f'Wallet "{name}" has been attached')


@command(
    CommandMetadata.build("detach", "Detach wallet from CLI")
    .add_main_param_with_dynamic_completion("name", "Identifier of the wallet", CompletionCategory.STORE)
    .add_example("wallet detach wallet1")
    .finalize(),
    group=GROUP,
)
def detach(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    name = params.get_str("name")
    opened = context.get_opened_store()
    if opened is not None and opened.name == name:
        raise CommandError(f'Wallet "{name}" is opened. Close it before detaching')
    tools.stores.delete_config(name)
    return success(f'Wallet "{name}" has been detached')


@command(
    CommandMetadata.build("open", "Open wallet. Also close previously opened.")
    .add_main_param_with_dynamic_completion("name", "Identifier of the wallet", CompletionCategory.STORE)
    .add_required_deferred_param("key", "Key or passphrase used for wallet key derivation")
    .add_optional_param("key_derivation_method", "Algorithm to use for wallet key derivation: pbkdf2, pbkdf2-fast, raw")
    .add_optional_deferred_param("rekey", "New key or passphrase used for wallet key derivation")
    .add_optional_param("rekey_derivation_method", "Algorithm to use for wallet rekey derivation")
    .add_optional_param("storage_credentials", "The JSON object with storage credentials")
    .add_example("wallet open wallet1 key")
    .add_example("wallet open wallet1 key rekey")
    .finalize(),
    group=GROUP,
)
def open_wallet(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    name = params.get_str("name")
    credentials = _credentials(params)
    config = tools.stores.read_config(name)
    lines = []
    closed = close_opened_store(context)
    if closed is not None:
        lines.append(f'Wallet "{closed}" has been closed')
    store = Store.open(tools.stores, config, credentials)
    context.set_opened_store(store)
    lines.append(f'Wallet "{name}" has been opened')
    return success(*lines, audit={"wallet": name})


@command(
    CommandMetadata.build("close", "Close opened wallet.")
    .add_example("wallet close")
    .finalize(),
    group=GROUP,
)
def close(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    context.ensure_opened_store()
    name = close_opened_store(context)
    return success(f'Wallet "{name}" has been closed')


@command(
    CommandMetadata.build("delete", "Delete wallet with specified name")
    .add_main_param_with_dynamic_completion("name", "Identifier of the wallet", CompletionCategory.STORE)
    .add_required_deferred_param("key", "Key or passphrase used for wallet key derivation")
    .add_optional_param("key_derivation_method", "Algorithm to use for wallet key derivation")
    .add_optional_param("storage_credentials", "The JSON object with storage credentials")
    .add_example("wallet delete wallet1 key")
    .finalize(),
    group=GROUP,
)
def delete(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    name = params.get_str("name")
    credentials = _credentials(params)
    config = tools.stores.read_config(name)
    lines = []
    opened = context.get_opened_store()
    if opened is not None and opened.name == name:
        close_opened_store(context)
        lines.append(f'Wallet "{name}" has been closed')
    Store.delete(tools.stores, config, credentials)
    lines.append(f'Wallet "{name}" has been deleted')
    return success(*lines)


@command(
    CommandMetadata.build("list", "List attached wallets.")
    .add_example("wallet list")
    .finalize(),
    group=GROUP,
)
def list_wallets(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    configs = tools.stores.list_configs()
    if not configs:
        return success("There are no wallets")
    lines = table(("Name", "Type"), [(config.id, config.storage_type) for config in configs])
    opened = context.get_opened_store()
    if opened is not None:
        lines.append(f"Current wallet: {opened.name}")
    return success(*lines)


@command(
    CommandMetadata.build("export", "Export opened wallet to the file")
    .add_required_param("export_path", "Path to the export file")
    .add_required_deferred_param("export_key", "Passphrase used to derive export key")
    .add_optional_param("export_key_derivation_method", "Algorithm to use for export key derivation")
    .add_example("wallet export export_path=/home/export_wallet export_key")
    .finalize(),
    group=GROUP,
)
def export(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    store = context.ensure_opened_store()
    path = Path(params.get_str("export_path")).expanduser()
    try:
        store.export_to(path, params.get_str("export_key"), params.get_opt_str("export_key_derivation_method"))
    except OSError as exc:
        raise StoreError(f"Wallet export failed: {exc}") from exc
    return success(f'Wallet "{store.name}" has been exported to the file "{path}"')


@command(
    CommandMetadata.build("import", "Create new wallet, attach to CLI and import content from the specified file")
    .add_main_param("name", "Identifier of the wallet")
    .add_required_deferred_param("key", "Key or passphrase used for wallet key derivation")
    .add_optional_param("key_derivation_method", "Algorithm to use for wallet key derivation")
    .add_optional_param("storage_type", "Type of the wallet storage")
    .add_optional_param("storage_config", "The JSON object with storage configuration")
    .add_required_param("export_path", "Path to the file that contains exported wallet content")
    .add_required_deferred_param("export_key", "Passphrase used to derive export key")
    .add_example("wallet import wallet1 key export_path=/home/export_wallet export_key")
    .finalize(),
    group=GROUP,
)
def import_wallet(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    name = params.get_str("name")
    if tools.stores.exists(name):
        raise StoreAlreadyExists(f'Wallet "{name}" is already attached to CLI')
    path = Path(params.get_str("export_path")).expanduser()
    Store.import_from(
        tools.stores,
        _store_config(name, params),
        _credentials(params),
        path,
        params.get_str("export_key"),
    )
    logger.debug("Imported wallet %s from %s", name, path)
    return success(f'Wallet "{name}" has been created')


__all__ = [
    "GROUP",
    "attach",
    "close",
    "close_opened_store",
    "create",
    "delete",
    "detach",
    "export",
    "import_wallet",
    "list_wallets",
    "open_wallet",
]
