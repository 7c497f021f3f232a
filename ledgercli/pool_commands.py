"""Pool (network) management commands."""

from __future__ import annotations

import time
from pathlib import Path
from typing import List, Optional

from ledgercli.command_context import AgreementAcceptance, CommandContext
from ledgercli.command_metadata import CommandGroupMetadata, CommandMetadata, CompletionCategory
from ledgercli.command_registry import CommandResult, command, success, table
from ledgercli.errors import CommandError
from ledgercli.params_parser import CommandParams
from ledgercli.pool import SUPPORTED_PROTOCOL_VERSIONS, Pool, PoolConfig, PoolError
from ledgercli.toolbox import Toolbox

GROUP = CommandGroupMetadata("pool", "Pool management commands")

SECONDS_PER_DAY = 86400


def disconnect_network(context: CommandContext) -> Optional[str]:
    """Disconnect and drop the connected pool from the context; return its name."""

    pool = context.get_connected_network()
    if pool is None:
        return None
    pool.disconnect()
    context.reset_connected_network()
    return pool.name


def _check_protocol_version(version: int) -> int:
    if version not in SUPPORTED_PROTOCOL_VERSIONS:
        raise PoolError(f'Unsupported Pool protocol version "{version}". Use one of: 1, 2')
    return version


@command(
    CommandMetadata.build("create", "Create new pool ledger config with specified name")
    .add_main_param("name", "The name of new pool ledger config")
    .add_required_param("gen_txn_file", "Path to file with genesis transactions for new pool ledger config")
    .add_example("pool create sandbox gen_txn_file=docker_pool_transactions_genesis")
    .finalize(),
    group=GROUP,
)
def create(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    name = params.get_str("name")
    genesis = Path(params.get_str("gen_txn_file")).expanduser()
    tools.pools.create(name, genesis)
    return success(f'Pool config "{name}" has been created')


@command(
    CommandMetadata.build("connect", "Connect to pool with specified name. Also disconnect from previously connected.")
    .add_main_param_with_dynamic_completion("name", "The name of pool", CompletionCategory.NETWORK)
    .add_optional_param("protocol-version", "Pool protocol version will be used for requests. One of: 1, 2.")
    .add_optional_param("timeout", "Timeout for network request (in sec)")
    .add_optional_param("extended-timeout", "Extended timeout for network request (in sec)")
    .add_optional_param("pre-ordered-nodes", "Names of nodes which will have a priority during request sending")
    .add_optional_param("number-read-nodes", "The number of nodes to send read requests (2 by default)")
    .add_example("pool connect pool1")
    .add_example("pool connect pool1 protocol-version=2")
    .add_example("pool connect pool1 protocol-version=2 timeout=100 extended-timeout=200")
    .add_example("pool connect pool1 protocol-version=2 pre-ordered-nodes=Node2,Node1")
    .finalize(),
    group=GROUP,
)
def connect(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    name = params.get_str("name")
    version = params.get_opt_int("protocol-version")
    config = PoolConfig(protocol_version=_check_protocol_version(context.get_protocol_version() if version is None else version))
    timeout = params.get_opt_int("timeout")
    if timeout is not None:
        config.ack_timeout = timeout
    extended = params.get_opt_int("extended-timeout")
    if extended is not None:
        config.reply_timeout = extended
    read_nodes = params.get_opt_int("number-read-nodes")
    if read_nodes is not None:
        config.request_read_nodes = read_nodes
    config.preordered_nodes = params.get_opt_str_list("pre-ordered-nodes") or []

    lines: List[str] = []
    previous = disconnect_network(context)
    if previous is not None:
        lines.append(f'Pool "{previous}" has been disconnected')
    pool = Pool.connect(tools.pools, name, config)
    context.set_connected_network(pool)
    context.set_protocol_version(config.protocol_version)
    lines.append(f'Pool "{name}" has been connected')
    if pool.get_agreement() is not None:
        lines.append('There is a Transaction Author Agreement set on the connected Pool. Use "pool show-taa" to review it')
    return success(*lines, audit={"pool": name})


@command(
    CommandMetadata.build("refresh", "Refresh a local copy of a pool ledger and update pool nodes connections.")
    .add_example("pool refresh")
    .finalize(),
    group=GROUP,
)
def refresh(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    pool = context.ensure_connected_network()
    refreshed = pool.refresh()
    if refreshed is not None:
        context.set_connected_network(refreshed)
    return success(f'Pool "{pool.name}" has been refreshed')


@command(
    CommandMetadata.build("list", "List existing pool configs.")
    .add_example("pool list")
    .finalize(),
    group=GROUP,
)
def list_pools(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    names = tools.pools.names()
    if not names:
        return success("There are no pools defined")
    lines = table(("Pool",), [(name,) for name in names])
    pool = context.get_connected_network()
    if pool is not None:
        lines.append(f"Current pool: {pool.name}")
    return success(*lines)


@command(
    CommandMetadata.build("disconnect", "Disconnect from current pool.")
    .add_example("pool disconnect")
    .finalize(),
    group=GROUP,
)
def disconnect(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    context.ensure_connected_network()
    name = disconnect_network(context)
    return success(f'Pool "{name}" has been disconnected')


@command(
    CommandMetadata.build("delete", "Delete pool config with specified name")
    .add_main_param_with_dynamic_completion("name", "The name of deleted pool config", CompletionCategory.NETWORK)
    .add_example("pool delete pool1")
    .finalize(),
    group=GROUP,
)
def delete(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    name = params.get_str("name")
    lines: List[str] = []
    pool = context.get_connected_network()
    if pool is not None and pool.name == name:
        disconnect_network(context)
        lines.append(f'Pool "{name}" has been disconnected')
    tools.pools.delete(name)
    lines.append(f'Pool "{name}" has been deleted.')
    return success(*lines)


@command(
    CommandMetadata.build("set-protocol-version", "Set protocol version that will be used for ledger requests.")
    .add_main_param("protocol-version", "Protocol version to use. One of: 1, 2")
    .add_example("pool set-protocol-version 2")
    .finalize(),
    group=GROUP,
)
def set_protocol_version(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    version = _check_protocol_version(params.get_int("protocol-version"))
    context.set_protocol_version(version)
    return success(f'Protocol Version has been set to "{version}".')


@command(
    CommandMetadata.build("show-taa", "Show transaction author agreement set on Ledger.")
    .add_optional_param("accept", "Accept (true) or decline (false) the agreement without asking")
    .add_example("pool show-taa")
    .add_example("pool show-taa accept=true")
    .finalize(),
    group=GROUP,
)
def show_taa(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    pool = context.ensure_connected_network()
    agreement = pool.get_agreement()
    if agreement is None:
        return success("There is no transaction agreement set on the Pool.")
    lines = [
        "Transaction Author Agreement:",
        f"Version: {agreement['version']}",
        f"Text: {agreement['text']}",
    ]
    accept = params.get_opt_bool("accept")
    if accept is None:
        if tools.confirm is None:
            raise CommandError("Pass accept=true or accept=false to answer the agreement non-interactively")
        accept = tools.confirm("Would you like to accept it? (y/n)")
    if not accept:
        context.decline_agreement()
        lines.append("Transaction Author Agreement has been declined.")
        return success(*lines)
    now = int(time.time())
    context.set_agreement(
        AgreementAcceptance(
            text=agreement["text"],
            version=agreement["version"],
            mechanism=tools.config.taa_acceptance_mechanism,
            time_of_acceptance=now - now % SECONDS_PER_DAY,
        )
    )
    lines.append("Transaction Author Agreement has been accepted.")
    return success(*lines)


__all__ = [
    "GROUP",
    "connect",
    "create",
    "delete",
    "disconnect",
    "disconnect_network",
    "list_pools",
    "refresh",
    "set_protocol_version",
    "show_taa",
]
