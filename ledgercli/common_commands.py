"""Ungrouped commands: about, show, prompt, exit, help, init-logger."""

from __future__ import annotations

import json
import logging
import logging.config
from typing import List

from ledgercli.command_context import CommandContext
from ledgercli.command_metadata import CommandMetadata
from ledgercli.command_registry import CommandResult, ROOT_GROUP, command, success
from ledgercli.errors import CommandError
from ledgercli.params_parser import CommandParams
from ledgercli.toolbox import Toolbox

VERSION = "0.1.0"

logger = logging.getLogger("ledgercli.commands")


@command(
    CommandMetadata.build("about", "Show information about the command line tool")
    .add_example("about")
    .finalize()
)
def about(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    return success(
        f"ledgercli {VERSION}: administration shell for distributed ledger pools",
        "Stores identities in local encrypted wallets and submits transactions to configured pools.",
        f"Home directory: {tools.paths.home}",
    )


@command(
    CommandMetadata.build("show", "Print the content of a text file")
    .add_main_param("file", "The path to the file to show")
    .add_example("show /home/file.txt")
    .finalize()
)
def show(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    path = params.get_str("file")
    try:
        with open(path, "r", encoding="utf-8") as handle:
            content = handle.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise CommandError(f"Can't read the file: {exc}") from exc
    return CommandResult(stdout=content if content.endswith("\n") or not content else content + "\n")


@command(
    CommandMetadata.build("prompt", "Change the command prompt")
    .add_main_param("prompt", "The prompt string to set")
    .add_example("prompt ledger-admin")
    .finalize()
)
def prompt(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    value = params.get_str("prompt")
    context.set_main_prompt(value)
    return success(f'Command prompt has been set to "{value}"')


@command(
    CommandMetadata.build("exit", "Exit the command line tool")
    .add_example("exit")
    .finalize()
)
def exit_command(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    context.set_exit()
    return success("Goodbye...")


@command(
    CommandMetadata.build("help", "Show the list of command groups or the usage of a command")
    .add_optional_param("group", "Group whose commands should be listed")
    .add_optional_param("command", "Command of the group whose usage should be shown")
    .add_example("help")
    .add_example("help group=wallet")
    .add_example("help group=wallet command=create")
    .finalize()
)
def help_command(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    registry = tools.registry
    group_name = params.get_opt_str("group")
    command_name = params.get_opt_str("command")
    if group_name is None:
        if command_name is not None:
            resolution = registry.resolve([command_name])
            if resolution is None:
                raise CommandError(f'Command "{command_name}" does not exist')
            return success(resolution.command.metadata.usage())
        return success(*overview(tools))
    group = registry.get_group(group_name)
    if group is None:
        raise CommandError(f'Command group "{group_name}" does not exist')
    if command_name is None:
        return success(*group_listing(tools, group_name))
    resolution = registry.resolve([group_name, command_name])
    if resolution is None:
        raise CommandError(f'Command "{group_name} {command_name}" does not exist')
    return success(resolution.command.metadata.usage(group_name))


def overview(tools: Toolbox) -> List[str]:
    registry = tools.registry
    lines = ["Command groups are:"]
    lines.extend(f"    {group.name:<12} - {group.help}" for group in registry.groups())
    lines.append("")
    lines.append("Top level commands are:")
    lines.extend(f"    {cmd.name:<12} - {cmd.metadata.help}" for cmd in registry.commands(ROOT_GROUP))
    lines.append("")
    lines.append('To get the commands of a group type "<group> help"')
    lines.append('To get usage of a command type "<command> help"')
    return lines


def group_listing(tools: Toolbox, group_name: str) -> List[str]:
    registry = tools.registry
    group = registry.get_group(group_name)
    lines = [f"{group.help}" if group else group_name, "", f'Group "{group_name}" commands:']
    lines.extend(f"    {cmd.name:<22} - {cmd.metadata.help}" for cmd in registry.commands(group_name))
    lines.append("")
    lines.append(f'To get usage of a command type "{group_name} <command> help"')
    return lines


@command(
    CommandMetadata.build("init-logger", "Configure logging from a JSON dictConfig file")
    .add_main_param("file", "The path to the logger config file")
    .add_example("init-logger /home/logger.json")
    .finalize()
)
def init_logger(context: CommandContext, params: CommandParams, tools: Toolbox) -> CommandResult:
    path = params.get_str("file")
    try:
        with open(path, "r", encoding="utf-8") as handle:
            config = json.load(handle)
    except OSError as exc:
        raise CommandError(f"Can't read the logger config file: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise CommandError(f"Logger config file is not valid JSON: {exc.msg}") from exc
    if not isinstance(config, dict):
        raise CommandError("Logger config must be a JSON object")
    config.setdefault("version", 1)
    config.setdefault("disable_existing_loggers", False)
    try:
        logging.config.dictConfig(config)
    except (ValueError, TypeError, AttributeError, ImportError) as exc:
        raise CommandError(f"Can't initialize logger: {exc}") from exc
    logger.debug("Logger initialized from %s", path)
    return success(f'Logger has been initialized according to the config file: "{path}"')


__all__ = [
    "VERSION",
    "about",
    "exit_command",
    "group_listing",
    "help_command",
    "init_logger",
    "overview",
    "prompt",
    "show",
]
