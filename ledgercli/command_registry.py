"""Command definitions, grouping and resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import ModuleType
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from ledgercli.command_context import CommandContext
from ledgercli.command_metadata import CommandGroupMetadata, CommandMetadata
from ledgercli.params_parser import CommandParams

if TYPE_CHECKING:
    from ledgercli.toolbox import Toolbox

ROOT_GROUP = ""


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""
    status: int = 0
    audit: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == 0

    def merge(self, other: "CommandResult") -> None:
        self.stdout += other.stdout
        self.stderr += other.stderr
        self.status = other.status
        self.audit.update(other.audit)


def success(*lines: str, audit: Optional[Dict[str, Any]] = None) -> CommandResult:
    body = "".join(line + "\n" for line in lines)
    return CommandResult(stdout=body, audit=dict(audit or {}))


def failure(message: str, *, status: int = 1, stdout: str = "") -> CommandResult:
    return CommandResult(stdout=stdout, stderr=message + "\n", status=status)


def table(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[str]:
    """Render *rows* as a bordered plain-text table."""

    cells = [["" if value is None else str(value) for value in row] for row in rows]
    widths = [len(header) for header in headers]
    for row in cells:
        for index, value in enumerate(row):
            widths[index] = max(widths[index], len(value))
    border = "+" + "+".join("-" * (width + 2) for width in widths) + "+"

    def line(values: Sequence[str]) -> str:
        return "|" + "|".join(f" {value.ljust(width)} " for value, width in zip(values, widths)) + "|"

    return [border, line(list(headers)), border, *(line(row) for row in cells), border]


Handler = Callable[[CommandContext, CommandParams, "Toolbox"], CommandResult]


@dataclass(frozen=True)
class Command:
    metadata: CommandMetadata
    handler: Handler
    group: str = ROOT_GROUP

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def qualified_name(self) -> str:
        return f"{self.group} {self.name}".strip()

    def execute(self, context: CommandContext, params: CommandParams, tools: "Toolbox") -> CommandResult:
        return self.handler(context, params, tools)


@dataclass(frozen=True)
class Resolution:
    group: Optional[CommandGroupMetadata]
    command: Command
    consumed: int


def command(metadata: CommandMetadata, *, group: Optional[CommandGroupMetadata] = None) -> Callable[[Handler], Handler]:
    """Attach a ``Command`` definition to an executor function."""

    def decorator(func: Handler) -> Handler:
        func.__command_definition__ = Command(
            metadata=metadata,
            handler=func,
            group=group.name if group else ROOT_GROUP,
        )
        return func

    return decorator


class CommandRegistry:
    """Two-level mapping: group name -> command name -> command."""

    def __init__(self) -> None:
        self._groups: Dict[str, CommandGroupMetadata] = {}
        self._commands: Dict[str, Dict[str, Command]] = {ROOT_GROUP: {}}

    def register_group(self, group: CommandGroupMetadata) -> None:
        if group.name in self._groups:
            raise ValueError(f"Command group {group.name!r} is already registered")
        if group.name in self._commands[ROOT_GROUP]:
            raise ValueError(f"Command group {group.name!r} clashes with a top-level command")
        self._groups[group.name] = group
        self._commands[group.name] = {}

    def register(self, command: Command) -> None:
        if command.group != ROOT_GROUP and command.group not in self._groups:
            raise ValueError(f"Unknown command group {command.group!r}")
        if command.group == ROOT_GROUP and command.name in self._groups:
            raise ValueError(f"Command {command.name!r} clashes with a command group")
        commands = self._commands[command.group]
        if command.name in commands:
            raise ValueError(f"Command {command.qualified_name!r} is already registered")
        commands[command.name] = command

    def register_module(self, module: ModuleType) -> None:
        """Register the module's ``GROUP`` (if any) and its decorated executors."""

        group = getattr(module, "GROUP", None)
        if isinstance(group, CommandGroupMetadata):
            self.register_group(group)
        for obj in vars(module).values():
            if callable(obj) and hasattr(obj, "__command_definition__"):
                self.register(obj.__command_definition__)

    def resolve(self, tokens: Sequence[str]) -> Optional[Resolution]:
        if not tokens:
            return None
        head = tokens[0]
        group = self._groups.get(head)
        if group is not None:
            if len(tokens) < 2:
                return None
            command = self._commands[group.name].get(tokens[1])
            if command is None:
                return None
            return Resolution(group=group, command=command, consumed=2)
        command = self._commands[ROOT_GROUP].get(head)
        if command is None:
            return None
        return Resolution(group=None, command=command, consumed=1)

    def get_group(self, name: str) -> Optional[CommandGroupMetadata]:
        return self._groups.get(name)

    def groups(self) -> List[CommandGroupMetadata]:
        return [self._groups[name] for name in sorted(self._groups)]

    def commands(self, group: str = ROOT_GROUP) -> List[Command]:
        commands = self._commands.get(group, {})
        return [commands[name] for name in sorted(commands)]

    def all_commands(self) -> List[Command]:
        result: List[Command] = []
        for group in (ROOT_GROUP, *sorted(self._groups)):
            result.extend(self.commands(group))
        return result

    def deferred_names(self) -> List[str]:
        names = {name for cmd in self.all_commands() for name in cmd.metadata.deferred_names}
        return sorted(names)


__all__ = [
    "Command",
    "CommandRegistry",
    "CommandResult",
    "Handler",
    "ROOT_GROUP",
    "Resolution",
    "command",
    "failure",
    "success",
    "table",
]
