#!/usr/bin/env python3
"""Interactive ledger administration shell: session, completion, REPL and entry point."""

from __future__ import annotations

import argparse
import datetime as _dt
import getpass
import json
import logging
import readline
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ledgercli import (
    common_commands,
    did_commands,
    ledger_commands,
    pool_commands,
    wallet_commands,
)
from ledgercli.command_context import CommandContext
from ledgercli.command_metadata import CompletionCategory
from ledgercli.command_registry import CommandRegistry, CommandResult, failure, success
from ledgercli.completion import DynamicCompletionProvider
from ledgercli.environment import CliConfig, ConfigError, load_config
from ledgercli.errors import CommandError
from ledgercli.history import ShellHistory
from ledgercli.params_parser import ParamParser, redact_params, split_params, tokenize
from ledgercli.toolbox import Confirm, Toolbox

COMMAND_MODULES: Tuple[ModuleType, ...] = (
    common_commands,
    did_commands,
    wallet_commands,
    pool_commands,
    ledger_commands,
)

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"

SecretReader = Callable[[str], str]


def now_utc() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def isoformat_utc(dt: _dt.datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def build_registry(modules: Sequence[ModuleType] = COMMAND_MODULES) -> CommandRegistry:
    registry = CommandRegistry()
    for module in modules:
        registry.register_module(module)
    return registry


# ---------------------------------------------------------------------------
# Session transcript
# ---------------------------------------------------------------------------


class TranscriptLogger:
    """Append-only JSONL record of executed commands with redacted params."""

    def __init__(self, root: Path) -> None:
        self._root = root
        timestamp = now_utc().strftime("%Y%m%dT%H%M%SZ")
        self._path = self._root / f"session-{timestamp}.jsonl"
        self._file = None
        self._disabled = False

    @property
    def path(self) -> Path:
        return self._path

    def log(self, payload: Dict[str, Any]) -> None:
        if self._disabled:
            return
        try:
            if self._file is None:
                self._root.mkdir(parents=True, exist_ok=True)
                self._file = self._path.open("a", encoding="utf-8")
            self._file.write(json.dumps(payload, ensure_ascii=False) + "\n")
            self._file.flush()
        except OSError as exc:
            logging.getLogger("ledgercli.shell").warning("Transcript disabled: %s", exc)
            self._disabled = True

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class ShellSession:
    """Owns the context and collaborators; runs one input line at a time."""

    def __init__(
        self,
        config: CliConfig,
        *,
        read_secret: Optional[SecretReader] = None,
        confirm: Optional[Confirm] = None,
    ) -> None:
        self.config = config
        self.logger = logging.getLogger("ledgercli.shell")
        self.context = CommandContext()
        self.registry = build_registry()
        self.tools = Toolbox.from_config(config, self.registry, confirm)
        self.completion = DynamicCompletionProvider(self.tools.stores, self.tools.pools)
        paths = config.paths
        self.history = ShellHistory(paths.history_file, config.history_size, self.registry.deferred_names())
        self.history.load()
        self.transcript = TranscriptLogger(paths.logs_home)
        self._read_secret = read_secret if config.prompt_deferred else None
        self.recorded_line: Optional[str] = None
        self._closed = False

    @property
    def exit_requested(self) -> bool:
        return self.context.exit_requested

    # -------------------- execution ---------------------------
    def execute(self, tokens: Sequence[str]) -> Tuple[CommandResult, bool]:
        """Resolve, parse and run *tokens*; the flag tells whether parsing succeeded."""

        resolution = self.registry.resolve(tokens)
        if resolution is None:
            return self._unresolved(tokens), False

        command = resolution.command
        group_name = resolution.group.name if resolution.group else ""
        rest = list(tokens[resolution.consumed :])
        if rest == ["help"]:
            return success(command.metadata.usage(group_name)), True

        try:
            params = ParamParser.parse_tokens(rest, command.metadata, prompt=self._read_secret)
        except CommandError as exc:
            return failure(exc.diagnostic(), status=exc.status), False

        self.logger.debug("Executing %s with %s", command.qualified_name, params)
        try:
            result = command.execute(self.context, params, self.tools)
        except CommandError as exc:
            result = failure(exc.diagnostic(), status=exc.status)
        except Exception as exc:
            self.logger.debug("Command %s failed", command.qualified_name, exc_info=True)
            result = failure(f"Command failed: {exc}")
        result.audit.setdefault("command", command.qualified_name)
        result.audit.setdefault("params", params.redacted())
        return result, True

    def _unresolved(self, tokens: Sequence[str]) -> CommandResult:
        head = tokens[0]
        group = self.registry.get_group(head)
        if group is not None:
            if len(tokens) == 1 or tokens[1:] == ["help"]:
                return success(*common_commands.group_listing(self.tools, head))
            return CommandResult(status=127, stderr=f"Command not found: {head} {tokens[1]}\n")
        return CommandResult(status=127, stderr=f"Command not found: {head}\n")

    # -------------------- line execution ----------------------
    def run_line(self, line: str) -> CommandResult:
        self.recorded_line = None
        tokens = tokenize(line)
        if not tokens:
            return CommandResult()
        result, accepted = self.execute(tokens)
        if accepted and self.history.add(line):
            self.recorded_line = line.strip()
        self._audit(tokens, result)
        return result

    def _audit(self, tokens: Sequence[str], result: CommandResult) -> None:
        if "params" not in result.audit:
            _, named = split_params(tokens)
            result.audit["params"] = redact_params(named, self.registry.deferred_names())
        payload = {
            "ts": isoformat_utc(now_utc()),
            "command": result.audit.get("command", tokens[0]),
            "status": result.status,
            **result.audit,
            "stderr": result.stderr,
        }
        self.transcript.log(payload)

    # -------------------- shutdown ----------------------------
    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        store = self.context.take_opened_store()
        if store is not None:
            try:
                store.close()
            except (CommandError, OSError) as exc:
                self.logger.error("Failed to close wallet %s: %s", store.name, exc)
        pool = self.context.get_connected_network()
        if pool is not None:
            try:
                pool.disconnect()
            except (CommandError, OSError) as exc:
                self.logger.error("Failed to disconnect pool %s: %s", pool.name, exc)
            self.context.reset_connected_network()
        self.history.save()
        self.transcript.close()


# ---------------------------------------------------------------------------
# Script execution
# ---------------------------------------------------------------------------


def run_script(session: ShellSession, path: Path) -> CommandResult:
    """Run each line of *path*; a ``-`` prefix lets the script go on after a failure."""

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        return CommandResult(status=1, stderr=f"Can't read the script file: {exc}\n")
    combined = CommandResult()
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        ignore_errors = line.startswith("-")
        if ignore_errors:
            line = line[1:].strip()
        piece = session.run_line(line)
        combined.merge(piece)
        if piece.status != 0 and not ignore_errors:
            break
        if ignore_errors:
            combined.status = 0
        if session.exit_requested:
            break
    return combined


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


class Completer:
    def __init__(self, session: ShellSession) -> None:
        self.session = session
        self._matches: List[str] = []

    def complete(self, text: str, state: int) -> Optional[str]:
        if state == 0:
            self._matches = self.candidates(readline.get_line_buffer(), text)
        if state < len(self._matches):
            return self._matches[state]
        return None

    def candidates(self, buffer: str, text: str) -> List[str]:
        tokens = tokenize(buffer)
        if not buffer or buffer.endswith(" "):
            tokens.append("")
        registry = self.session.registry
        if len(tokens) <= 1:
            names = [group.name for group in registry.groups()]
            names.extend(cmd.name for cmd in registry.commands())
            return sorted(name for name in names if name.startswith(text))
        if len(tokens) == 2 and registry.get_group(tokens[0]) is not None:
            return [cmd.name for cmd in registry.commands(tokens[0]) if cmd.name.startswith(text)]

        resolution = registry.resolve(tokens[:-1])
        if resolution is None:
            return []
        metadata = resolution.command.metadata
        current = tokens[-1]
        name, sep, value = current.partition("=")
        if sep:
            spec = metadata.param(name)
            if spec is None or spec.completion is None:
                return []
            return [f"{name}={item}" for item in self._lookup(spec.completion, value)]

        options: List[str] = []
        main = metadata.main_param
        typed = tokens[resolution.consumed : -1]
        if main is not None and main.completion is not None and not typed:
            options.extend(self._lookup(main.completion, current))
        used = {token.partition("=")[0] for token in typed}
        options.extend(
            f"{spec.name}="
            for spec in metadata.params
            if not spec.is_main and spec.name not in used and spec.name.startswith(current)
        )
        return options

    def _lookup(self, category: CompletionCategory, prefix: str) -> List[str]:
        return self.session.completion.complete(category, self.session.context, prefix)


# ---------------------------------------------------------------------------
# REPL loop
# ---------------------------------------------------------------------------


def _read_secret(name: str) -> str:
    return getpass.getpass(f"Enter value for {name}: ")


def _confirm(question: str) -> bool:
    return input(f"{question} ").strip().lower() in ("y", "yes")


class Shell:
    def __init__(self, config: CliConfig) -> None:
        self.session = ShellSession(config, read_secret=_read_secret, confirm=_confirm)
        self.completer = Completer(self.session)
        readline.set_completer(self.completer.complete)
        readline.set_completer_delims(" \t\n")
        readline.parse_and_bind("tab: complete")
        readline.set_auto_history(False)
        readline.clear_history()
        for entry in self.session.history.entries:
            readline.add_history(entry)

    def prompt(self) -> str:
        return self.session.context.prompt

    def run(self) -> None:
        try:
            while not self.session.exit_requested:
                try:
                    line = input(self.prompt())
                except EOFError:
                    print()
                    break
                except KeyboardInterrupt:
                    print()
                    continue
                if not line.strip():
                    continue
                result = self.session.run_line(line)
                if self.session.recorded_line is not None:
                    readline.add_history(self.session.recorded_line)
                if result.stdout:
                    print(result.stdout, end="")
                if result.stderr:
                    print(result.stderr, end="", file=sys.stderr)
        finally:
            self.session.close()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _join_arguments(args: Sequence[str]) -> str:
    return " ".join(f'"{arg}"' if any(ch.isspace() for ch in arg) else arg for arg in args)


def _emit(result: CommandResult) -> None:
    if result.stdout:
        print(result.stdout, end="")
    if result.stderr:
        print(result.stderr, end="", file=sys.stderr)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args_list = list(sys.argv[1:] if argv is None else argv)
    parser = argparse.ArgumentParser(prog="ledgercli", add_help=True)
    parser.add_argument("--home", dest="home", metavar="PATH", help="Directory holding wallets, pools and history")
    parser.add_argument("--config", dest="config", metavar="PATH", help="JSON configuration file")
    parser.add_argument("--log-level", dest="log_level", metavar="LEVEL", help="Logging level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--script", dest="script", metavar="PATH", help="Run commands from a script file")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to execute non-interactively")
    parsed = parser.parse_args(args_list)

    try:
        config = load_config(
            home=Path(parsed.home) if parsed.home else None,
            config_file=Path(parsed.config) if parsed.config else None,
        )
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    level = (parsed.log_level or config.log_level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.WARNING), format=LOG_FORMAT)

    if parsed.script:
        session = ShellSession(config)
        try:
            result = run_script(session, Path(parsed.script))
        finally:
            session.close()
        _emit(result)
        return result.status

    if parsed.command:
        session = ShellSession(config)
        try:
            result = session.run_line(_join_arguments(parsed.command))
        finally:
            session.close()
        _emit(result)
        return result.status

    Shell(config).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
