"""Tokenizing, parsing and typed access for command parameters."""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ledgercli.command_metadata import CommandMetadata, ParamKind
from ledgercli.errors import CommandError

SECRET_PLACEHOLDER = "******"

_PARAM_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
_INTEGER_RE = re.compile(r"^-?[0-9]+$")
_RANGE_RE = re.compile(r"^([0-9]+)-([0-9]+)$")
_BASE58 = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_IDENTITY_RE = re.compile(rf"^(did:[a-z0-9]+:)?[{_BASE58}]{{21,44}}$")

_INT_MIN = -(2**63)
_INT_MAX = 2**64 - 1

DeferredPrompt = Callable[[str], str]


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------


class ParamValidationError(CommandError):
    """Malformed, missing or unknown parameter."""


class MissingRequiredParam(ParamValidationError):
    def __init__(self, name: str) -> None:
        super().__init__(f'No required "{name}" parameter present')
        self.name = name


class EmptyParam(ParamValidationError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Parameter "{name}" is empty')
        self.name = name


class UnknownParam(ParamValidationError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Unknown parameter "{name}"')
        self.name = name


class UnexpectedPositionalArgument(ParamValidationError):
    def __init__(self) -> None:
        super().__init__("Unexpected positional argument")


class DeferredInputUnavailable(ParamValidationError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Parameter "{name}" requires interactive input; pass {name}=<value> instead')
        self.name = name


class InvalidBoolean(ParamValidationError):
    def __init__(self, name: str, value: str) -> None:
        super().__init__(f'Can\'t parse bool parameter "{name}": "{value}"')
        self.name = name
        self.value = value


class InvalidNumber(ParamValidationError):
    def __init__(self, name: str, value: str) -> None:
        super().__init__(f'Can\'t parse number parameter "{name}": "{value}"')
        self.name = name
        self.value = value


class InvalidNumberList(ParamValidationError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Parameter "{name}" has invalid format')
        self.name = name


class InvalidObject(ParamValidationError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Can\'t parse object parameter "{name}"')
        self.name = name


class InvalidIdentity(ParamValidationError):
    def __init__(self, name: str, value: str) -> None:
        super().__init__(f'Invalid DID "{value}" provided for "{name}"')
        self.name = name
        self.value = value


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


def tokenize(line: str) -> List[str]:
    """Split *line* on whitespace, keeping quoted text and inline JSON intact."""

    tokens: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    depth = 0
    started = False
    for char in line:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in "\"'":
            quote = char
            current.append(char)
            started = True
        elif char in "{[":
            depth += 1
            current.append(char)
            started = True
        elif char in "}]":
            depth = max(0, depth - 1)
            current.append(char)
            started = True
        elif char.isspace() and depth == 0:
            if started:
                tokens.append(_unquote("".join(current)))
                current = []
                started = False
        else:
            current.append(char)
            started = True
    if started:
        tokens.append(_unquote("".join(current)))
    return tokens


def _unquote(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"'":
        return token[1:-1]
    name, sep, value = token.partition("=")
    if sep and _PARAM_NAME_RE.match(name) and len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return f"{name}={value[1:-1]}"
    return token


def split_params(tokens: Iterable[str]) -> Tuple[List[str], Dict[str, str]]:
    """Separate positional tokens from ``name=value`` pairs."""

    positional: List[str] = []
    named: Dict[str, str] = {}
    for token in tokens:
        name, sep, value = token.partition("=")
        if sep and _PARAM_NAME_RE.match(name):
            named[name] = value
        else:
            positional.append(token)
    return positional, named


# ---------------------------------------------------------------------------
# Parsed parameters
# ---------------------------------------------------------------------------


def redact_params(params: Mapping[str, str], deferred_names: Iterable[str]) -> Dict[str, str]:
    """Return a copy of *params* safe for traces, transcripts and errors."""

    secret = set(deferred_names)
    return {name: (SECRET_PLACEHOLDER if name in secret else value) for name, value in params.items()}


class CommandParams(Mapping[str, str]):
    """Validated parameter values for a single command invocation."""

    def __init__(self, values: Optional[Mapping[str, str]] = None, *, secret: Iterable[str] = ()) -> None:
        self._values: Dict[str, str] = dict(values or {})
        self._secret = frozenset(secret)

    def __getitem__(self, name: str) -> str:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"CommandParams({self.redacted()!r})"

    __str__ = __repr__

    @property
    def secret_names(self) -> frozenset:
        return self._secret

    def redacted(self) -> Dict[str, str]:
        return redact_params(self._values, self._secret)

    def _display(self, name: str, value: str) -> str:
        return SECRET_PLACEHOLDER if name in self._secret else value

    # -------------------- strings -----------------------------
    def get_str(self, name: str) -> str:
        value = self._values.get(name)
        if value is None:
            raise MissingRequiredParam(name)
        if value == "":
            raise EmptyParam(name)
        return value

    def get_opt_str(self, name: str) -> Optional[str]:
        if name not in self._values:
            return None
        return self.get_str(name)

    def get_opt_empty_str(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def get_str_list(self, name: str) -> List[str]:
        value = self.get_str(name)
        return value.split(",")

    def get_opt_str_list(self, name: str) -> Optional[List[str]]:
        value = self._values.get(name)
        if value is None:
            return None
        if value == "":
            return []
        return value.split(",")

    # -------------------- booleans ----------------------------
    def get_bool(self, name: str) -> bool:
        value = self._values.get(name)
        if value is None:
            raise MissingRequiredParam(name)
        lowered = value.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        raise InvalidBoolean(name, self._display(name, value))

    def get_opt_bool(self, name: str) -> Optional[bool]:
        if name not in self._values:
            return None
        return self.get_bool(name)

    # -------------------- numbers -----------------------------
    def _parse_int(self, name: str, value: str) -> int:
        if not _INTEGER_RE.match(value):
            raise InvalidNumber(name, self._display(name, value))
        number = int(value, 10)
        if number < _INT_MIN or number > _INT_MAX:
            raise InvalidNumber(name, self._display(name, value))
        return number

    def get_int(self, name: str) -> int:
        value = self._values.get(name)
        if value is None:
            raise MissingRequiredParam(name)
        return self._parse_int(name, value)

    def get_opt_int(self, name: str) -> Optional[int]:
        if name not in self._values:
            return None
        return self.get_int(name)

    def get_number_list(self, name: str) -> List[int]:
        value = self._values.get(name)
        if value is None:
            raise MissingRequiredParam(name)
        items = [item.strip() for item in value.split(",")] if value.strip() else []
        if not items:
            raise InvalidNumberList(name)
        numbers: List[int] = []
        for item in items:
            bounds = _RANGE_RE.match(item)
            if bounds:
                start, end = int(bounds.group(1)), int(bounds.group(2))
                if start > end:
                    raise InvalidNumber(name, item)
                numbers.extend(range(start, end + 1))
                continue
            numbers.append(self._parse_int(name, item))
        return numbers

    # -------------------- structured values -------------------
    def get_object(self, name: str) -> Any:
        value = self._values.get(name)
        if value is None:
            raise MissingRequiredParam(name)
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise InvalidObject(name) from exc

    def get_opt_object(self, name: str) -> Any:
        if name not in self._values:
            return None
        return self.get_object(name)

    # -------------------- identities --------------------------
    def get_identity(self, name: str) -> str:
        value = self.get_str(name)
        if not is_identity(value):
            raise InvalidIdentity(name, self._display(name, value))
        return value

    def get_opt_identity(self, name: str) -> Optional[str]:
        if name not in self._values:
            return None
        return self.get_identity(name)


def is_identity(value: str) -> bool:
    return bool(_IDENTITY_RE.match(value))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class ParamParser:
    """Match raw tokens against a ``CommandMetadata`` declaration."""

    @staticmethod
    def parse_tokens(
        tokens: Sequence[str],
        metadata: CommandMetadata,
        *,
        prompt: Optional[DeferredPrompt] = None,
    ) -> CommandParams:
        positional, named = split_params(tokens)
        deferred = set(metadata.deferred_names)
        main = metadata.main_param
        main_open = main is not None and main.name not in named
        requested: List[str] = []
        values: List[str] = []
        # A bare deferred name asks for a prompt only once the main slot is filled.
        for token in positional:
            if token in deferred and (values or not main_open):
                requested.append(token)
            else:
                values.append(token)
        if len(values) > 1:
            raise UnexpectedPositionalArgument()
        raw_main = values[0] if values else None
        return ParamParser.parse(raw_main, named, metadata, prompt=prompt, requested=requested)

    @staticmethod
    def parse(
        raw_main: Optional[str],
        raw_named: Mapping[str, str],
        metadata: CommandMetadata,
        *,
        prompt: Optional[DeferredPrompt] = None,
        requested: Sequence[str] = (),
    ) -> CommandParams:
        values: Dict[str, str] = {}
        if raw_main is not None:
            main = metadata.main_param
            if main is None or main.name in raw_named:
                raise UnexpectedPositionalArgument()
            values[main.name] = raw_main

        for name, value in raw_named.items():
            if metadata.param(name) is None:
                raise UnknownParam(name)
            values[name] = value

        for name in requested:
            if name in values:
                continue
            if prompt is None:
                raise DeferredInputUnavailable(name)
            values[name] = prompt(name)

        for spec in metadata.params:
            if spec.name in values or not spec.required:
                continue
            if spec.kind is ParamKind.DEFERRED and prompt is not None:
                values[spec.name] = prompt(spec.name)
                continue
            raise MissingRequiredParam(spec.name)

        return CommandParams(values, secret=metadata.deferred_names)


__all__ = [
    "CommandParams",
    "DeferredInputUnavailable",
    "EmptyParam",
    "InvalidBoolean",
    "InvalidIdentity",
    "InvalidNumber",
    "InvalidNumberList",
    "InvalidObject",
    "MissingRequiredParam",
    "ParamParser",
    "ParamValidationError",
    "SECRET_PLACEHOLDER",
    "UnexpectedPositionalArgument",
    "UnknownParam",
    "is_identity",
    "redact_params",
    "split_params",
    "tokenize",
]
