"""Declarative command and parameter descriptions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


class ParamKind(enum.Enum):
    MAIN = "main"
    REQUIRED = "required"
    OPTIONAL = "optional"
    DEFERRED = "deferred"


class CompletionCategory(enum.Enum):
    """Live data sources the shell can query for tab-completion."""

    IDENTITY = "identity"
    STORE = "store"
    NETWORK = "network"


@dataclass(frozen=True)
class ParamSpec:
    name: str
    kind: ParamKind
    help: str
    completion: Optional[CompletionCategory] = None
    required: bool = True

    @property
    def is_secret(self) -> bool:
        return self.kind is ParamKind.DEFERRED

    @property
    def is_main(self) -> bool:
        return self.kind is ParamKind.MAIN

    def describe(self) -> str:
        if self.is_main:
            return f"<{self.name}>"
        marker = f"{self.name}=<value>"
        if not self.required:
            return f"[{marker}]"
        return marker


@dataclass(frozen=True)
class CommandGroupMetadata:
    name: str
    help: str


@dataclass(frozen=True)
class CommandMetadata:
    name: str
    help: str
    params: Tuple[ParamSpec, ...] = ()
    examples: Tuple[str, ...] = ()

    @staticmethod
    def build(name: str, help: str) -> "CommandMetadataBuilder":
        return CommandMetadataBuilder(name, help)

    @property
    def main_param(self) -> Optional[ParamSpec]:
        for spec in self.params:
            if spec.is_main:
                return spec
        return None

    def param(self, name: str) -> Optional[ParamSpec]:
        for spec in self.params:
            if spec.name == name:
                return spec
        return None

    def param_names(self) -> List[str]:
        return [spec.name for spec in self.params]

    @property
    def deferred_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.params if spec.is_secret)

    def usage(self, prefix: str = "") -> str:
        """Render the help block shown by ``<command> help``."""

        invocation = f"{prefix} {self.name}".strip()
        synopsis = " ".join([invocation, *(spec.describe() for spec in self.params)])
        lines = [self.help, "", "Usage:", f"    {synopsis}"]
        if self.params:
            lines.append("")
            lines.append("Parameters:")
            width = max(len(spec.name) for spec in self.params)
            for spec in self.params:
                flags = [spec.kind.value]
                if spec.kind is ParamKind.DEFERRED and not spec.required:
                    flags = ["optional", "deferred"]
                lines.append(f"    {spec.name.ljust(width)}  ({', '.join(flags)}) {spec.help}")
        if self.examples:
            lines.append("")
            lines.append("Examples:")
            lines.extend(f"    {example}" for example in self.examples)
        return "\n".join(lines)


@dataclass
class CommandMetadataBuilder:
    """Fluent accumulator that finalizes into an immutable ``CommandMetadata``."""

    name: str
    help: str
    _params: List[ParamSpec] = field(default_factory=list)
    _examples: List[str] = field(default_factory=list)

    def _add(self, spec: ParamSpec) -> "CommandMetadataBuilder":
        if any(existing.name == spec.name for existing in self._params):
            raise ValueError(f"Duplicate parameter {spec.name!r} for command {self.name!r}")
        if spec.is_main and any(existing.is_main for existing in self._params):
            raise ValueError(f"Command {self.name!r} already declares a main parameter")
        self._params.append(spec)
        return self

    def add_main_param(self, name: str, help: str) -> "CommandMetadataBuilder":
        return self._add(ParamSpec(name, ParamKind.MAIN, help))

    def add_main_param_with_dynamic_completion(
        self, name: str, help: str, category: CompletionCategory
    ) -> "CommandMetadataBuilder":
        return self._add(ParamSpec(name, ParamKind.MAIN, help, completion=category))

    def add_required_param(self, name: str, help: str) -> "CommandMetadataBuilder":
        return self._add(ParamSpec(name, ParamKind.REQUIRED, help))

    def add_required_param_with_dynamic_completion(
        self, name: str, help: str, category: CompletionCategory
    ) -> "CommandMetadataBuilder":
        return self._add(ParamSpec(name, ParamKind.REQUIRED, help, completion=category))

    def add_optional_param(self, name: str, help: str) -> "CommandMetadataBuilder":
        return self._add(ParamSpec(name, ParamKind.OPTIONAL, help, required=False))

    def add_optional_param_with_dynamic_completion(
        self, name: str, help: str, category: CompletionCategory
    ) -> "CommandMetadataBuilder":
        return self._add(
            ParamSpec(name, ParamKind.OPTIONAL, help, completion=category, required=False)
        )

    def add_required_deferred_param(self, name: str, help: str) -> "CommandMetadataBuilder":
        return self._add(ParamSpec(name, ParamKind.DEFERRED, help))

    def add_optional_deferred_param(self, name: str, help: str) -> "CommandMetadataBuilder":
        return self._add(ParamSpec(name, ParamKind.DEFERRED, help, required=False))

    def add_example(self, example: str) -> "CommandMetadataBuilder":
        self._examples.append(example)
        return self

    def finalize(self) -> CommandMetadata:
        return CommandMetadata(
            name=self.name,
            help=self.help,
            params=tuple(self._params),
            examples=tuple(self._examples),
        )


def completion_targets(metadata: CommandMetadata) -> Dict[str, CompletionCategory]:
    return {spec.name: spec.completion for spec in metadata.params if spec.completion is not None}


__all__ = [
    "CommandGroupMetadata",
    "CommandMetadata",
    "CommandMetadataBuilder",
    "CompletionCategory",
    "ParamKind",
    "ParamSpec",
    "completion_targets",
]
