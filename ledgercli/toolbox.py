"""Collaborators handed to every command executor next to the context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from ledgercli.environment import CliConfig, EnvironmentPaths
from ledgercli.pool import PoolDirectory
from ledgercli.store import StoreDirectory

if TYPE_CHECKING:
    from ledgercli.command_registry import CommandRegistry

Confirm = Callable[[str], bool]


@dataclass
class Toolbox:
    config: CliConfig
    stores: StoreDirectory
    pools: PoolDirectory
    registry: "CommandRegistry"
    confirm: Optional[Confirm] = None

    @property
    def paths(self) -> EnvironmentPaths:
        return self.config.paths

    @property
    def interactive(self) -> bool:
        return self.confirm is not None

    @classmethod
    def from_config(
        cls,
        config: CliConfig,
        registry: "CommandRegistry",
        confirm: Optional[Confirm] = None,
    ) -> "Toolbox":
        paths = config.paths
        return cls(
            config=config,
            stores=StoreDirectory(paths),
            pools=PoolDirectory(paths),
            registry=registry,
            confirm=confirm,
        )


__all__ = ["Confirm", "Toolbox"]
