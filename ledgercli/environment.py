"""Home-directory layout and runtime configuration."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

DEFAULT_HISTORY_SIZE = 100
DEFAULT_TAA_MECHANISM = "for_session"
DEFAULT_LOG_LEVEL = "WARNING"

logger = logging.getLogger("ledgercli.environment")


@dataclass(frozen=True)
class EnvironmentPaths:
    """Locations anchored at the CLI home; nothing here creates directories."""

    home: Path

    @property
    def stores_home(self) -> Path:
        return self.home / "wallets"

    def store_path(self, name: str) -> Path:
        return self.stores_home / name

    @property
    def pools_home(self) -> Path:
        return self.home / "pools"

    def pool_path(self, name: str) -> Path:
        return self.pools_home / name

    @property
    def history_file(self) -> Path:
        return self.home / "history"

    @property
    def logs_home(self) -> Path:
        return self.home / "logs"


@dataclass(frozen=True)
class CliConfig:
    home: Path
    history_size: int = DEFAULT_HISTORY_SIZE
    taa_acceptance_mechanism: str = DEFAULT_TAA_MECHANISM
    prompt_deferred: bool = True
    log_level: str = DEFAULT_LOG_LEVEL
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def paths(self) -> EnvironmentPaths:
        return EnvironmentPaths(self.home)


class ConfigError(ValueError):
    """Raised when the JSON configuration file cannot be used."""


def default_home(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    configured = env.get("LEDGERCLI_HOME")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".ledgercli"


def _positive_int(raw: Optional[str], default: int) -> int:
    if not raw:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid integer setting %r", raw)
        return default
    return parsed if parsed > 0 else default


def load_config(
    *,
    home: Optional[Path] = None,
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> CliConfig:
    """Build the configuration from defaults, environment, JSON file and flags."""

    env = os.environ if environ is None else environ
    config = CliConfig(
        home=default_home(env),
        history_size=_positive_int(env.get("LEDGERCLI_HISTORY_SIZE"), DEFAULT_HISTORY_SIZE),
        log_level=env.get("LEDGERCLI_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
    )

    if config_file is not None:
        try:
            payload = json.loads(config_file.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigError(f"Config file {config_file} does not exist") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file {config_file} is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigError(f"Config file {config_file} must contain a JSON object")
        config = _apply_file_settings(config, payload)

    if home is not None:
        config = replace(config, home=home.expanduser())
    return config


def _apply_file_settings(config: CliConfig, payload: Dict[str, Any]) -> CliConfig:
    known = {"taaAcceptanceMechanism", "historySize", "promptDeferred", "logLevel", "home"}
    updates: Dict[str, Any] = {}
    if "taaAcceptanceMechanism" in payload:
        updates["taa_acceptance_mechanism"] = str(payload["taaAcceptanceMechanism"])
    if "historySize" in payload:
        updates["history_size"] = _positive_int(str(payload["historySize"]), config.history_size)
    if "promptDeferred" in payload:
        updates["prompt_deferred"] = bool(payload["promptDeferred"])
    if "logLevel" in payload:
        updates["log_level"] = str(payload["logLevel"]).upper()
    if "home" in payload:
        updates["home"] = Path(str(payload["home"])).expanduser()
    updates["extra"] = {key: value for key, value in payload.items() if key not in known}
    return replace(config, **updates)


__all__ = [
    "CliConfig",
    "ConfigError",
    "DEFAULT_HISTORY_SIZE",
    "DEFAULT_TAA_MECHANISM",
    "EnvironmentPaths",
    "default_home",
    "load_config",
]
