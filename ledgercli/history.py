"""Bounded shell history that never persists lines carrying secret values."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from ledgercli.params_parser import split_params, tokenize

logger = logging.getLogger("ledgercli.history")

DEFAULT_SECRET_NAMES = ("key", "seed")


def secret_markers(deferred_names: Iterable[str]) -> Tuple[str, ...]:
    names = set(DEFAULT_SECRET_NAMES) | set(deferred_names)
    return tuple(f" {name}=" for name in sorted(names))


class ShellHistory:
    """In-memory history mirrored to a plain-text file, one line per entry.

    A file I/O failure switches the history into degraded mode: the problem is
    logged once and the session continues without persistence.
    """

    def __init__(self, path: Path, size: int, deferred_names: Iterable[str] = ()) -> None:
        self._path = path
        self._size = max(1, size)
        self._names = frozenset(DEFAULT_SECRET_NAMES) | frozenset(deferred_names)
        self._markers = secret_markers(self._names)
        self._entries: List[str] = []
        self._degraded = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def entries(self) -> List[str]:
        return list(self._entries)

    @property
    def degraded(self) -> bool:
        return self._degraded

    def is_secret(self, line: str) -> bool:
        """True when *line* names a secret parameter in any spelling the tokenizer accepts."""

        padded = " " + line
        if any(marker in padded for marker in self._markers):
            return True
        _, named = split_params(tokenize(line))
        return any(name in self._names for name in named)

    def load(self) -> List[str]:
        if self._degraded:
            return []
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            lines = []
        except (OSError, UnicodeDecodeError) as exc:
            self._disable(f"Cannot read history file {self._path}: {exc}")
            lines = []
        self._entries = [line for line in lines if line.strip() and not self.is_secret(line)][-self._size :]
        return self.entries

    def add(self, line: str) -> bool:
        line = line.strip()
        if not line or self.is_secret(line):
            return False
        self._entries.append(line)
        del self._entries[: -self._size]
        return True

    def last(self) -> Optional[str]:
        return self._entries[-1] if self._entries else None

    def save(self) -> None:
        if self._degraded:
            return
        body = "".join(line + "\n" for line in self._entries)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(body, encoding="utf-8")
        except OSError as exc:
            self._disable(f"Cannot write history file {self._path}: {exc}")

    def _disable(self, message: str) -> None:
        logger.warning("%s; history is disabled for this session", message)
        self._degraded = True


__all__ = ["DEFAULT_SECRET_NAMES", "ShellHistory", "secret_markers"]
