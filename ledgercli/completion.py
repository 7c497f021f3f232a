"""Live tab-completion candidates drawn from the store and network collaborators."""

from __future__ import annotations

import logging
from typing import List

from ledgercli.command_context import CommandContext
from ledgercli.command_metadata import CompletionCategory
from ledgercli.errors import CommandError
from ledgercli.pool import PoolDirectory
from ledgercli.store import StoreDirectory

logger = logging.getLogger("ledgercli.completion")


class DynamicCompletionProvider:
    """Dispatch a completion category to the matching collaborator lookup.

    Lookups never raise: any failure is logged at debug level and yields no
    candidates so that typing is never interrupted.
    """

    def __init__(self, stores: StoreDirectory, pools: PoolDirectory) -> None:
        self._stores = stores
        self._pools = pools

    def complete(self, category: CompletionCategory, context: CommandContext, prefix: str) -> List[str]:
        try:
            if category is CompletionCategory.IDENTITY:
                candidates = self._identities(context)
            elif category is CompletionCategory.STORE:
                candidates = self._stores.names()
            elif category is CompletionCategory.NETWORK:
                candidates = self._pools.names()
            else:
                candidates = []
        except (CommandError, OSError) as exc:
            logger.debug("Completion lookup for %s failed: %s", category.value, exc)
            return []
        return [candidate for candidate in candidates if candidate.startswith(prefix)]

    @staticmethod
    def _identities(context: CommandContext) -> List[str]:
        store = context.get_opened_store()
        if store is None:
            return []
        return store.identity_names()


__all__ = ["DynamicCompletionProvider"]
