"""Mutable session state shared with every command executor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ledgercli.errors import PreconditionError

DEFAULT_PROMPT = "ledgercli"
DEFAULT_PROTOCOL_VERSION = 2

_NETWORK_SLOT = 1
_STORE_SLOT = 2
_IDENTITY_SLOT = 3


@dataclass(frozen=True)
class AgreementAcceptance:
    """Transaction Author Agreement accepted for the connected network."""

    text: str
    version: str
    mechanism: str
    time_of_acceptance: int

    def as_request_field(self, digest: str) -> Dict[str, Any]:
        return {
            "taaDigest": digest,
            "mechanism": self.mechanism,
            "time": self.time_of_acceptance,
        }


class CommandContext:
    """Session state machine mutated only through its accessors.

    ``active_identity`` is meaningful only while a store is open, so every path
    that drops the store also drops the identity.
    """

    def __init__(self, prompt: str = DEFAULT_PROMPT) -> None:
        self._main_prompt = prompt
        self._sub_prompts: Dict[int, str] = {}
        self._active_identity: Optional[str] = None
        self._opened_store: Optional[Any] = None
        self._connected_network: Optional[Any] = None
        self._pending_transaction: Optional[str] = None
        self._pending_transaction_network: Optional[str] = None
        self._protocol_version = DEFAULT_PROTOCOL_VERSION
        self._exit_requested = False
        self._agreement_acknowledged: Optional[bool] = None
        self._agreement: Optional[AgreementAcceptance] = None

    def __repr__(self) -> str:
        return (
            "CommandContext("
            f"store={getattr(self._opened_store, 'name', None)!r}, "
            f"network={getattr(self._connected_network, 'name', None)!r}, "
            f"identity={self._active_identity!r}, "
            f"exit={self._exit_requested})"
        )

    # -------------------- prompt ------------------------------
    @property
    def prompt(self) -> str:
        segments = [self._main_prompt]
        segments.extend(self._sub_prompts[slot] for slot in sorted(self._sub_prompts))
        return ":".join(segments) + "> "

    @property
    def main_prompt(self) -> str:
        return self._main_prompt

    def set_main_prompt(self, prompt: str) -> None:
        self._main_prompt = prompt

    def _set_sub_prompt(self, slot: int, value: Optional[str]) -> None:
        if value is None:
            self._sub_prompts.pop(slot, None)
        else:
            self._sub_prompts[slot] = value

    # -------------------- identity ----------------------------
    def set_active_identity(self, identity: str) -> None:
        self._active_identity = identity
        self._set_sub_prompt(_IDENTITY_SLOT, f"did({identity[:3]}...{identity[-3:]})")

    def get_active_identity(self) -> Optional[str]:
        if self._opened_store is None:
            return None
        return self._active_identity

    def ensure_active_identity(self) -> str:
        identity = self.get_active_identity()
        if identity is None:
            raise PreconditionError("There is no active identity")
        return identity

    def reset_active_identity(self) -> None:
        self._active_identity = None
        self._set_sub_prompt(_IDENTITY_SLOT, None)

    # -------------------- store -------------------------------
    def set_opened_store(self, store: Any) -> None:
        self._opened_store = store
        self._set_sub_prompt(_STORE_SLOT, str(getattr(store, "name", store)))

    def get_opened_store(self) -> Optional[Any]:
        return self._opened_store

    def ensure_opened_store(self) -> Any:
        if self._opened_store is None:
            raise PreconditionError("There is no opened store now")
        return self._opened_store

    def take_opened_store(self) -> Optional[Any]:
        store = self._opened_store
        self.reset_opened_store()
        return store

    def reset_opened_store(self) -> None:
        self._opened_store = None
        self._set_sub_prompt(_STORE_SLOT, None)
        self.reset_active_identity()

    # -------------------- network -----------------------------
    def set_connected_network(self, network: Any) -> None:
        self._connected_network = network
        self._set_sub_prompt(_NETWORK_SLOT, f"pool({getattr(network, 'name', network)})")

    def get_connected_network(self) -> Optional[Any]:
        return self._connected_network

    def ensure_connected_network(self) -> Any:
        if self._connected_network is None:
            raise PreconditionError("There is no connected network now")
        return self._connected_network

    def reset_connected_network(self) -> None:
        self._connected_network = None
        self._pending_transaction_network = None
        self._agreement = None
        self._agreement_acknowledged = None
        self._set_sub_prompt(_NETWORK_SLOT, None)

    # -------------------- pending transaction -----------------
    def set_pending_transaction(self, request: Optional[str]) -> None:
        self._pending_transaction = request
        network = self._connected_network
        if request is None or network is None:
            self._pending_transaction_network = None
        else:
            self._pending_transaction_network = str(getattr(network, "name", network))

    def get_pending_transaction(self) -> Optional[str]:
        return self._pending_transaction

    def get_pending_transaction_network(self) -> Optional[str]:
        return self._pending_transaction_network

    def ensure_pending_transaction(self) -> str:
        if self._pending_transaction is None:
            raise PreconditionError("There is no transaction stored into context")
        return self._pending_transaction

    # -------------------- protocol / agreement ----------------
    def set_protocol_version(self, version: int) -> None:
        self._protocol_version = version

    def get_protocol_version(self) -> int:
        return self._protocol_version

    def set_agreement(self, agreement: Optional[AgreementAcceptance]) -> None:
        self._agreement = agreement
        self._agreement_acknowledged = agreement is not None

    def decline_agreement(self) -> None:
        self._agreement = None
        self._agreement_acknowledged = False

    def get_agreement(self) -> Optional[AgreementAcceptance]:
        return self._agreement

    @property
    def agreement_acknowledged(self) -> Optional[bool]:
        return self._agreement_acknowledged

    # -------------------- exit --------------------------------
    def set_exit(self) -> None:
        self._exit_requested = True

    @property
    def exit_requested(self) -> bool:
        return self._exit_requested


__all__ = [
    "AgreementAcceptance",
    "CommandContext",
    "DEFAULT_PROMPT",
    "DEFAULT_PROTOCOL_VERSION",
]
