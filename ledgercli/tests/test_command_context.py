from dataclasses import dataclass

import pytest

from ledgercli.command_context import AgreementAcceptance, CommandContext
from ledgercli.errors import PreconditionError


@dataclass
class _Handle:
    name: str


def test_connected_network_precondition() -> None:
    context = CommandContext()
    with pytest.raises(PreconditionError) as excinfo:
        context.ensure_connected_network()
    assert str(excinfo.value) == "There is no connected network now"
    handle = _Handle("sandbox")
    context.set_connected_network(handle)
    assert context.ensure_connected_network() is handle


def test_reset_opened_store_clears_identity() -> None:
    context = CommandContext()
    context.set_opened_store(_Handle("w1"))
    context.set_active_identity("V4SGRU86Z58d6TV7PBUe6f")
    assert context.ensure_active_identity() == "V4SGRU86Z58d6TV7PBUe6f"

    context.reset_opened_store()
    assert context.get_opened_store() is None
    with pytest.raises(PreconditionError):
        context.ensure_active_identity()
    with pytest.raises(PreconditionError):
        context.ensure_opened_store()


def test_take_opened_store_transfers_handle() -> None:
    context = CommandContext()
    handle = _Handle("w1")
    context.set_opened_store(handle)
    context.set_active_identity("V4SGRU86Z58d6TV7PBUe6f")
    assert context.take_opened_store() is handle
    assert context.get_opened_store() is None
    assert context.get_active_identity() is None
    assert context.take_opened_store() is None


def test_identity_hidden_without_store() -> None:
    context = CommandContext()
    context.set_active_identity("V4SGRU86Z58d6TV7PBUe6f")
    assert context.get_active_identity() is None


def test_prompt_tracks_sub_prompts() -> None:
    context = CommandContext("main")
    assert context.prompt == "main> "
    context.set_opened_store(_Handle("w1"))
    context.set_connected_network(_Handle("sandbox"))
    context.set_active_identity("V4SGRU86Z58d6TV7PBUe6f")
    assert context.prompt == "main:pool(sandbox):w1:did(V4S...e6f)> "
    context.set_main_prompt("admin")
    context.reset_connected_network()
    assert context.prompt == "admin:w1:did(V4S...e6f)> "
    context.reset_opened_store()
    assert context.prompt == "admin> "


def test_reset_network_keeps_pending_text_but_clears_association() -> None:
    context = CommandContext()
    context.set_connected_network(_Handle("sandbox"))
    context.set_pending_transaction('{"reqId": 1}')
    assert context.get_pending_transaction_network() == "sandbox"
    context.set_agreement(AgreementAcceptance("text", "1.0", "for_session", 0))
    assert context.agreement_acknowledged is True

    context.reset_connected_network()
    assert context.ensure_pending_transaction() == '{"reqId": 1}'
    assert context.get_pending_transaction_network() is None
    assert context.get_agreement() is None
    assert context.agreement_acknowledged is None


def test_pending_transaction_precondition() -> None:
    context = CommandContext()
    with pytest.raises(PreconditionError):
        context.ensure_pending_transaction()


def test_agreement_decline_and_protocol_version() -> None:
    context = CommandContext()
    assert context.get_protocol_version() == 2
    context.set_protocol_version(1)
    assert context.get_protocol_version() == 1
    context.decline_agreement()
    assert context.agreement_acknowledged is False
    acceptance = AgreementAcceptance("text", "1.0", "for_session", 86400)
    assert acceptance.as_request_field("abc") == {"taaDigest": "abc", "mechanism": "for_session", "time": 86400}


def test_exit_flag() -> None:
    context = CommandContext()
    assert context.exit_requested is False
    context.set_exit()
    assert context.exit_requested is True
