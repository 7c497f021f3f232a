from typing import List

import pytest

from ledgercli.command_metadata import CommandMetadata
from ledgercli.params_parser import (
    SECRET_PLACEHOLDER,
    CommandParams,
    DeferredInputUnavailable,
    EmptyParam,
    InvalidBoolean,
    InvalidIdentity,
    InvalidNumber,
    InvalidNumberList,
    InvalidObject,
    MissingRequiredParam,
    ParamParser,
    UnexpectedPositionalArgument,
    UnknownParam,
    is_identity,
    redact_params,
    split_params,
    tokenize,
)


def _login_metadata() -> CommandMetadata:
    return (
        CommandMetadata.build("login", "Login")
        .add_required_param("name", "User name")
        .add_required_deferred_param("key", "Secret key")
        .finalize()
    )


def _create_metadata() -> CommandMetadata:
    return (
        CommandMetadata.build("create", "Create wallet")
        .add_main_param("name", "Wallet")
        .add_required_deferred_param("key", "Key")
        .add_optional_param("storage_config", "Storage config")
        .finalize()
    )


def test_tokenize_keeps_quotes_and_inline_json() -> None:
    line = 'ledger custom {"operation": {"type": "1"}} text="hello world" \'quoted arg\''
    assert tokenize(line) == [
        "ledger",
        "custom",
        '{"operation": {"type": "1"}}',
        "text=hello world",
        "quoted arg",
    ]
    assert tokenize("   ") == []


def test_split_params_separates_named_from_positional() -> None:
    positional, named = split_params(["w1", "key=abc", "storage_config={\"a\":1}", "=odd"])
    assert positional == ["w1", "=odd"]
    assert named == {"key": "abc", "storage_config": '{"a":1}'}


def test_secret_param_is_redacted_in_repr() -> None:
    params = ParamParser.parse_tokens(["name=alice", "key=s3cr3t"], _login_metadata())
    assert params.get_str("name") == "alice"
    assert params.get_str("key") == "s3cr3t"
    rendered = repr(params)
    assert "alice" in rendered
    assert "s3cr3t" not in rendered
    assert SECRET_PLACEHOLDER in rendered
    assert params.redacted() == {"name": "alice", "key": SECRET_PLACEHOLDER}


def test_missing_required_param() -> None:
    with pytest.raises(MissingRequiredParam) as excinfo:
        ParamParser.parse_tokens(["key=abc"], _login_metadata())
    assert str(excinfo.value) == 'No required "name" parameter present'


def test_missing_main_param() -> None:
    with pytest.raises(MissingRequiredParam) as excinfo:
        ParamParser.parse_tokens(["key=abc"], _create_metadata())
    assert excinfo.value.name == "name"


def test_unknown_param() -> None:
    with pytest.raises(UnknownParam) as excinfo:
        ParamParser.parse_tokens(["name=a", "key=b", "color=red"], _login_metadata())
    assert str(excinfo.value) == 'Unknown parameter "color"'


def test_positional_rejected_without_main_param_or_twice() -> None:
    with pytest.raises(UnexpectedPositionalArgument):
        ParamParser.parse_tokens(["stray", "name=a", "key=b"], _login_metadata())
    with pytest.raises(UnexpectedPositionalArgument):
        ParamParser.parse_tokens(["w1", "w2", "key=b"], _create_metadata())
    with pytest.raises(UnexpectedPositionalArgument):
        ParamParser.parse_tokens(["w1", "name=w2", "key=b"], _create_metadata())


def test_bare_deferred_name_prompts_for_value() -> None:
    asked: List[str] = []

    def prompt(name: str) -> str:
        asked.append(name)
        return "typed-secret"

    params = ParamParser.parse_tokens(["w1", "key"], _create_metadata(), prompt=prompt)
    assert asked == ["key"]
    assert params["name"] == "w1"
    assert params["key"] == "typed-secret"


def test_missing_deferred_param_prompts_only_when_available() -> None:
    params = ParamParser.parse_tokens(["w1"], _create_metadata(), prompt=lambda name: "from-prompt")
    assert params["key"] == "from-prompt"
    with pytest.raises(MissingRequiredParam):
        ParamParser.parse_tokens(["w1"], _create_metadata())
    with pytest.raises(DeferredInputUnavailable):
        ParamParser.parse_tokens(["w1", "key"], _create_metadata())


def test_main_value_may_equal_a_deferred_name() -> None:
    asked: List[str] = []
    params = ParamParser.parse_tokens(["key", "key=pw"], _create_metadata(), prompt=asked.append)
    assert params["name"] == "key"
    assert params["key"] == "pw"
    assert asked == []

    prompted = ParamParser.parse_tokens(["key", "key"], _create_metadata(), prompt=lambda name: "typed")
    assert prompted["name"] == "key"
    assert prompted["key"] == "typed"

    login = ParamParser.parse_tokens(["key", "name=alice"], _login_metadata(), prompt=lambda name: "typed")
    assert login["key"] == "typed"


def test_string_accessors() -> None:
    params = CommandParams({"a": "x", "empty": "", "list": "n1,n2"})
    assert params.get_str("a") == "x"
    assert params.get_opt_str("missing") is None
    assert params.get_opt_empty_str("empty") == ""
    with pytest.raises(EmptyParam):
        params.get_opt_str("empty")
    with pytest.raises(MissingRequiredParam):
        params.get_str("missing")
    assert params.get_str_list("list") == ["n1", "n2"]
    assert params.get_opt_str_list("empty") == []
    assert params.get_opt_str_list("missing") is None


def test_bool_accessors() -> None:
    params = CommandParams({"t": "TRUE", "f": "false", "bad": "yes"})
    assert params.get_bool("t") is True
    assert params.get_opt_bool("f") is False
    assert params.get_opt_bool("missing") is None
    with pytest.raises(InvalidBoolean) as excinfo:
        params.get_bool("bad")
    assert str(excinfo.value) == 'Can\'t parse bool parameter "bad": "yes"'


def test_number_accessors() -> None:
    params = CommandParams({"n": "42", "neg": "-7", "bad": "4x", "big": str(2**70)})
    assert params.get_int("n") == 42
    assert params.get_opt_int("neg") == -7
    with pytest.raises(InvalidNumber):
        params.get_int("bad")
    with pytest.raises(InvalidNumber):
        params.get_int("big")


def test_secret_value_never_echoed_in_errors() -> None:
    params = CommandParams({"key": "notabool"}, secret=["key"])
    with pytest.raises(InvalidBoolean) as excinfo:
        params.get_bool("key")
    assert "notabool" not in str(excinfo.value)


def test_number_list_accepts_ranges() -> None:
    params = CommandParams({"ids": "1, 3-5,7", "empty": " ", "bad": "1,x"})
    assert params.get_number_list("ids") == [1, 3, 4, 5, 7]
    with pytest.raises(InvalidNumberList):
        params.get_number_list("empty")
    with pytest.raises(InvalidNumber):
        params.get_number_list("bad")


def test_object_accessors() -> None:
    params = CommandParams({"obj": '{"a": [1, 2]}', "bad": "{nope"})
    assert params.get_object("obj") == {"a": [1, 2]}
    assert params.get_opt_object("missing") is None
    with pytest.raises(InvalidObject):
        params.get_object("bad")


def test_identity_accessors() -> None:
    assert is_identity("VsKV7grR1BUE29mG2Fm2kX")
    assert is_identity("did:sov:VsKV7grR1BUE29mG2Fm2kX")
    assert not is_identity("short")
    assert not is_identity("VsKV7grR1BUE29mG2Fm2k0")
    params = CommandParams({"did": "V4SGRU86Z58d6TV7PBUe6f", "bad": "not-a-did"})
    assert params.get_identity("did") == "V4SGRU86Z58d6TV7PBUe6f"
    with pytest.raises(InvalidIdentity):
        params.get_identity("bad")


def test_redact_params_helper() -> None:
    assert redact_params({"seed": "abc", "did": "x"}, ["seed"]) == {"seed": SECRET_PLACEHOLDER, "did": "x"}
