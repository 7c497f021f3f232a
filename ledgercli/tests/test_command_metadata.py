import pytest

from ledgercli.command_metadata import (
    CommandMetadata,
    CompletionCategory,
    ParamKind,
    completion_targets,
)
from ledgercli.params_parser import ParamParser


def _open_metadata() -> CommandMetadata:
    return (
        CommandMetadata.build("open", "Open wallet")
        .add_main_param_with_dynamic_completion("name", "Wallet name", CompletionCategory.STORE)
        .add_required_deferred_param("key", "Wallet key")
        .add_optional_param("storage_type", "Storage type")
        .add_optional_deferred_param("rekey", "New key")
        .add_example("wallet open w1 key")
        .finalize()
    )


def test_builder_produces_immutable_ordered_params() -> None:
    metadata = _open_metadata()
    assert metadata.param_names() == ["name", "key", "storage_type", "rekey"]
    assert metadata.main_param is not None and metadata.main_param.name == "name"
    assert metadata.deferred_names == ("key", "rekey")
    assert metadata.param("rekey").kind is ParamKind.DEFERRED
    assert metadata.param("rekey").required is False
    assert metadata.param("missing") is None
    with pytest.raises(AttributeError):
        metadata.name = "other"  # type: ignore[misc]


def test_builder_rejects_duplicate_and_second_main_param() -> None:
    builder = CommandMetadata.build("create", "Create").add_main_param("name", "Name")
    with pytest.raises(ValueError):
        builder.add_optional_param("name", "Again")
    with pytest.raises(ValueError):
        builder.add_main_param("other", "Second main")


def test_main_param_positional_and_optional_params_named() -> None:
    metadata = (
        CommandMetadata.build("connect", "Connect")
        .add_optional_param("timeout", "Timeout")
        .add_main_param("name", "Pool")
        .add_optional_param("protocol-version", "Version")
        .finalize()
    )
    params = ParamParser.parse_tokens(["sandbox", "timeout=10"], metadata)
    assert params["name"] == "sandbox"
    assert params.get_opt_int("timeout") == 10
    assert params.get_opt_int("protocol-version") is None

    positional_only = ParamParser.parse_tokens(["sandbox"], metadata)
    assert dict(positional_only) == {"name": "sandbox"}


def test_usage_lists_params_and_examples() -> None:
    text = _open_metadata().usage("wallet")
    assert text.splitlines()[0] == "Open wallet"
    assert "wallet open <name> key=<value> [storage_type=<value>] [rekey=<value>]" in text
    assert "(deferred) Wallet key" in text
    assert "(optional, deferred) New key" in text
    assert text.rstrip().endswith("wallet open w1 key")


def test_completion_targets_map_param_to_category() -> None:
    assert completion_targets(_open_metadata()) == {"name": CompletionCategory.STORE}
