from pathlib import Path

from ledgercli.command_context import CommandContext
from ledgercli.command_metadata import CompletionCategory
from ledgercli.completion import DynamicCompletionProvider
from ledgercli.environment import EnvironmentPaths
from ledgercli.pool import PoolDirectory
from ledgercli.store import Credentials, Store, StoreConfig, StoreDirectory, StoreError


class _BrokenStore:
    name = "broken"

    def identity_names(self):
        raise StoreError("store is closed")


def _provider(tmp_path: Path) -> DynamicCompletionProvider:
    paths = EnvironmentPaths(tmp_path)
    return DynamicCompletionProvider(StoreDirectory(paths), PoolDirectory(paths))


def test_store_and_network_candidates(tmp_path: Path) -> None:
    paths = EnvironmentPaths(tmp_path)
    stores = StoreDirectory(paths)
    for name in ("work", "personal", "wallet2"):
        stores.store_config(StoreConfig(id=name))
    genesis = tmp_path / "genesis.txn"
    genesis.write_text('{"txn": {"type": "0", "data": {"data": {"alias": "Node1"}}}}\n', encoding="utf-8")
    pools = PoolDirectory(paths)
    pools.create("sandbox", genesis)
    pools.create("staging", genesis)
    pools.create("main", genesis)

    provider = _provider(tmp_path)
    context = CommandContext()
    assert provider.complete(CompletionCategory.STORE, context, "w") == ["wallet2", "work"]
    assert provider.complete(CompletionCategory.NETWORK, context, "s") == ["sandbox", "staging"]
    assert provider.complete(CompletionCategory.NETWORK, context, "") == ["main", "sandbox", "staging"]
    assert provider.complete(CompletionCategory.NETWORK, context, "s") == provider.complete(
        CompletionCategory.NETWORK, context, "s"
    )


def test_identity_candidates_need_opened_store(tmp_path: Path) -> None:
    provider = _provider(tmp_path)
    context = CommandContext()
    assert provider.complete(CompletionCategory.IDENTITY, context, "") == []

    directory = StoreDirectory(EnvironmentPaths(tmp_path))
    credentials = Credentials(key="k", key_derivation_method="pbkdf2-fast")
    Store.create(directory, StoreConfig(id="w1"), credentials)
    store = Store.open(directory, directory.read_config("w1"), credentials)
    store.create_identity(seed="000000000000000000000000Trustee1")
    store.create_identity(seed="00000000000000000000000000000My1")
    context.set_opened_store(store)
    assert provider.complete(CompletionCategory.IDENTITY, context, "Vs") == ["VsKV7grR1BUE29mG2Fm2kX"]


def test_collaborator_failure_degrades_to_empty(tmp_path: Path) -> None:
    provider = _provider(tmp_path)
    context = CommandContext()
    context.set_opened_store(_BrokenStore())
    assert provider.complete(CompletionCategory.IDENTITY, context, "") == []
    assert provider.complete(CompletionCategory.STORE, context, "") == []
