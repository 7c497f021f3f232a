from pathlib import Path

import base58
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from ledgercli.environment import EnvironmentPaths
from ledgercli.store import (
    Credentials,
    IdentityAlreadyExists,
    IdentityNotFound,
    Store,
    StoreAccessDenied,
    StoreAlreadyExists,
    StoreConfig,
    StoreDirectory,
    StoreError,
    StoreNotFound,
    abbreviate_verkey,
    parse_seed,
)

TRUSTEE_SEED = "000000000000000000000000Trustee1"
MY1_SEED = "00000000000000000000000000000My1"
FAST = "pbkdf2-fast"


def _create_and_open(tmp_path: Path, name: str = "w1", key: str = "secret") -> Store:
    directory = StoreDirectory(EnvironmentPaths(tmp_path))
    credentials = Credentials(key=key, key_derivation_method=FAST)
    Store.create(directory, StoreConfig(id=name), credentials)
    return Store.open(directory, directory.read_config(name), credentials)


def test_seed_produces_known_identities(tmp_path: Path) -> None:
    store = _create_and_open(tmp_path)
    trustee = store.create_identity(seed=TRUSTEE_SEED)
    assert trustee.did == "V4SGRU86Z58d6TV7PBUe6f"
    assert trustee.verkey == "GJ1SzoWzavQYfNL9XkaJdrQejfztN4XqdsiV4ct3LXKL"
    my1 = store.create_identity(seed=MY1_SEED, metadata="first")
    assert my1.did == "VsKV7grR1BUE29mG2Fm2kX"
    assert my1.verkey == "GjZWsBLgZCR18aL468JAT7w9CZRiBnpxUPPgyQxh4voa"
    assert my1.metadata == "first"
    assert store.identity_names() == ["V4SGRU86Z58d6TV7PBUe6f", "VsKV7grR1BUE29mG2Fm2kX"]


def test_abbreviated_verkey(tmp_path: Path) -> None:
    store = _create_and_open(tmp_path)
    info = store.create_identity(seed=MY1_SEED)
    abbreviated = abbreviate_verkey(info.did, info.verkey)
    assert abbreviated.startswith("~")
    tail = base58.b58decode(abbreviated[1:])
    assert base58.b58decode(info.verkey) == base58.b58decode(info.did) + tail
    assert abbreviate_verkey("V4SGRU86Z58d6TV7PBUe6f", info.verkey) == info.verkey


def test_seed_formats() -> None:
    hex_seed = MY1_SEED.encode("utf-8").hex()
    assert parse_seed(hex_seed) == MY1_SEED.encode("utf-8")
    with pytest.raises(StoreError):
        parse_seed("too-short")


def test_identities_persist_across_reopen(tmp_path: Path) -> None:
    store = _create_and_open(tmp_path)
    store.create_identity(seed=TRUSTEE_SEED)
    store.close()
    reopened = _open(tmp_path, "secret")
    assert reopened.get_identity("V4SGRU86Z58d6TV7PBUe6f").verkey == "GJ1SzoWzavQYfNL9XkaJdrQejfztN4XqdsiV4ct3LXKL"
    with pytest.raises(StoreError):
        store.list_identities()


def _open(tmp_path: Path, key: str, **extra) -> Store:
    directory = StoreDirectory(EnvironmentPaths(tmp_path))
    return Store.open(directory, directory.read_config("w1"), Credentials(key=key, key_derivation_method=FAST, **extra))


def test_wrong_key_is_denied(tmp_path: Path) -> None:
    _create_and_open(tmp_path).close()
    with pytest.raises(StoreAccessDenied):
        _open(tmp_path, "wrong")


def test_rekey(tmp_path: Path) -> None:
    _create_and_open(tmp_path).close()
    _open(tmp_path, "secret", rekey="fresh", rekey_derivation_method=FAST).close()
    with pytest.raises(StoreAccessDenied):
        _open(tmp_path, "secret")
    assert _open(tmp_path, "fresh").list_identities() == []


def test_duplicate_and_missing_identity(tmp_path: Path) -> None:
    store = _create_and_open(tmp_path)
    store.create_identity(seed=TRUSTEE_SEED)
    with pytest.raises(IdentityAlreadyExists):
        store.create_identity(seed=TRUSTEE_SEED)
    with pytest.raises(IdentityNotFound):
        store.get_identity("VsKV7grR1BUE29mG2Fm2kX")


def test_metadata_and_qualify(tmp_path: Path) -> None:
    store = _create_and_open(tmp_path)
    store.create_identity(seed=MY1_SEED)
    assert store.set_metadata("VsKV7grR1BUE29mG2Fm2kX", "meta").metadata == "meta"
    qualified = store.qualify_identity("VsKV7grR1BUE29mG2Fm2kX", "indy")
    assert qualified == "did:indy:VsKV7grR1BUE29mG2Fm2kX"
    assert store.identity_names() == [qualified]
    assert store.get_identity(qualified).method == "indy"


def test_key_rotation_is_applied_in_two_steps(tmp_path: Path) -> None:
    store = _create_and_open(tmp_path)
    did = store.create_identity(seed=TRUSTEE_SEED).did
    with pytest.raises(StoreError):
        store.replace_keys_apply(did)

    pending = store.replace_keys_start(did, MY1_SEED)
    assert pending == "GjZWsBLgZCR18aL468JAT7w9CZRiBnpxUPPgyQxh4voa"
    info = store.get_identity(did)
    assert info.verkey == "GJ1SzoWzavQYfNL9XkaJdrQejfztN4XqdsiV4ct3LXKL"
    assert info.next_verkey == pending

    assert store.replace_keys_apply(did) == pending
    signature = store.sign(did, b"rotated")
    Ed25519PublicKey.from_public_bytes(base58.b58decode(pending)).verify(signature, b"rotated")
    store.close()

    directory = StoreDirectory(EnvironmentPaths(tmp_path))
    credentials = Credentials(key="secret", key_derivation_method=FAST)
    reopened = Store.open(directory, directory.read_config("w1"), credentials)
    assert reopened.get_identity(did).verkey == pending
    assert reopened.get_identity(did).next_verkey is None
    reopened.close()


def test_signature_verifies_with_verkey(tmp_path: Path) -> None:
    store = _create_and_open(tmp_path)
    info = store.create_identity(seed=MY1_SEED)
    signature = store.sign(info.did, b"payload")
    public = Ed25519PublicKey.from_public_bytes(base58.b58decode(info.verkey))
    public.verify(signature, b"payload")


def test_directory_listing_and_delete(tmp_path: Path) -> None:
    directory = StoreDirectory(EnvironmentPaths(tmp_path))
    assert directory.names() == []
    _create_and_open(tmp_path, "beta").close()
    _create_and_open(tmp_path, "alpha").close()
    assert directory.names() == ["alpha", "beta"]
    with pytest.raises(StoreAlreadyExists):
        Store.create(directory, StoreConfig(id="alpha"), Credentials(key="x", key_derivation_method=FAST))
    with pytest.raises(StoreAccessDenied):
        Store.delete(directory, directory.read_config("alpha"), Credentials(key="bad", key_derivation_method=FAST))
    Store.delete(directory, directory.read_config("alpha"), Credentials(key="secret", key_derivation_method=FAST))
    assert directory.names() == ["beta"]
    with pytest.raises(StoreNotFound):
        directory.read_config("alpha")


def test_export_and_import(tmp_path: Path) -> None:
    store = _create_and_open(tmp_path)
    store.create_identity(seed=TRUSTEE_SEED, metadata="trustee")
    backup = tmp_path / "backup.json"
    store.export_to(backup, "export-key", FAST)
    with pytest.raises(StoreError):
        store.export_to(backup, "export-key", FAST)

    directory = StoreDirectory(EnvironmentPaths(tmp_path))
    credentials = Credentials(key="other", key_derivation_method=FAST)
    Store.import_from(directory, StoreConfig(id="w2"), credentials, backup, "export-key")
    imported = Store.open(directory, directory.read_config("w2"), credentials)
    assert imported.get_identity("V4SGRU86Z58d6TV7PBUe6f").metadata == "trustee"
    with pytest.raises(StoreAccessDenied):
        Store.import_from(directory, StoreConfig(id="w3"), credentials, backup, "wrong")


def test_credentials_repr_hides_key() -> None:
    assert "s3cr3t" not in repr(Credentials(key="s3cr3t"))
