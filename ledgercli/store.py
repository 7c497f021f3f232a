"""Local credential store collaborator: attached store configs and identities."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import base58
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ledgercli.environment import EnvironmentPaths
from ledgercli.errors import CollaboratorError

logger = logging.getLogger("ledgercli.store")

STORE_FORMAT_VERSION = 1
KEY_TYPE = "ed25519"
SEED_BYTES = 32
DEFAULT_KEY_DERIVATION = "pbkdf2"
KDF_ITERATIONS = {"pbkdf2": 100_000, "pbkdf2-fast": 10_000}
RAW_DERIVATION = "raw"
DATA_FILE = "store.json"
CONFIG_FILE = "config.json"


class StoreError(CollaboratorError):
    """Raised when a credential store operation fails."""


class StoreNotFound(StoreError):
    pass


class StoreAlreadyExists(StoreError):
    pass


class StoreAccessDenied(StoreError):
    pass


class IdentityNotFound(StoreError):
    pass


class IdentityAlreadyExists(StoreError):
    pass


@dataclass
class StoreConfig:
    id: str
    storage_type: str = "default"
    storage_config: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "storage_type": self.storage_type}
        if self.storage_config is not None:
            payload["storage_config"] = self.storage_config
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StoreConfig":
        return cls(
            id=str(payload["id"]),
            storage_type=str(payload.get("storage_type", "default")),
            storage_config=payload.get("storage_config"),
        )


@dataclass
class Credentials:
    key: str
    key_derivation_method: Optional[str] = None
    rekey: Optional[str] = None
    rekey_derivation_method: Optional[str] = None
    storage_credentials: Optional[Any] = None

    def __repr__(self) -> str:
        return f"Credentials(key_derivation_method={self.key_derivation_method!r})"


@dataclass
class IdentityInfo:
    did: str
    verkey: str
    verkey_type: str = KEY_TYPE
    method: Optional[str] = None
    metadata: Optional[str] = None
    next_verkey: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Identity helpers
# ---------------------------------------------------------------------------


def b58encode(data: bytes) -> str:
    return base58.b58encode(data).decode("ascii")


def short_did(did: str) -> str:
    if did.startswith("did:"):
        return did.split(":", 2)[2]
    return did


def qualify(did: str, method: str) -> str:
    return f"did:{method}:{short_did(did)}"


def parse_seed(seed: str) -> bytes:
    """Accept a 32-character UTF-8 seed, 64 hex digits, or base64 of 32 bytes."""

    raw = seed.encode("utf-8")
    if len(raw) == SEED_BYTES:
        return raw
    if len(seed) == SEED_BYTES * 2:
        try:
            return bytes.fromhex(seed)
        except ValueError:
            pass
    try:
        decoded = base64.b64decode(seed, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == SEED_BYTES:
        return decoded
    raise StoreError("Invalid seed provided: expected 32 bytes as UTF-8, hex or base64")


def abbreviate_verkey(did: str, verkey: str) -> str:
    """Return ``~tail`` when the DID is the verkey prefix, else the full verkey."""

    try:
        did_bytes = base58.b58decode(short_did(did))
        key_bytes = base58.b58decode(verkey)
    except ValueError:
        return verkey
    if len(key_bytes) == SEED_BYTES and key_bytes[: len(did_bytes)] == did_bytes and len(did_bytes) == 16:
        return "~" + b58encode(key_bytes[16:])
    return verkey


def _keypair(seed: Optional[bytes]) -> Ed25519PrivateKey:
    if seed is None:
        return Ed25519PrivateKey.generate()
    return Ed25519PrivateKey.from_private_bytes(seed)


def _private_seed(key: Ed25519PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _public_bytes(key: Ed25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------


def _derive_fernet(key: str, method: Optional[str], salt: bytes) -> Fernet:
    method = method or DEFAULT_KEY_DERIVATION
    if method == RAW_DERIVATION:
        try:
            material = base58.b58decode(key)
        except ValueError as exc:
            raise StoreAccessDenied("Raw store key must be base58 encoded") from exc
        if len(material) != 32:
            raise StoreAccessDenied("Raw store key must encode 32 bytes")
        return Fernet(base64.urlsafe_b64encode(material))
    iterations = KDF_ITERATIONS.get(method)
    if iterations is None:
        raise StoreError(f'Unsupported key derivation method "{method}"')
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
    return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode("utf-8"))))


def _seal(payload: Dict[str, Any], key: str, method: Optional[str]) -> Dict[str, Any]:
    salt = os.urandom(16)
    fernet = _derive_fernet(key, method, salt)
    token = fernet.encrypt(json.dumps(payload, sort_keys=True).encode("utf-8"))
    return {
        "version": STORE_FORMAT_VERSION,
        "kdf": {"method": method or DEFAULT_KEY_DERIVATION, "salt": base64.b64encode(salt).decode("ascii")},
        "payload": token.decode("ascii"),
    }


def _unseal(envelope: Dict[str, Any], key: str, method: Optional[str]) -> Dict[str, Any]:
    kdf = envelope.get("kdf", {})
    stored_method = kdf.get("method", DEFAULT_KEY_DERIVATION)
    if method is not None and method != stored_method:
        raise StoreAccessDenied("Invalid store key or key derivation method")
    salt = base64.b64decode(kdf.get("salt", ""))
    fernet = _derive_fernet(key, stored_method, salt)
    try:
        plain = fernet.decrypt(envelope["payload"].encode("ascii"))
    except (InvalidToken, KeyError) as exc:
        raise StoreAccessDenied("Invalid store key or key derivation method") from exc
    return json.loads(plain.decode("utf-8"))


def _read_envelope(path: Path, name: str) -> Dict[str, Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise StoreNotFound(f'Store "{name}" does not exist') from exc
    except json.JSONDecodeError as exc:
        raise StoreError(f'Store "{name}" data is corrupted') from exc


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
        handle.write("\n")
    tmp.replace(path)


# ---------------------------------------------------------------------------
# Attached store configurations
# ---------------------------------------------------------------------------


class StoreDirectory:
    """Name -> config lookup for stores attached to this CLI home."""

    def __init__(self, paths: EnvironmentPaths) -> None:
        self._paths = paths

    def config_path(self, name: str) -> Path:
        return self._paths.store_path(name) / CONFIG_FILE

    def data_path(self, name: str) -> Path:
        return self._paths.store_path(name) / DATA_FILE

    def exists(self, name: str) -> bool:
        return self.config_path(name).is_file()

    def store_config(self, config: StoreConfig) -> None:
        _write_json(self.config_path(config.id), config.to_dict())

    def read_config(self, name: str) -> StoreConfig:
        try:
            payload = json.loads(self.config_path(name).read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise StoreNotFound(f'Store "{name}" isn\'t attached to CLI') from exc
        except json.JSONDecodeError as exc:
            raise StoreError(f'Store "{name}" config is corrupted') from exc
        return StoreConfig.from_dict(payload)

    def delete_config(self, name: str) -> None:
        path = self.config_path(name)
        if not path.exists():
            raise StoreNotFound(f'Store "{name}" isn\'t attached to CLI')
        path.unlink()
        store_dir = path.parent
        if store_dir.exists() and not any(store_dir.iterdir()):
            store_dir.rmdir()

    def list_configs(self) -> List[StoreConfig]:
        home = self._paths.stores_home
        if not home.is_dir():
            return []
        configs: List[StoreConfig] = []
        for entry in sorted(home.iterdir()):
            if not (entry / CONFIG_FILE).is_file():
                continue
            try:
                configs.append(self.read_config(entry.name))
            except StoreError as exc:
                logger.warning("Skipping store %s: %s", entry.name, exc)
        return configs

    def names(self) -> List[str]:
        return [config.id for config in self.list_configs()]


# ---------------------------------------------------------------------------
# Opened store handle
# ---------------------------------------------------------------------------


class Store:
    """Opened, decrypted store; identities persist on every mutation."""

    def __init__(
        self,
        config: StoreConfig,
        path: Path,
        data: Dict[str, Any],
        credentials: Credentials,
    ) -> None:
        self.config = config
        self._path = path
        self._identities: Dict[str, Dict[str, Any]] = dict(data.get("identities", {}))
        self._key = credentials.key
        self._method = credentials.key_derivation_method
        self._closed = False

    def __repr__(self) -> str:
        return f"Store(name={self.name!r}, closed={self._closed})"

    @property
    def name(self) -> str:
        return self.config.id

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------- lifecycle ---------------------------
    @classmethod
    def create(cls, directory: StoreDirectory, config: StoreConfig, credentials: Credentials) -> None:
        path = directory.data_path(config.id)
        if path.exists():
            raise StoreAlreadyExists(f'Store "{config.id}" already exists')
        _write_json(path, _seal({"identities": {}}, credentials.key, credentials.key_derivation_method))
        directory.store_config(config)
        logger.debug("Created store %s", config.id)

    @classmethod
    def open(cls, directory: StoreDirectory, config: StoreConfig, credentials: Credentials) -> "Store":
        path = directory.data_path(config.id)
        envelope = _read_envelope(path, config.id)
        data = _unseal(envelope, credentials.key, credentials.key_derivation_method)
        store = cls(config, path, data, credentials)
        store._method = envelope.get("kdf", {}).get("method", DEFAULT_KEY_DERIVATION)
        if credentials.rekey:
            store._key = credentials.rekey
            store._method = credentials.rekey_derivation_method or DEFAULT_KEY_DERIVATION
            store._save()
        return store

    @classmethod
    def delete(cls, directory: StoreDirectory, config: StoreConfig, credentials: Credentials) -> None:
        path = directory.data_path(config.id)
        _unseal(_read_envelope(path, config.id), credentials.key, credentials.key_derivation_method)
        shutil.rmtree(path.parent)

    def close(self) -> None:
        self._closed = True
        self._key = ""

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreError(f'Store "{self.name}" is closed')

    def _save(self) -> None:
        _write_json(self._path, _seal({"identities": self._identities}, self._key, self._method))

    # -------------------- identities --------------------------
    def list_identities(self) -> List[IdentityInfo]:
        self._ensure_open()
        return [self._info(record) for _, record in sorted(self._identities.items())]

    def identity_names(self) -> List[str]:
        self._ensure_open()
        return sorted(self._identities)

    def get_identity(self, did: str) -> IdentityInfo:
        self._ensure_open()
        record = self._identities.get(did)
        if record is None:
            raise IdentityNotFound(f"DID {did} does not exist in the store")
        return self._info(record)

    def create_identity(
        self,
        did: Optional[str] = None,
        seed: Optional[str] = None,
        metadata: Optional[str] = None,
        method: Optional[str] = None,
    ) -> IdentityInfo:
        self._ensure_open()
        key = _keypair(parse_seed(seed) if seed is not None else None)
        public = _public_bytes(key)
        verkey = b58encode(public)
        identifier = did or b58encode(public[:16])
        if method:
            identifier = qualify(identifier, method)
        if identifier in self._identities:
            raise IdentityAlreadyExists("DID already present in the store")
        record = {
            "did": identifier,
            "verkey": verkey,
            "verkey_type": KEY_TYPE,
            "method": method,
            "metadata": metadata,
            "seed": base64.b64encode(_private_seed(key)).decode("ascii"),
        }
        self._identities[identifier] = record
        self._save()
        return self._info(record)

    def set_metadata(self, did: str, metadata: str) -> IdentityInfo:
        self._ensure_open()
        record = self._record(did)
        record["metadata"] = metadata
        self._save()
        return self._info(record)

    def qualify_identity(self, did: str, method: str) -> str:
        self._ensure_open()
        record = dict(self._record(did))
        qualified = qualify(did, method)
        if qualified in self._identities:
            raise IdentityAlreadyExists(f"DID {qualified} already present in the store")
        record["did"] = qualified
        record["method"] = method
        del self._identities[did]
        self._identities[qualified] = record
        self._save()
        return qualified

    # -------------------- key rotation ------------------------
    def replace_keys_start(self, did: str, seed: Optional[str] = None) -> str:
        """Generate the next key pair for *did* and keep it aside; return its verkey."""

        self._ensure_open()
        record = self._record(did)
        key = _keypair(parse_seed(seed) if seed is not None else None)
        record["next_verkey"] = b58encode(_public_bytes(key))
        record["next_seed"] = base64.b64encode(_private_seed(key)).decode("ascii")
        self._save()
        return record["next_verkey"]

    def replace_keys_apply(self, did: str) -> str:
        """Make the pending key pair of *did* current; return the new verkey."""

        self._ensure_open()
        record = self._record(did)
        if not record.get("next_verkey"):
            raise StoreError(f"DID {did} has no pending key replacement")
        record["verkey"] = record.pop("next_verkey")
        record["seed"] = record.pop("next_seed")
        self._save()
        return record["verkey"]

    def sign(self, did: str, message: bytes) -> bytes:
        self._ensure_open()
        record = self._record(did)
        key = Ed25519PrivateKey.from_private_bytes(base64.b64decode(record["seed"]))
        return key.sign(message)

    # -------------------- backup ------------------------------
    def export_to(self, path: Path, export_key: str, derivation: Optional[str] = None) -> None:
        self._ensure_open()
        if path.exists():
            raise StoreError(f"Export path {path} already exists")
        _write_json(path, _seal({"identities": self._identities}, export_key, derivation))

    @classmethod
    def import_from(
        cls,
        directory: StoreDirectory,
        config: StoreConfig,
        credentials: Credentials,
        path: Path,
        export_key: str,
    ) -> None:
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise StoreError(f"Export file {path} does not exist") from exc
        except json.JSONDecodeError as exc:
            raise StoreError(f"Export file {path} is corrupted") from exc
        data = _unseal(envelope, export_key, None)
        target = directory.data_path(config.id)
        if target.exists():
            raise StoreAlreadyExists(f'Store "{config.id}" already exists')
        _write_json(target, _seal(data, credentials.key, credentials.key_derivation_method))
        directory.store_config(config)

    # -------------------- internals ---------------------------
    def _record(self, did: str) -> Dict[str, Any]:
        record = self._identities.get(did)
        if record is None:
            raise IdentityNotFound(f"DID {did} does not exist in the store")
        return record

    @staticmethod
    def _info(record: Dict[str, Any]) -> IdentityInfo:
        return IdentityInfo(
            did=record["did"],
            verkey=record["verkey"],
            verkey_type=record.get("verkey_type", KEY_TYPE),
            method=record.get("method"),
            metadata=record.get("metadata"),
            next_verkey=record.get("next_verkey"),
        )


__all__ = [
    "Credentials",
    "IdentityAlreadyExists",
    "IdentityInfo",
    "IdentityNotFound",
    "Store",
    "StoreAccessDenied",
    "StoreAlreadyExists",
    "StoreConfig",
    "StoreDirectory",
    "StoreError",
    "StoreNotFound",
    "abbreviate_verkey",
    "parse_seed",
    "qualify",
    "short_did",
]
