"""
Secure credential storage.

Tokens are stored as plain key/value strings, one entry per
(user, token kind, provider). Backends:

- MemoryCredentialStore: process-local, used in tests and local mode
- EncryptedFileCredentialStore: Fernet-encrypted JSON file on disk
- DynamoCredentialStore: DynamoDB item per key, KMS encrypted when configured
"""

import base64
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.fernet import Fernet, InvalidToken

from .exceptions import CredentialStoreError
from .provider_types import ProviderType

logger = logging.getLogger(__name__)


class TokenKind(str, Enum):
    ACCESS = "device_token"
    REFRESH = "device_refresh"
    EXPIRY = "device_expiry"


def credential_key(user_id: str, kind: TokenKind, provider: ProviderType) -> str:
    """Namespaced key, e.g. ``default:device_token_FITBIT``."""
    return f"{user_id}:{kind.value}_{provider.value}"


class CredentialStore(ABC):
    """
    Key/value credential storage safe for concurrent use.

    Every operation on a key holds that key's lock, so a read never
    observes a half-finished write for the same (user, provider) entry.
    """

    def __init__(self) -> None:
        self._locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[key]

    def set(self, key: str, value: str) -> None:
        with self._lock_for(key):
            self._set(key, value)

    def get(self, key: str) -> str | None:
        with self._lock_for(key):
            return self._get(key)

    def delete(self, key: str) -> None:
        """Remove a key. Deleting a missing key is not an error."""
        with self._lock_for(key):
            self._delete(key)

    @abstractmethod
    def _set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def _get(self, key: str) -> str | None: ...

    @abstractmethod
    def _delete(self, key: str) -> None: ...


class MemoryCredentialStore(CredentialStore):
    """In-memory storage for tests and local mode."""

    def __init__(self) -> None:
        super().__init__()
        self._values: dict[str, str] = {}

    def _set(self, key: str, value: str) -> None:
        self._values[key] = value

    def _get(self, key: str) -> str | None:
        return self._values.get(key)

    def _delete(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._values)


class EncryptedFileCredentialStore(CredentialStore):
    """
    JSON file of Fernet-encrypted values.

    The file is rewritten atomically (temp file + ``os.replace``). When no
    key is supplied one is generated next to the file as ``<name>.key``
    with 0600 permissions.
    """

    def __init__(self, path: Path, encryption_key: str | None = None):
        super().__init__()
        self.path = Path(path)
        # Whole-file rewrites need a store-wide lock on top of the per-key ones
        self._file_lock = threading.Lock()
        self._fernet = Fernet(encryption_key.encode() if encryption_key else self._load_or_create_key())

    def _load_or_create_key(self) -> bytes:
        key_path = self.path.with_suffix(".key")
        if key_path.exists():
            return key_path.read_bytes().strip()

        key = Fernet.generate_key()
        key_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        logger.info("Generated credential encryption key at %s", key_path)
        return key

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CredentialStoreError(f"Failed to read credential file {self.path}: {e}") from e

    def _write_all(self, data: dict[str, str]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise CredentialStoreError(f"Failed to write credential file {self.path}: {e}") from e

    def _set(self, key: str, value: str) -> None:
        with self._file_lock:
            data = self._read_all()
            data[key] = self._fernet.encrypt(value.encode("utf-8")).decode("ascii")
            self._write_all(data)

    def _get(self, key: str) -> str | None:
        with self._file_lock:
            token = self._read_all().get(key)
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise CredentialStoreError(f"Failed to decrypt credential {key}") from e

    def _delete(self, key: str) -> None:
        with self._file_lock:
            data = self._read_all()
            if data.pop(key, None) is not None:
                self._write_all(data)


class DynamoCredentialStore(CredentialStore):
    """
    DynamoDB-backed storage with optional KMS encryption.

    Table schema:
    - Partition key: credential_key (string)
    - Attributes:
        - value: binary (KMS ciphertext, or base64 when no key is configured)
        - updated_at: number (unix timestamp)
    """

    def __init__(
        self,
        table_name: str,
        kms_key_id: str | None = None,
        region_name: str = "us-east-1",
    ):
        super().__init__()
        self.table_name = table_name
        self.kms_key_id = kms_key_id

        self.dynamodb = boto3.resource("dynamodb", region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        self.kms = boto3.client("kms", region_name=region_name) if kms_key_id else None

    def _encrypt(self, plaintext: str) -> bytes:
        if not self.kms:
            return base64.b64encode(plaintext.encode("utf-8"))
        try:
            response = self.kms.encrypt(KeyId=self.kms_key_id, Plaintext=plaintext.encode("utf-8"))
        except (ClientError, BotoCoreError) as e:
            raise CredentialStoreError(f"Failed to encrypt credential: {e}") from e
        return response["CiphertextBlob"]

    def _decrypt(self, ciphertext: bytes) -> str:
        if not self.kms:
            return base64.b64decode(ciphertext).decode("utf-8")
        try:
            response = self.kms.decrypt(CiphertextBlob=ciphertext)
        except (ClientError, BotoCoreError) as e:
            raise CredentialStoreError(f"Failed to decrypt credential: {e}") from e
        return response["Plaintext"].decode("utf-8")

    def _set(self, key: str, value: str) -> None:
        item = {
            "credential_key": key,
            "value": self._encrypt(value),
            "updated_at": int(datetime.now(UTC).timestamp()),
        }
        try:
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError) as e:
            raise CredentialStoreError(f"Failed to save credential: {e}") from e

    def _get(self, key: str) -> str | None:
        try:
            response = self.table.get_item(Key={"credential_key": key})
        except (ClientError, BotoCoreError) as e:
            raise CredentialStoreError(f"Failed to get credential: {e}") from e

        if "Item" not in response:
            return None
        return self._decrypt(response["Item"]["value"].value)

    def _delete(self, key: str) -> None:
        try:
            self.table.delete_item(Key={"credential_key": key})
        except (ClientError, BotoCoreError) as e:
            raise CredentialStoreError(f"Failed to delete credential: {e}") from e


def build_credential_store(settings) -> CredentialStore:
    """Choose a backend from ``settings.credential_backend``."""
    backend = settings.credential_backend
    if backend == "memory":
        return MemoryCredentialStore()
    if backend == "dynamodb":
        return DynamoCredentialStore(
            table_name=settings.dynamodb_table,
            kms_key_id=settings.kms_key_id,
            region_name=settings.aws_region,
        )
    return EncryptedFileCredentialStore(
        settings.credential_file,
        encryption_key=settings.credential_encryption_key,
    )
