"""Blob storage adapters for audiobook chapter objects.

Responsibilities:
- Build validated, injective per-book key prefixes (`AudiobookScope`).
- Expose a small put/get/head/list/delete contract over S3 and the local filesystem.
- Translate backend failures into `BlobNotFoundError`, `PreconditionFailedError`,
  and `StorageError`.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import re
import shutil
import tempfile
from typing import Any, Protocol
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import (
    BlobNotFoundError,
    PreconditionFailedError,
    StorageError,
    ValidationError,
)

DEFAULT_STORAGE_ROOT = "chaptervoice"
UNCLAIMED_OWNER_ID = "unclaimed"

_SAFE_NAMESPACE_RE = re.compile(r"[A-Za-z0-9._-]{1,128}")
_SAFE_BOOK_ID_RE = re.compile(r"[A-Za-z0-9._-]{1,128}")
_SAFE_OWNER_ID_RE = re.compile(r"[A-Za-z0-9._:-]{1,256}")
_DELETE_BATCH_SIZE = 1000
_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
_PRECONDITION_CODES = frozenset({"412", "PreconditionFailed"})
_LOCAL_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4b": "audio/mp4",
    ".json": "application/json",
}
_PARTIAL_SUFFIX = ".partial"


def normalize_storage_root(value: str | None) -> str:
    """Strip surrounding slashes from a storage root, defaulting when empty."""

    base = (value or DEFAULT_STORAGE_ROOT).strip().strip("/")
    return base or DEFAULT_STORAGE_ROOT


def sanitize_namespace(namespace: str | None) -> str | None:
    """Return the namespace when it is safe to embed in keys, else `None`."""

    if not namespace or _SAFE_NAMESPACE_RE.fullmatch(namespace) is None:
        return None
    return namespace


def unclaimed_owner_id(namespace: str | None) -> str:
    """Return the deterministic placeholder owner for books without a user."""

    safe_namespace = sanitize_namespace(namespace)
    if safe_namespace is None:
        return UNCLAIMED_OWNER_ID
    return f"{UNCLAIMED_OWNER_ID}::{safe_namespace}"


def assert_safe_file_name(file_name: str) -> None:
    """Reject names that could escape the book prefix."""

    if not file_name or file_name in {".", ".."} or "/" in file_name or "\\" in file_name:
        raise ValidationError(f"Invalid audiobook file name: {file_name}")


@dataclass(frozen=True, slots=True)
class AudiobookScope:
    """Storage scope of one book: owner, book id, and optional namespace.

    Unsafe namespaces are dropped rather than rejected, matching how the
    unclaimed placeholder is derived.
    """

    book_id: str
    owner_id: str
    namespace: str | None = None
    root: str = DEFAULT_STORAGE_ROOT

    def __post_init__(self) -> None:
        if _SAFE_BOOK_ID_RE.fullmatch(self.book_id) is None:
            raise ValidationError(f"Invalid audiobook id: {self.book_id}")
        if _SAFE_OWNER_ID_RE.fullmatch(self.owner_id) is None:
            raise ValidationError(
                f"Invalid user id for audiobook storage scope: {self.owner_id}"
            )
        object.__setattr__(self, "namespace", sanitize_namespace(self.namespace))
        object.__setattr__(self, "root", normalize_storage_root(self.root))

    @property
    def prefix(self) -> str:
        """Return the key prefix shared by every object of this book."""

        namespace_segment = f"ns/{self.namespace}/" if self.namespace else ""
        owner_segment = quote(self.owner_id, safe="!'()*")
        return (
            f"{self.root}/audiobooks_v1/{namespace_segment}"
            f"users/{owner_segment}/{self.book_id}-audiobook/"
        )

    def key(self, file_name: str) -> str:
        """Return the full key for one file inside this book's prefix."""

        assert_safe_file_name(file_name)
        return f"{self.prefix}{file_name}"

    def with_owner(self, owner_id: str) -> AudiobookScope:
        """Return the same book scoped to a different owner."""

        return AudiobookScope(
            book_id=self.book_id,
            owner_id=owner_id,
            namespace=self.namespace,
            root=self.root,
        )


@dataclass(frozen=True, slots=True)
class BlobObject:
    """One object returned by a prefix listing."""

    key: str
    file_name: str
    size: int
    last_modified: int
    etag: str | None = None


@dataclass(frozen=True, slots=True)
class BlobHead:
    """Metadata returned for one object."""

    size: int
    content_type: str | None
    etag: str | None = None


class BlobStore(Protocol):
    """Object storage contract used by commit, status, and assembly flows."""

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        if_absent: bool = False,
    ) -> None:
        """Write one object, failing with `PreconditionFailedError` if `if_absent` and present."""

    def get(self, key: str) -> bytes:
        """Read one object or raise `BlobNotFoundError`."""

    def head(self, key: str) -> BlobHead:
        """Return object metadata or raise `BlobNotFoundError`."""

    def list(self, prefix: str) -> list[BlobObject]:
        """List direct children of `prefix`."""

    def delete(self, key: str) -> None:
        """Delete one object; deleting a missing key is not an error."""

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under `prefix` and return how many were removed."""


def blob_exists(store: BlobStore, key: str) -> bool:
    """Return whether `key` is present in `store`."""

    try:
        store.head(key)
    except BlobNotFoundError:
        return False
    return True


def list_file_names(store: BlobStore, scope: AudiobookScope) -> list[str]:
    """Return direct child file names stored for one book."""

    return [item.file_name for item in store.list(scope.prefix)]


class S3BlobStore:
    """S3-compatible blob store backed by a boto3 client."""

    def __init__(self, client: Any, bucket: str) -> None:
        """Initialize the store with a boto3 S3 client and target bucket."""

        self._client = client
        self._bucket = bucket

    @classmethod
    def create(
        cls,
        *,
        bucket: str,
        region: str,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        endpoint: str | None = None,
        force_path_style: bool = False,
    ) -> S3BlobStore:
        """Build a store with a fresh boto3 client for the given connection settings."""

        client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint or None,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path" if force_path_style else "virtual"},
            ),
        )
        return cls(client, bucket)

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        if_absent: bool = False,
    ) -> None:
        params: dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "ServerSideEncryption": "AES256",
        }
        if if_absent:
            params["IfNoneMatch"] = "*"
        try:
            self._client.put_object(**params)
        except ClientError as exc:
            if self._error_code(exc) in _PRECONDITION_CODES:
                raise PreconditionFailedError(key) from exc
            raise StorageError(f"S3 put failed for `{key}`: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 put failed for `{key}`: {exc}") from exc

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            raise self._map_read_error(key, exc) from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 get failed for `{key}`: {exc}") from exc

    def head(self, key: str) -> BlobHead:
        try:
            response = self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            raise self._map_read_error(key, exc) from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 head failed for `{key}`: {exc}") from exc
        return BlobHead(
            size=int(response.get("ContentLength", 0)),
            content_type=response.get("ContentType"),
            etag=response.get("ETag"),
        )

    def list(self, prefix: str) -> list[BlobObject]:
        objects: list[BlobObject] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for entry in page.get("Contents", []):
                    key = entry.get("Key") or ""
                    if not key.startswith(prefix):
                        continue
                    file_name = key[len(prefix):]
                    if not file_name or "/" in file_name:
                        continue
                    last_modified = entry.get("LastModified")
                    objects.append(
                        BlobObject(
                            key=key,
                            file_name=file_name,
                            size=int(entry.get("Size", 0)),
                            last_modified=(
                                int(last_modified.timestamp() * 1000)
                                if last_modified is not None
                                else 0
                            ),
                            etag=entry.get("ETag"),
                        )
                    )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"S3 list failed for `{prefix}`: {exc}") from exc
        return objects

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if self._error_code(exc) in _MISSING_CODES:
                return
            raise StorageError(f"S3 delete failed for `{key}`: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 delete failed for `{key}`: {exc}") from exc

    def delete_prefix(self, prefix: str) -> int:
        cleaned = prefix.lstrip("/")
        if not cleaned:
            raise ValidationError("Refusing to delete an empty storage prefix.")

        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self._bucket, Prefix=cleaned):
                keys.extend(entry["Key"] for entry in page.get("Contents", []) if entry.get("Key"))

            deleted = 0
            for start in range(0, len(keys), _DELETE_BATCH_SIZE):
                batch = keys[start : start + _DELETE_BATCH_SIZE]
                response = self._client.delete_objects(
                    Bucket=self._bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
                errors = response.get("Errors", [])
                if errors:
                    first = errors[0]
                    raise StorageError(
                        f"S3 delete failed for `{first.get('Key')}`: {first.get('Message')}"
                    )
                deleted += len(batch)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"S3 prefix delete failed for `{cleaned}`: {exc}") from exc
        return deleted

    @staticmethod
    def _error_code(exc: ClientError) -> str:
        """Return the S3 error code, falling back to the HTTP status as text."""

        error = exc.response.get("Error", {})
        code = str(error.get("Code", "")).strip()
        if code:
            return code
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return str(status or "")

    @classmethod
    def _map_read_error(cls, key: str, exc: ClientError) -> Exception:
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if status == 404 or cls._error_code(exc) in _MISSING_CODES:
            return BlobNotFoundError(key)
        return StorageError(f"S3 read failed for `{key}`: {exc}")


class LocalBlobStore:
    """Filesystem-backed blob store with the same contract as `S3BlobStore`."""

    def __init__(self, root: Path) -> None:
        """Initialize the store with a root directory."""

        self.root = root

    def _path(self, key: str) -> Path:
        """Resolve a key to a path, refusing keys that leave the store root."""

        parts = [part for part in key.split("/") if part]
        if not parts or any(part in {".", ".."} for part in parts):
            raise ValidationError(f"Invalid storage key: {key}")
        return self.root.joinpath(*parts)

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        if_absent: bool = False,
    ) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if if_absent:
                with path.open("xb") as handle:
                    handle.write(data)
                return
            descriptor, temp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=_PARTIAL_SUFFIX
            )
            with os.fdopen(descriptor, "wb") as handle:
                handle.write(data)
            os.replace(temp_name, path)
        except FileExistsError as exc:
            raise PreconditionFailedError(key) from exc
        except OSError as exc:
            raise StorageError(f"Local put failed for `{key}`: {exc}") from exc

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(key) from exc
        except OSError as exc:
            raise StorageError(f"Local get failed for `{key}`: {exc}") from exc

    def head(self, key: str) -> BlobHead:
        path = self._path(key)
        if not path.is_file():
            raise BlobNotFoundError(key)
        return BlobHead(
            size=path.stat().st_size,
            content_type=_LOCAL_CONTENT_TYPES.get(path.suffix.lower()),
        )

    def list(self, prefix: str) -> list[BlobObject]:
        directory = self.root.joinpath(*[part for part in prefix.split("/") if part])
        if not directory.is_dir():
            return []
        normalized_prefix = prefix if prefix.endswith("/") else f"{prefix}/"
        objects: list[BlobObject] = []
        for path in sorted(directory.iterdir()):
            if not path.is_file() or path.name.endswith(_PARTIAL_SUFFIX):
                continue
            stat = path.stat()
            objects.append(
                BlobObject(
                    key=f"{normalized_prefix}{path.name}",
                    file_name=path.name,
                    size=stat.st_size,
                    last_modified=int(stat.st_mtime * 1000),
                )
            )
        return objects

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Local delete failed for `{key}`: {exc}") from exc

    def delete_prefix(self, prefix: str) -> int:
        parts = [part for part in prefix.split("/") if part]
        if not parts:
            raise ValidationError("Refusing to delete an empty storage prefix.")
        directory = self.root.joinpath(*parts)
        if not directory.is_dir():
            return 0
        deleted = sum(1 for path in directory.rglob("*") if path.is_file())
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            raise StorageError(f"Local prefix delete failed for `{prefix}`: {exc}") from exc
        return deleted
