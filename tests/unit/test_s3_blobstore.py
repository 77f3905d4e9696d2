"""Unit tests for the S3 blob store adapter using botocore's response stubber."""

from __future__ import annotations

from datetime import datetime, timezone
import io
from typing import Iterator

import boto3
from botocore.response import StreamingBody
from botocore.stub import Stubber
import pytest

from chaptervoice.errors import (
    BlobNotFoundError,
    PreconditionFailedError,
    StorageError,
    ValidationError,
)
from chaptervoice.storage.blobstore import S3BlobStore

_BUCKET = "audiobooks"
_PREFIX = "chaptervoice/audiobooks_v1/users/u/b1-audiobook/"


@pytest.fixture
def s3_client():  # type: ignore[no-untyped-def]
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )


@pytest.fixture
def stubbed(s3_client) -> Iterator[tuple[S3BlobStore, Stubber]]:  # type: ignore[no-untyped-def]
    """Provide a store and an active stubber bound to the same client."""

    stubber = Stubber(s3_client)
    with stubber:
        yield S3BlobStore(s3_client, _BUCKET), stubber
        stubber.assert_no_pending_responses()


def test_put_sends_encryption_and_conditional_header(
    stubbed: tuple[S3BlobStore, Stubber],
) -> None:
    """Puts should request AES256 and add `IfNoneMatch` only for if-absent writes."""

    store, stubber = stubbed
    key = f"{_PREFIX}audiobook.meta.json"
    stubber.add_response(
        "put_object",
        {},
        {
            "Bucket": _BUCKET,
            "Key": key,
            "Body": b"{}",
            "ContentType": "application/json",
            "ServerSideEncryption": "AES256",
            "IfNoneMatch": "*",
        },
    )
    stubber.add_response(
        "put_object",
        {},
        {
            "Bucket": _BUCKET,
            "Key": key,
            "Body": b"{}",
            "ContentType": "application/json",
            "ServerSideEncryption": "AES256",
        },
    )

    store.put(key, b"{}", "application/json", if_absent=True)
    store.put(key, b"{}", "application/json")


def test_put_maps_precondition_failure(stubbed: tuple[S3BlobStore, Stubber]) -> None:
    """A 412 on an if-absent put should surface as `PreconditionFailedError`."""

    store, stubber = stubbed
    stubber.add_client_error(
        "put_object",
        service_error_code="PreconditionFailed",
        http_status_code=412,
    )

    with pytest.raises(PreconditionFailedError):
        store.put(f"{_PREFIX}audiobook.meta.json", b"{}", "application/json", if_absent=True)


def test_put_maps_other_failures_to_storage_error(stubbed: tuple[S3BlobStore, Stubber]) -> None:
    store, stubber = stubbed
    stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)

    with pytest.raises(StorageError):
        store.put(f"{_PREFIX}0001__A.mp3", b"x", "audio/mpeg")


def test_get_returns_body_and_maps_missing_key(stubbed: tuple[S3BlobStore, Stubber]) -> None:
    """Gets should read the streaming body and translate `NoSuchKey`."""

    store, stubber = stubbed
    key = f"{_PREFIX}0001__A.mp3"
    stubber.add_response(
        "get_object",
        {"Body": StreamingBody(io.BytesIO(b"audio"), 5)},
        {"Bucket": _BUCKET, "Key": key},
    )
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)

    assert store.get(key) == b"audio"
    with pytest.raises(BlobNotFoundError):
        store.get(key)


def test_head_maps_bare_404(stubbed: tuple[S3BlobStore, Stubber]) -> None:
    """Heads should report metadata and map a code-less 404 to a miss."""

    store, stubber = stubbed
    key = f"{_PREFIX}complete.m4b"
    stubber.add_response(
        "head_object",
        {"ContentLength": 12, "ContentType": "audio/mp4", "ETag": '"abc"'},
        {"Bucket": _BUCKET, "Key": key},
    )
    stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)

    head = store.head(key)

    assert (head.size, head.content_type, head.etag) == (12, "audio/mp4", '"abc"')
    with pytest.raises(BlobNotFoundError):
        store.head(key)


def test_list_returns_direct_children(stubbed: tuple[S3BlobStore, Stubber]) -> None:
    """Listing should strip the prefix and skip nested keys."""

    store, stubber = stubbed
    modified = datetime(2024, 1, 2, tzinfo=timezone.utc)
    stubber.add_response(
        "list_objects_v2",
        {
            "IsTruncated": False,
            "Contents": [
                {"Key": f"{_PREFIX}0001__A.mp3", "Size": 3, "LastModified": modified, "ETag": '"1"'},
                {"Key": f"{_PREFIX}nested/0002__B.mp3", "Size": 4, "LastModified": modified},
            ],
        },
        {"Bucket": _BUCKET, "Prefix": _PREFIX},
    )

    listed = store.list(_PREFIX)

    assert [item.file_name for item in listed] == ["0001__A.mp3"]
    assert listed[0].size == 3
    assert listed[0].last_modified == int(modified.timestamp() * 1000)


def test_delete_ignores_missing_keys(stubbed: tuple[S3BlobStore, Stubber]) -> None:
    store, stubber = stubbed
    stubber.add_client_error("delete_object", service_error_code="NoSuchKey", http_status_code=404)

    store.delete(f"{_PREFIX}0001__A.mp3")


def test_delete_prefix_batches_keys(stubbed: tuple[S3BlobStore, Stubber]) -> None:
    """Prefix deletion should list every key and remove them with `delete_objects`."""

    store, stubber = stubbed
    keys = [f"{_PREFIX}0001__A.mp3", f"{_PREFIX}complete.mp3"]
    stubber.add_response(
        "list_objects_v2",
        {"IsTruncated": False, "Contents": [{"Key": key, "Size": 1} for key in keys]},
        {"Bucket": _BUCKET, "Prefix": _PREFIX},
    )
    stubber.add_response(
        "delete_objects",
        {"Deleted": [{"Key": key} for key in keys]},
        {
            "Bucket": _BUCKET,
            "Delete": {"Objects": [{"Key": key} for key in keys], "Quiet": True},
        },
    )

    assert store.delete_prefix(_PREFIX) == 2


def test_delete_prefix_reports_per_key_errors(stubbed: tuple[S3BlobStore, Stubber]) -> None:
    store, stubber = stubbed
    key = f"{_PREFIX}0001__A.mp3"
    stubber.add_response(
        "list_objects_v2",
        {"IsTruncated": False, "Contents": [{"Key": key, "Size": 1}]},
        {"Bucket": _BUCKET, "Prefix": _PREFIX},
    )
    stubber.add_response(
        "delete_objects",
        {"Errors": [{"Key": key, "Code": "AccessDenied", "Message": "denied"}]},
        {"Bucket": _BUCKET, "Delete": {"Objects": [{"Key": key}], "Quiet": True}},
    )

    with pytest.raises(StorageError, match="denied"):
        store.delete_prefix(_PREFIX)


def test_delete_prefix_refuses_empty_prefix(s3_client) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationError):
        S3BlobStore(s3_client, _BUCKET).delete_prefix("/")
