"""Blob and row storage adapters."""

from .blobstore import (
    AudiobookScope,
    BlobHead,
    BlobObject,
    BlobStore,
    LocalBlobStore,
    S3BlobStore,
    unclaimed_owner_id,
)
from .rowstore import AudiobookRepository

__all__ = [
    "AudiobookRepository",
    "AudiobookScope",
    "BlobHead",
    "BlobObject",
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "unclaimed_owner_id",
]
