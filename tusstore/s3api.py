"""The interface the store uses to talk to an S3-compatible service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import BinaryIO


class S3Error(Exception):
    """An error reported by the S3 service, identified by its code."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


def is_aws_error(err: BaseException | None, code: str) -> bool:
    """Tell whether err is an S3Error with the given code."""
    return isinstance(err, S3Error) and err.code == code


@dataclass(frozen=True)
class Part:
    """One part of a multipart upload."""

    size: int | None = None
    etag: str | None = None
    part_number: int | None = None


@dataclass
class ListPartsResult:
    """One page of the parts of a multipart upload."""

    parts: list[Part] = field(default_factory=list)
    is_truncated: bool = False
    next_part_number_marker: int | None = None


@dataclass
class GetObjectResult:
    """An object fetched from the bucket; close it when done with the body."""

    body: BinaryIO
    content_length: int | None = None

    def __enter__(self) -> GetObjectResult:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.body.close()


@dataclass(frozen=True)
class DeleteError:
    """A failure to delete one object in a batch delete."""

    key: str
    code: str
    message: str


class S3API(ABC):
    """Operations on an S3-compatible bucket. Failures raise S3Error."""

    @abstractmethod
    def create_multipart_upload(self, bucket: str, key: str, metadata: dict[str, str]) -> str:
        """Start a multipart upload and return its upload id."""

    @abstractmethod
    def put_object(self, bucket: str, key: str, body: BinaryIO, content_length: int | None = None) -> None:
        """Store body as the object at key."""

    @abstractmethod
    def list_parts(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number_marker: int | None = None,
        max_parts: int | None = None,
    ) -> ListPartsResult:
        """List the parts of a multipart upload after part_number_marker."""

    @abstractmethod
    def upload_part(self, bucket: str, key: str, upload_id: str, part_number: int, body: BinaryIO) -> str | None:
        """Upload one part and return its ETag."""

    @abstractmethod
    def get_object(self, bucket: str, key: str) -> GetObjectResult:
        """Fetch the object at key."""

    @abstractmethod
    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort a multipart upload, removing its parts."""

    @abstractmethod
    def delete_object(self, bucket: str, key: str) -> None:
        """Delete the object at key."""

    @abstractmethod
    def delete_objects(self, bucket: str, keys: list[str], quiet: bool = True) -> list[DeleteError]:
        """Delete several objects and return the per-object failures."""

    @abstractmethod
    def complete_multipart_upload(self, bucket: str, key: str, upload_id: str, parts: list[Part]) -> None:
        """Assemble the listed parts into the final object."""

    @abstractmethod
    def upload_part_copy(self, bucket: str, key: str, upload_id: str, part_number: int, copy_source: str) -> None:
        """Copy an existing object (bucket/key) in as one part."""


class S3Presigner(ABC):
    """Creates presigned URLs for uploading parts without hashing the body."""

    @abstractmethod
    def presign_upload_part(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        expires: timedelta,
    ) -> str:
        """Return a URL that accepts a PUT of the part's body."""