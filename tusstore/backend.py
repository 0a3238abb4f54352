"""Configuration of an S3-backed store and its low-level bucket helpers."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import IO

from .partproducer import _new_temp_file, clean_up_temp_file
from .s3api import GetObjectResult, Part, S3API, S3Error, is_aws_error

_MIB = 1024 * 1024
_GIB = 1024 * _MIB
_TIB = 1024 * _GIB

_MISSING_PART_CODES = ("NoSuchKey", "NotFound", "AccessDenied")


def split_ids(id: str) -> tuple[str, str]:
    """Split "uploadId+multipartId" into its two halves; ("", "") without a '+'."""
    upload_id, sep, multipart_id = id.partition("+")
    if not sep:
        return "", ""
    return upload_id, multipart_id


def _with_prefix(prefix: str, key: str) -> str:
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    return prefix + key


@dataclass
class S3Backend:
    """Bucket, service and part-size limits, with helpers for object keys and parts."""

    bucket: str
    service: S3API
    object_prefix: str = ""
    metadata_object_prefix: str = ""
    max_part_size: int = 5 * _GIB
    min_part_size: int = 5 * _MIB
    preferred_part_size: int = 50 * _MIB
    max_multipart_parts: int = 10000
    max_object_size: int = 5 * _TIB
    max_buffered_parts: int = 20
    temporary_directory: str = ""
    disable_content_hashes: bool = False

    def calc_optimal_part_size(self, size: int) -> int:
        """Pick a part size that fits size into max_multipart_parts parts.

        Raises ValueError if that size would exceed max_part_size.
        """
        if size <= self.preferred_part_size * self.max_multipart_parts:
            optimal = self.preferred_part_size
        else:
            quotient, remainder = divmod(size, self.max_multipart_parts)
            optimal = quotient if remainder == 0 else quotient + 1

        if optimal > self.max_part_size:
            raise ValueError(
                f"calcOptimalPartSize: to upload {size} bytes optimalPartSize {optimal} "
                f"must exceed MaxPartSize {self.max_part_size}"
            )
        return optimal

    def key_with_prefix(self, key: str) -> str:
        """Key of an upload's data object."""
        return _with_prefix(self.object_prefix, key)

    def metadata_key_with_prefix(self, key: str) -> str:
        """Key of an upload's .info or .part object."""
        return _with_prefix(self.metadata_object_prefix or self.object_prefix, key)

    def list_all_parts(self, id: str) -> list[Part]:
        """List every part of the multipart upload, following pagination."""
        upload_id, multipart_id = split_ids(id)
        parts: list[Part] = []
        marker = 0
        while True:
            page = self.service.list_parts(
                self.bucket,
                self.key_with_prefix(upload_id),
                multipart_id,
                part_number_marker=marker,
            )
            parts.extend(page.parts)
            if not page.is_truncated:
                return parts
            marker = page.next_part_number_marker

    def get_incomplete_part(self, upload_id: str) -> GetObjectResult | None:
        """Fetch the stored incomplete part, or None if there is none."""
        try:
            return self.service.get_object(self.bucket, self.metadata_key_with_prefix(upload_id + ".part"))
        except S3Error as err:
            if any(is_aws_error(err, code) for code in _MISSING_PART_CODES):
                return None
            raise

    def download_incomplete_part(self, upload_id: str) -> tuple[IO[bytes] | None, int]:
        """Copy the incomplete part into a temporary file.

        Returns the rewound file and its size, or (None, 0) if there is no part.
        """
        obj = self.get_incomplete_part(upload_id)
        if obj is None:
            return None, 0

        with obj:
            file = _new_temp_file(self.temporary_directory)
            try:
                shutil.copyfileobj(obj.body, file)
                written = file.tell()
                if obj.content_length is not None and written < obj.content_length:
                    raise OSError("short read of incomplete upload")
                file.seek(0)
            except BaseException:
                clean_up_temp_file(file)
                raise
        return file, written

    def put_incomplete_part(self, upload_id: str, file: IO[bytes]) -> None:
        """Store file as the incomplete part, then remove the file."""
        try:
            self.service.put_object(self.bucket, self.metadata_key_with_prefix(upload_id + ".part"), file)
        finally:
            clean_up_temp_file(file)

    def delete_incomplete_part(self, upload_id: str) -> None:
        """Delete the stored incomplete part."""
        self.service.delete_object(self.bucket, self.metadata_key_with_prefix(upload_id + ".part"))