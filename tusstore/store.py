"""Resumable uploads stored as S3 multipart uploads."""

from __future__ import annotations

import io
import os
import queue
import re
import shutil
import threading
import urllib.error
import urllib.request
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta
from typing import IO, BinaryIO, Iterable

from .backend import S3Backend, split_ids
from .errors import HTTPError, MultiError, NotFoundError
from .fileinfo import FileInfo
from .partproducer import PartProducer, _new_temp_file, clean_up_temp_file
from .s3api import Part, S3Presigner, is_aws_error

# Every character that is not allowed in an HTTP header value.
_NON_PRINTABLE = re.compile(r"[^\x09\x20-\x7E]")

_PRESIGN_EXPIRY = timedelta(minutes=15)


class _ChainedReader:
    """Reads several binary streams one after another."""

    def __init__(self, *readers: BinaryIO):
        self._readers = deque(readers)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data = b"".join(reader.read() for reader in self._readers)
            self._readers.clear()
            return data
        while self._readers:
            data = self._readers[0].read(size)
            if data:
                return data
            self._readers.popleft()
        return b""


class S3Store(S3Backend):
    """A data store keeping each upload as an S3 multipart upload plus an info object."""

    def new_upload(self, info: FileInfo) -> S3Upload:
        """Create the multipart upload and its info object."""
        if info.size > self.max_object_size:
            raise ValueError(
                f"s3store: upload size of {info.size} bytes exceeds "
                f"MaxObjectSize of {self.max_object_size} bytes"
            )

        upload_id = info.id or uuid.uuid4().hex
        metadata = {key: _NON_PRINTABLE.sub("?", value) for key, value in (info.meta_data or {}).items()}

        try:
            multipart_id = self.service.create_multipart_upload(
                self.bucket, self.key_with_prefix(upload_id), metadata
            )
        except Exception as err:
            raise RuntimeError(f"s3store: unable to create multipart upload:\n{err}") from err

        info = replace(
            info,
            id=f"{upload_id}+{multipart_id}",
            storage={
                "Type": "s3store",
                "Bucket": self.bucket,
                "Key": self.key_with_prefix(upload_id),
            },
        )

        upload = S3Upload(info.id, self)
        try:
            upload._write_info(info)
        except Exception as err:
            raise RuntimeError(f"s3store: unable to create info file:\n{err}") from err
        return upload

    def get_upload(self, id: str) -> S3Upload:
        """Return a handle on an existing upload; nothing is fetched yet."""
        return S3Upload(id, self)

    @staticmethod
    def _as_s3_upload(upload: object) -> S3Upload:
        if not isinstance(upload, S3Upload):
            raise TypeError(f"expected an S3Upload, got {type(upload).__name__}")
        return upload

    def as_terminatable_upload(self, upload: object) -> S3Upload:
        """Return the upload as one that can be terminated."""
        return self._as_s3_upload(upload)

    def as_length_declarable_upload(self, upload: object) -> S3Upload:
        """Return the upload as one whose length can be declared later."""
        return self._as_s3_upload(upload)

    def as_concatable_upload(self, upload: object) -> S3Upload:
        """Return the upload as one that partial uploads can be concatenated into."""
        return self._as_s3_upload(upload)


class S3Upload:
    """One upload in an S3Store, identified by "uploadId+multipartId"."""

    def __init__(self, id: str, store: S3Store, info: FileInfo | None = None):
        self.id = id
        self.store = store
        self.info = info

    def _write_info(self, info: FileInfo) -> None:
        store = self.store
        upload_id, _ = split_ids(self.id)
        self.info = info
        data = info.to_json()
        store.service.put_object(
            store.bucket,
            store.metadata_key_with_prefix(upload_id + ".info"),
            io.BytesIO(data),
            content_length=len(data),
        )

    def get_info(self) -> FileInfo:
        """Return the upload's info, fetching it from the bucket on first use."""
        if self.info is None:
            self.info = self._fetch_info()
        return replace(self.info)

    def _fetch_info(self) -> FileInfo:
        store = self.store
        upload_id, _ = split_ids(self.id)

        try:
            obj = store.service.get_object(store.bucket, store.metadata_key_with_prefix(upload_id + ".info"))
        except Exception as err:
            if is_aws_error(err, "NoSuchKey"):
                raise NotFoundError() from err
            raise
        with obj:
            info = FileInfo.from_json(obj.body.read())

        try:
            parts = store.list_all_parts(self.id)
        except Exception as err:
            # A missing multipart upload next to an existing info object
            # means the upload has been completed.
            if is_aws_error(err, "NoSuchUpload") or is_aws_error(err, "NoSuchKey"):
                info.offset = info.size
                return info
            raise

        offset = sum(part.size or 0 for part in parts)

        incomplete = store.get_incomplete_part(upload_id)
        if incomplete is not None:
            with incomplete:
                offset += incomplete.content_length or 0

        info.offset = offset
        return info

    def write_chunk(self, offset: int, src: BinaryIO) -> int:
        """Upload the data from src, starting at offset; return the bytes taken in."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        info = self.get_info()
        size = info.size
        part_size = store.calc_optimal_part_size(size)

        parts = store.list_all_parts(self.id)
        next_part_number = len(parts) + 1

        incomplete_file, incomplete_size = store.download_incomplete_part(upload_id)
        try:
            if incomplete_file is not None:
                store.delete_incomplete_part(upload_id)
                src = _ChainedReader(incomplete_file, src)
            return self._upload_parts(
                src, part_size, info, offset, incomplete_size, upload_id, multipart_id, next_part_number
            )
        finally:
            if incomplete_file is not None:
                clean_up_temp_file(incomplete_file)

    def _upload_parts(
        self,
        src: BinaryIO,
        part_size: int,
        info: FileInfo,
        offset: int,
        incomplete_size: int,
        upload_id: str,
        multipart_id: str,
        part_number: int,
    ) -> int:
        store = self.store
        files: queue.Queue = queue.Queue(maxsize=max(store.max_buffered_parts, 0))
        done = threading.Event()
        producer = PartProducer(src, files, done, store.temporary_directory)
        thread = threading.Thread(target=producer.produce, args=(part_size,), daemon=True)
        thread.start()

        finished = False
        bytes_uploaded = 0
        try:
            while True:
                file = files.get()
                if file is None:
                    finished = True
                    break

                n = os.fstat(file.fileno()).st_size
                is_final_chunk = not info.size_is_deferred and info.size == (offset - incomplete_size) + n
                if n >= store.min_part_size or is_final_chunk:
                    self._put_part(upload_id, multipart_id, part_number, file, n)
                else:
                    store.put_incomplete_part(upload_id, file)
                    bytes_uploaded += n
                    return bytes_uploaded - incomplete_size

                offset += n
                bytes_uploaded += n
                part_number += 1
        finally:
            done.set()
            if not finished:
                while (leftover := files.get()) is not None:
                    clean_up_temp_file(leftover)
            thread.join()

        if producer.err is not None:
            raise producer.err
        return bytes_uploaded - incomplete_size

    def _put_part(self, upload_id: str, multipart_id: str, part_number: int, file: IO[bytes], size: int) -> None:
        store = self.store
        key = store.key_with_prefix(upload_id)
        try:
            if not store.disable_content_hashes:
                store.service.upload_part(store.bucket, key, multipart_id, part_number, file)
                return

            # Send the body ourselves to a presigned URL so it is not hashed.
            if not isinstance(store.service, S3Presigner):
                raise RuntimeError("s3store: failed to cast S3 service for presigning")
            url = store.service.presign_upload_part(store.bucket, key, multipart_id, part_number, _PRESIGN_EXPIRY)
            request = urllib.request.Request(
                url, data=file, method="PUT", headers={"Content-Length": str(size)}
            )
            try:
                with urllib.request.urlopen(request) as response:
                    status = response.status
                    body = response.read()
            except urllib.error.HTTPError as err:
                status = err.code
                body = err.read()
            if status != 200:
                raise RuntimeError(
                    f"s3store: unexpected response code {status} for presigned upload: "
                    f"{body.decode('utf-8', 'replace')}"
                )
        finally:
            clean_up_temp_file(file)

    def get_reader(self) -> BinaryIO:
        """Return a stream of the finished upload's content."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)
        key = store.key_with_prefix(upload_id)

        try:
            return store.service.get_object(store.bucket, key).body
        except Exception as err:
            if not is_aws_error(err, "NoSuchKey"):
                raise

        # Tell a missing upload apart from one that has not been finished yet.
        try:
            store.service.list_parts(store.bucket, key, multipart_id, max_parts=0)
        except Exception as err:
            if is_aws_error(err, "NoSuchUpload"):
                raise NotFoundError() from err
            raise
        raise HTTPError("cannot stream non-finished upload", 400)

    def terminate(self) -> None:
        """Abort the multipart upload and delete the upload's objects."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        def abort() -> list[BaseException]:
            try:
                store.service.abort_multipart_upload(store.bucket, store.key_with_prefix(upload_id), multipart_id)
            except Exception as err:
                if not is_aws_error(err, "NoSuchUpload"):
                    return [err]
            return []

        def delete() -> list[BaseException]:
            keys = [
                store.key_with_prefix(upload_id),
                store.metadata_key_with_prefix(upload_id + ".part"),
                store.metadata_key_with_prefix(upload_id + ".info"),
            ]
            try:
                failures = store.service.delete_objects(store.bucket, keys, quiet=True)
            except Exception as err:
                return [err]
            return [
                RuntimeError(f"AWS S3 Error ({failure.code}) for object {failure.key}: {failure.message}")
                for failure in failures or ()
                if failure.code != "NoSuchKey"
            ]

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(abort), pool.submit(delete)]
            errors = [err for future in futures for err in future.result()]

        if errors:
            raise MultiError(errors)

    def finish_upload(self) -> None:
        """Complete the multipart upload from all uploaded parts."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)
        key = store.key_with_prefix(upload_id)

        parts = store.list_all_parts(self.id)
        if not parts:
            # S3 needs at least one part, so an empty upload gets an empty part.
            etag = store.service.upload_part(store.bucket, key, multipart_id, 1, io.BytesIO(b""))
            parts = [Part(etag=etag, part_number=1)]

        completed = [Part(etag=part.etag, part_number=part.part_number) for part in parts]
        store.service.complete_multipart_upload(store.bucket, key, multipart_id, completed)

    def concat_uploads(self, partial_uploads: Iterable[S3Upload]) -> None:
        """Make this upload the concatenation of the partial uploads."""
        partial_uploads = list(partial_uploads)
        has_small_part = any(
            upload.get_info().size < self.store.min_part_size for upload in partial_uploads
        )
        # Parts below the minimum size cannot be copied into a multipart upload.
        if has_small_part:
            self._concat_using_download(partial_uploads)
        else:
            self._concat_using_multipart(partial_uploads)

    def _concat_using_download(self, partial_uploads: list[S3Upload]) -> None:
        store = self.store
        upload_id, multipart_id = split_ids(self.id)
        key = store.key_with_prefix(upload_id)

        file = _new_temp_file(store.temporary_directory)
        try:
            for partial in partial_uploads:
                partial_id, _ = split_ids(partial.id)
                with store.service.get_object(store.bucket, store.key_with_prefix(partial_id)) as obj:
                    shutil.copyfileobj(obj.body, file)
            file.seek(0)
            store.service.put_object(store.bucket, key, file)
        finally:
            clean_up_temp_file(file)

        # The multipart upload is no longer needed; its outcome does not matter.
        def abort() -> None:
            try:
                store.service.abort_multipart_upload(store.bucket, key, multipart_id)
            except Exception:
                pass

        threading.Thread(target=abort, daemon=True).start()

    def _concat_using_multipart(self, partial_uploads: list[S3Upload]) -> None:
        store = self.store
        upload_id, multipart_id = split_ids(self.id)
        key = store.key_with_prefix(upload_id)

        def copy(part_number: int, partial: S3Upload) -> BaseException | None:
            partial_id, _ = split_ids(partial.id)
            try:
                store.service.upload_part_copy(
                    store.bucket, key, multipart_id, part_number, f"{store.bucket}/{partial_id}"
                )
            except Exception as err:
                return err
            return None

        errors: list[BaseException] = []
        if partial_uploads:
            with ThreadPoolExecutor(max_workers=len(partial_uploads)) as pool:
                results = pool.map(copy, range(1, len(partial_uploads) + 1), partial_uploads)
                errors = [err for err in results if err is not None]

        if errors:
            raise MultiError(errors)
        self.finish_upload()

    def declare_length(self, length: int) -> None:
        """Set the final size of an upload created with a deferred length."""
        info = self.get_info()
        info.size = length
        info.size_is_deferred = False
        self._write_info(info)