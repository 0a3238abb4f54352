"""Slicing an incoming byte stream into part-sized temporary files."""

from __future__ import annotations

import contextlib
import os
import queue
import tempfile
import threading
from typing import BinaryIO, IO

TEMP_FILE_PREFIX = "s3store-tmp-"

_COPY_CHUNK = 64 * 1024
_POLL_INTERVAL = 0.01


def clean_up_temp_file(file: IO[bytes]) -> None:
    """Close a temporary file and remove it from disk."""
    file.close()
    with contextlib.suppress(FileNotFoundError):
        os.remove(file.name)


def _new_temp_file(directory: str) -> IO[bytes]:
    return tempfile.NamedTemporaryFile(
        mode="w+b",
        prefix=TEMP_FILE_PREFIX,
        dir=directory or None,
        delete=False,
    )


def _copy_limited(reader: BinaryIO, target: IO[bytes], limit: int) -> int:
    remaining = limit
    while remaining > 0:
        chunk = reader.read(min(remaining, _COPY_CHUNK))
        if not chunk:
            break
        target.write(chunk)
        remaining -= len(chunk)
    return limit - remaining


class PartProducer:
    """Reads a stream and hands out temporary files of at most part_size bytes.

    Files are put on the ``files`` queue, rewound to their start. When the
    producer stops, whether the stream ended, reading failed or ``done`` was
    set, it puts ``None`` on the queue; consumers must read until they see it.
    A reading failure is kept in ``err``.
    """

    def __init__(
        self,
        reader: BinaryIO,
        files: queue.Queue,
        done: threading.Event,
        temporary_directory: str = "",
    ):
        self.reader = reader
        self.files = files
        self.done = done
        self.temporary_directory = temporary_directory
        self.err: BaseException | None = None

    def produce(self, part_size: int) -> None:
        """Produce parts until the stream ends, fails, or done is set."""
        try:
            while True:
                try:
                    file = self._next_part(part_size)
                except Exception as exc:
                    self.err = exc
                    return
                if file is None:
                    return
                if not self._send(file):
                    clean_up_temp_file(file)
                    return
        finally:
            self.files.put(None)

    def _send(self, file: IO[bytes]) -> bool:
        while not self.done.is_set():
            try:
                self.files.put(file, timeout=_POLL_INTERVAL)
            except queue.Full:
                continue
            return True
        return False

    def _next_part(self, size: int) -> IO[bytes] | None:
        file = _new_temp_file(self.temporary_directory)
        try:
            written = _copy_limited(self.reader, file, size)
        except BaseException:
            clean_up_temp_file(file)
            raise

        if written == 0:
            clean_up_temp_file(file)
            return None

        file.seek(0)
        return file