# tusstore

Storage pieces for a tus resumable-upload server:

- `tusstore.store.S3Store` keeps uploads in an S3 (or S3-compatible) bucket.
  The data of each upload goes into an S3 multipart upload, its description
  into a JSON `.info` object, and bytes that are still too few for a full part
  into a `.part` object.
- `tusstore.memorylocker.MemoryLocker` hands out exclusive per-upload locks
  inside a single process.

The package has no runtime dependencies. It talks to S3 through an object you
supply that implements `tusstore.s3api.S3API`, so any client library can sit
behind it.

## Installation

```
pip install tusstore
```

## Locking

```python
from tusstore.memorylocker import MemoryLocker
from tusstore.errors import FileLockedError

locker = MemoryLocker()
lock = locker.new_lock("upload-id")
lock.lock()
try:
    locker.new_lock("upload-id").lock()
except FileLockedError:
    print("already locked")
lock.unlock()
```

Unlocking a lock that is not held does nothing. A `MemoryLock` is also a
context manager: `with locker.new_lock("upload-id"): ...` locks on entry and
unlocks on exit. Locks exist only in the memory of the locker object.

## Storing uploads in S3

```python
from tusstore.store import S3Store
from tusstore.fileinfo import FileInfo

store = S3Store("my-bucket", service)   # service implements S3API
store.object_prefix = "uploads"

upload = store.new_upload(FileInfo(size=1024, meta_data={"filename": "a.txt"}))
with open("a.txt", "rb") as src:
    written = upload.write_chunk(0, src)
upload.finish_upload()

info = upload.get_info()
print(info.id, info.offset, info.size)
```

An upload is found again by its id with `store.get_upload(id)`. The id has
the form `<upload id>+<multipart id>`; if `FileInfo.id` is empty when the
upload is created, a random upload id is generated.

Uploads can also be:

- terminated: `store.as_terminatable_upload(upload).terminate()`
- given a length later: `store.as_length_declarable_upload(upload).declare_length(n)`
- built from other uploads: `store.as_concatable_upload(upload).concat_uploads([a, b])`
  (by copying parts server-side, or by downloading and re-uploading when any
  partial upload is smaller than `min_part_size`)
- read back once finished: `upload.get_reader()`

Meta data attached to the multipart upload has every character that is not
allowed in an HTTP header value replaced by `?`; the `.info` object keeps the
meta data unchanged.

### Settings

`S3Store` is a dataclass; besides `bucket` and `service` it has:

- `object_prefix`: prefix for the data objects' keys.
- `metadata_object_prefix`: prefix for `.info` and `.part` keys; falls back
  to `object_prefix` when empty.
- `min_part_size`, `preferred_part_size`, `max_part_size`,
  `max_multipart_parts`, `max_object_size`: part and object size limits. The
  defaults follow AWS S3's limits (5 MiB, 50 MiB, 5 GiB, 10000 parts, 5 TiB).
- `max_buffered_parts`: how many parts may wait on disk while one is sent.
- `temporary_directory`: where data in transit is buffered in temporary
  files; the system default when empty.
- `disable_content_hashes`: send parts with an HTTP PUT to a presigned URL
  instead of through `upload_part`. The service must then also implement
  `tusstore.s3api.S3Presigner`.

`store.calc_optimal_part_size(size)` gives the part size used for an upload
of `size` bytes.

## Errors

Failures are raised as exceptions. From `tusstore.errors`: `NotFoundError`
(status 404) when an upload does not exist, `FileLockedError` (423) for a
held lock, `HTTPError` carrying a status code (for example 400 when reading
an unfinished upload), and `MultiError` when several S3 calls failed at once.
Errors from the S3 service are `tusstore.s3api.S3Error` with an AWS error
code. An upload larger than `max_object_size`, or one that needs parts above
`max_part_size`, raises `ValueError`.

## What this package does not do

It contains no HTTP server and does not speak the tus protocol itself; it
provides the storage and locking that such a server would call. It also
ships no S3 client: you supply the `S3API` implementation.

## Running the tests

```
pip install -e ".[test]"
pytest
```