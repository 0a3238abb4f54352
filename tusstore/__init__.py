"""S3-backed storage and in-memory locking for resumable tus uploads."""

__version__ = "0.1.0"
__all__ = ["errors", "memorylocker", "fileinfo", "s3api", "partproducer", "backend", "store"]