[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tusstore"
version = "0.1.0"
description = "S3-backed storage and in-memory locking for resumable tus uploads"
requires-python = ">=3.10"
dependencies = []
keywords = ["tus", "upload", "resumable", "s3", "multipart", "storage", "locking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tusstore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
