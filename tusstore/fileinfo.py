"""Description of an upload and its JSON form stored next to the data."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

_SHORT_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}
_UNICODE_ESCAPED = frozenset("<>&\u2028\u2029")


def _quote(text: str) -> str:
    parts = ['"']
    for ch in text:
        code = ord(ch)
        if ch in _SHORT_ESCAPES:
            parts.append(_SHORT_ESCAPES[ch])
        elif code < 0x20 or ch in _UNICODE_ESCAPED:
            parts.append(f"\\u{code:04x}")
        elif 0xD800 <= code <= 0xDFFF:
            parts.append("\ufffd")
        else:
            parts.append(ch)
    parts.append('"')
    return "".join(parts)


def _encode(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, dict):
        items = ",".join(f"{_quote(k)}:{_encode(value[k])}" for k in sorted(value))
        return "{" + items + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(v) for v in value) + "]"
    raise TypeError(f"cannot encode value of type {type(value).__name__}")


@dataclass
class FileInfo:
    """State of one upload: identity, size, progress and meta data."""

    id: str = ""
    size: int = 0
    size_is_deferred: bool = False
    offset: int = 0
    meta_data: dict[str, str] | None = None
    is_partial: bool = False
    is_final: bool = False
    partial_uploads: list[str] | None = None
    storage: dict[str, str] | None = None

    def to_json(self) -> bytes:
        """Encode as compact UTF-8 JSON with the field names used on storage."""
        fields = [
            ("ID", self.id),
            ("Size", self.size),
            ("SizeIsDeferred", self.size_is_deferred),
            ("Offset", self.offset),
            ("MetaData", self.meta_data),
            ("IsPartial", self.is_partial),
            ("IsFinal", self.is_final),
            ("PartialUploads", self.partial_uploads),
            ("Storage", self.storage),
        ]
        body = ",".join(f"{_quote(name)}:{_encode(value)}" for name, value in fields)
        return ("{" + body + "}").encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> FileInfo:
        """Decode the JSON form written by to_json."""
        obj = json.loads(data)
        if not isinstance(obj, dict):
            raise ValueError("file info must be a JSON object")
        meta = obj.get("MetaData")
        partials = obj.get("PartialUploads")
        storage = obj.get("Storage")
        return cls(
            id=obj.get("ID") or "",
            size=int(obj.get("Size") or 0),
            size_is_deferred=bool(obj.get("SizeIsDeferred", False)),
            offset=int(obj.get("Offset") or 0),
            meta_data=dict(meta) if meta is not None else None,
            is_partial=bool(obj.get("IsPartial", False)),
            is_final=bool(obj.get("IsFinal", False)),
            partial_uploads=list(partials) if partials is not None else None,
            storage=dict(storage) if storage is not None else None,
        )