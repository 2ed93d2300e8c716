"""Identifiers, file naming, content sniffing and checksums."""

from __future__ import annotations

import hashlib
import itertools
import os
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from filesrv.config import Config

_HEX_ID = re.compile(r"[0-9a-fA-F]{24}")
_DECIMAL = re.compile(r"[+-]?[0-9]+")
_PROCESS_UNIQUE = os.urandom(5)
_counter = itertools.count(random.randrange(1 << 24))


@dataclass(frozen=True)
class ObjectId:
    """A 12-byte identifier: 4 bytes of seconds, 5 random, 3 of counter."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != 12:
            raise ValueError("an ObjectId is exactly 12 bytes")

    @classmethod
    def new(cls) -> ObjectId:
        seconds = int(time.time()) & 0xFFFFFFFF
        count = next(_counter) & 0xFFFFFF
        return cls(seconds.to_bytes(4, "big") + _PROCESS_UNIQUE + count.to_bytes(3, "big"))

    @classmethod
    def from_hex(cls, value: str) -> ObjectId:
        if not _HEX_ID.fullmatch(value):
            raise ValueError(f"the provided hex string is not a valid ObjectID: {value!r}")
        return cls(bytes.fromhex(value))

    def timestamp(self) -> datetime:
        """Creation time in the local time zone."""
        seconds = int.from_bytes(self.raw[:4], "big")
        return datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone()

    def hex(self) -> str:
        return self.raw.hex()

    def __str__(self) -> str:
        return self.hex()


class ChecksumError(ValueError):
    """The SHA-1 of the data does not match the checksum given with it."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"expect {actual} but given {expected}")
        self.expected = expected
        self.actual = actual


def ensure_dir(path: str | os.PathLike) -> Path:
    """Create path and its parents if they do not exist yet."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def new_name(base: str | os.PathLike, buffer: bytes | None = None) -> str:
    """A fresh path under base/<date> named by a new ObjectId, extension sniffed from buffer."""
    object_id = ObjectId.new()
    directory = ensure_dir(Path(base) / object_id.timestamp().strftime("%Y-%m-%d"))
    ext = detect_extension(buffer) if buffer is not None else ""
    return os.path.join(directory, object_id.hex()) + ext


_HTML_SIGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1",
    b"<DIV", b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B",
    b"<BODY", b"<BR", b"<P", b"<!--",
)

_SIGNATURES = (
    (b"%PDF-", "application/pdf"),
    (b"BM", "image/bmp"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x00asm", "application/wasm"),
)

_EXTENSIONS = {
    "application/pdf": ".pdf",
    "application/wasm": ".wasm",
    "image/gif": ".gif",
    "image/jpeg": ".jpeg",
    "image/png": ".png",
    "image/webp": ".webp",
    "text/html": ".htm",
    "text/xml": ".xml",
}


def _is_binary_byte(b: int) -> bool:
    return b <= 0x08 or b == 0x0B or 0x0E <= b <= 0x1A or 0x1C <= b <= 0x1F


def detect_content_type(buffer: bytes) -> str:
    """Sniff a MIME type from at most the first 512 bytes of buffer."""
    data = bytes(buffer[:512])
    text = data.lstrip(b"\t\n\x0c\r ")
    for sig in _HTML_SIGS:
        if len(text) > len(sig) and text[: len(sig)].upper() == sig and text[len(sig)] in b" >":
            return "text/html; charset=utf-8"
    if text.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    if data[:4] == b"RIFF" and data[8:14] == b"WEBPVP":
        return "image/webp"
    for prefix, content_type in _SIGNATURES:
        if data.startswith(prefix):
            return content_type
    if any(_is_binary_byte(b) for b in text):
        return "application/octet-stream"
    return "text/plain; charset=utf-8"


def detect_extension(buffer: bytes) -> str:
    """File extension for the sniffed type of buffer, or "" if none is known."""
    media = detect_content_type(buffer).split(";", 1)[0].strip()
    return _EXTENSIONS.get(media, "")


def determine_chunk_size(metadata: Mapping[str, str], config: Config) -> int:
    """Chunk size asked for by the client, but never over the server's limit."""
    limit = int(config.get("chunk_size_limit", default=1 << 20))
    requested = metadata.get("Chunk-Size")
    if requested is None or not _DECIMAL.fullmatch(requested):
        return limit
    size = int(requested)
    return size if 0 < size <= limit else limit


def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def checksum(expected: str, data: bytes) -> str:
    """SHA-1 of data in hex; raises ChecksumError if it differs from expected."""
    actual = sha1_hex(data)
    if actual != expected:
        raise ChecksumError(expected, actual)
    return actual