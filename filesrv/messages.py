"""Request metadata, the messages of the file service and its streams."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, MutableMapping
from dataclasses import dataclass, field
from datetime import datetime


def canonical_key(key: str) -> str:
    """Normalise a metadata key: each dash-separated word capitalised."""
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


class Metadata(MutableMapping):
    """Case-insensitive string mapping of request metadata."""

    def __init__(self, *args, **kwargs) -> None:
        self._data: dict[str, str] = {}
        self.update(*args, **kwargs)

    def __getitem__(self, key: str) -> str:
        return self._data[canonical_key(key)]

    def __setitem__(self, key: str, value: str) -> None:
        self._data[canonical_key(key)] = value

    def __delitem__(self, key: str) -> None:
        self._data.pop(canonical_key(key))

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def copy(self) -> Metadata:
        return Metadata(self._data)

    def __repr__(self) -> str:
        return f"Metadata({self._data!r})"


@dataclass
class Chunk:
    data: bytes = b""
    checksum: str = ""


@dataclass
class Description:
    ext: str = ""
    size: int = 0
    created_at: datetime | None = None


@dataclass
class UploadReq:
    chunk: Chunk = field(default_factory=Chunk)


@dataclass
class UploadResp:
    id: str = ""
    timestamp: datetime | None = None


@dataclass
class DownloadReq:
    id: str = ""


@dataclass
class DownloadResp:
    chunk: Chunk = field(default_factory=Chunk)
    desc: Description | None = None
    timestamp: datetime | None = None


@dataclass
class UploadStream:
    """Server side of an upload: chunks come in, acknowledgements go out."""

    requests: Iterable[UploadReq] = ()
    responses: list[UploadResp] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._pending = iter(self.requests)

    def recv(self) -> UploadReq | None:
        """Next chunk from the client, or None once the client has finished."""
        return next(self._pending, None)

    def send(self, message: UploadResp) -> None:
        self.responses.append(message)


@dataclass
class DownloadStream:
    """Server side of a download: responses are collected as they are sent."""

    responses: list[DownloadResp] = field(default_factory=list)

    def send(self, message: DownloadResp) -> None:
        self.responses.append(message)