"""Streaming upload and download of stored files."""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Mapping
from datetime import datetime, timezone

from filesrv.config import Config
from filesrv.messages import (
    Chunk,
    Description,
    DownloadReq,
    DownloadResp,
    DownloadStream,
    UploadResp,
    UploadStream,
)
from filesrv.status import Code, StatusError
from filesrv.util import (
    ChecksumError,
    ObjectId,
    checksum,
    determine_chunk_size,
    new_name,
    sha1_hex,
)

log = logging.getLogger(__name__)

_DEFAULT_BYTES_LIMIT = 5 << 20
_STORED_EXT = ".jpeg"


def _utc(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class FileHandler:
    """Serves uploads into and downloads out of the configured base directory."""

    def __init__(self, config: Config) -> None:
        self.config = config

    def _base(self, metadata: Mapping[str, str]) -> str:
        return os.path.join(
            self.config.get("dir_base", default=""),
            metadata.get("Domain", ""),
            metadata.get("Alias", ""),
        )

    def upload(self, metadata: Mapping[str, str], stream: UploadStream) -> None:
        """Receive chunks from stream and append them to a newly named file.

        Each stored chunk is acknowledged with the file's id. On failure the
        partly written file is removed and a StatusError is raised.
        """
        size_max = self.config.get("bytes_limit", default=_DEFAULT_BYTES_LIMIT)
        name = ""
        try:
            with contextlib.ExitStack() as stack:
                file = None
                response: UploadResp | None = None
                size = 0
                while True:
                    try:
                        request = stream.recv()
                    except StatusError:
                        raise
                    except Exception as exc:
                        raise StatusError(Code.UNKNOWN, str(exc)) from exc
                    if request is None:
                        log.info("Finished receiving file %s", name)
                        break

                    chunk = request.chunk
                    try:
                        checksum(chunk.checksum, chunk.data)
                    except ChecksumError as exc:
                        raise StatusError(
                            Code.DATA_LOSS,
                            f"Incorrect checksum! Expect {chunk.checksum} but given {exc.actual}",
                        ) from exc

                    size += len(chunk.data)
                    if size > size_max:
                        raise StatusError(
                            Code.RESOURCE_EXHAUSTED,
                            f"file is too large: {size} > {size_max}",
                        )
                    log.debug("Received %d bytes of file %s", size, name)

                    if file is None:
                        try:
                            name = new_name(self._base(metadata), chunk.data)
                        except (OSError, ValueError) as exc:
                            raise StatusError(
                                Code.INTERNAL, f"error determining file name: {exc}"
                            ) from exc
                        log.debug("Generate file name %s", name)
                        try:
                            fd = os.open(name, os.O_APPEND | os.O_CREAT | os.O_WRONLY, 0o755)
                        except OSError as exc:
                            raise StatusError(
                                Code.INTERNAL, f"error opening file {name}: {exc}"
                            ) from exc
                        file = stack.enter_context(os.fdopen(fd, "ab"))
                        stem = os.path.splitext(os.path.basename(name))[0]
                        response = UploadResp(id=stem, timestamp=_utc(os.fstat(fd).st_mtime))

                    try:
                        file.write(chunk.data)
                        file.flush()
                    except OSError as exc:
                        raise StatusError(
                            Code.INTERNAL, f"error writing file name {name}: {exc}"
                        ) from exc

                    stream.send(response)
        except Exception as exc:
            log.error(
                "Failed to receive file! err=[%s] metadata=[%s] file=[%s]",
                exc,
                dict(metadata),
                name,
            )
            if name:
                with contextlib.suppress(OSError):
                    os.remove(name)
            raise

    def download(
        self, metadata: Mapping[str, str], request: DownloadReq, stream: DownloadStream
    ) -> None:
        """Send the stored file named by request.id to stream in chunks."""
        try:
            self._download(metadata, request, stream)
        except Exception as exc:
            log.error(
                "Failed to send file! err=[%s] metadata=[%s] id=[%s]",
                exc,
                dict(metadata),
                request.id,
            )
            raise

    def _download(
        self, metadata: Mapping[str, str], request: DownloadReq, stream: DownloadStream
    ) -> None:
        chunk_size = determine_chunk_size(metadata, self.config)

        try:
            object_id = ObjectId.from_hex(request.id)
        except ValueError as exc:
            log.warning("Magic request! %s", exc)
            raise StatusError(Code.NOT_FOUND, f"ID {request.id} not found!") from exc

        path = os.path.join(
            self._base(metadata),
            object_id.timestamp().strftime("%Y-%m-%d"),
            request.id + _STORED_EXT,
        )
        try:
            info = os.stat(path)
        except FileNotFoundError as exc:
            log.error("File does not exist! %s", exc)
            raise StatusError(Code.NOT_FOUND, f"ID {request.id} not found!") from exc
        except OSError as exc:
            raise StatusError(Code.INTERNAL, "Internal server error") from exc

        description: Description | None = None
        sent = 0
        log.info("Send file for every chunk size %d", chunk_size)
        try:
            with open(path, "rb") as fh:
                while True:
                    data = fh.read(chunk_size)
                    if not data:
                        log.info("Finished sending file")
                        break
                    sent += len(data)
                    if sent >= info.st_size:
                        description = Description(
                            ext=os.path.splitext(path)[1],
                            size=info.st_size,
                            created_at=_utc(info.st_mtime),
                        )
                    stream.send(
                        DownloadResp(
                            chunk=Chunk(data=data, checksum=sha1_hex(data)),
                            desc=description,
                            timestamp=datetime.now(timezone.utc),
                        )
                    )
        except OSError as exc:
            log.error("Error reading file! %s", exc)
            raise StatusError(Code.INTERNAL, "Internal server error") from exc