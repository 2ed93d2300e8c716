"""Broker subscriber that stores base64 images and posts back their paths."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import time
from collections import defaultdict
from collections.abc import Callable, Mapping
from typing import Any

from filesrv.config import Config
from filesrv.messages import Metadata
from filesrv.util import ensure_dir, sha1_hex

log = logging.getLogger(__name__)

Handler = Callable[[Metadata, bytes], Any]

_IMAGE_MAGIC = (
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8", "jpeg"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
)


class Broker:
    """In-process message broker; each queue group gets a message once.

    Every publication is recorded in ``published`` as (topic, data, metadata).
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[tuple[Handler, str]]] = defaultdict(list)
        self.published: list[tuple[str, bytes, Metadata]] = []

    def subscribe(self, topic: str, handler: Handler, queue: str = "") -> None:
        self._subscriptions[topic].append((handler, queue))

    def publish(self, topic: str, data: bytes, metadata: Mapping[str, str] | None = None) -> None:
        md = Metadata(metadata or {})
        self.published.append((topic, data, md))
        served: set[str] = set()
        for handler, queue in self._subscriptions.get(topic, ()):
            if queue in served:
                continue
            if queue:
                served.add(queue)
            try:
                handler(md.copy(), data)
            except Exception:
                log.exception("[Broker] Subscriber failed")


def _decode(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"illegal base64 data: {exc}") from exc


def _wrap(exc: Exception, message: str) -> Exception:
    return OSError(message) if isinstance(exc, OSError) else ValueError(message)


def image_format(data: bytes) -> str:
    """Name of the image format of data: png, jpeg or gif."""
    for magic, name in _IMAGE_MAGIC:
        if data.startswith(magic):
            return name
    raise ValueError("image: unknown format")


def generate_file_name(data: str, base: str, metadata: Mapping[str, str]) -> str:
    """Path base/domain/alias/resource/<today>/<sha1>.<format> for the image in data."""
    directory = ensure_dir(
        os.path.join(
            base,
            metadata.get("Domain", ""),
            metadata.get("Alias", ""),
            metadata.get("Resource", ""),
            time.strftime("%Y-%m-%d"),
        )
    )
    decoded = _decode(data)
    return os.path.join(directory, f"{sha1_hex(decoded)}.{image_format(decoded)}")


def save_to_disk(file_name: str, data: str) -> int:
    """Write the base64-decoded data to file_name; return the bytes written."""
    with open(file_name, "wb") as fh:
        return fh.write(_decode(data))


def _decode_message(data: bytes) -> dict[str, str]:
    try:
        message = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"Cannot decode message: err=[{exc}]") from exc
    if message is None:
        return {}
    if not isinstance(message, dict) or not all(
        value is None or isinstance(value, str) for value in message.values()
    ):
        raise ValueError("Cannot decode message: err=[expected an object of strings]")
    return {key: value or "" for key, value in message.items()}


class FileSubscriber:
    """Stores images arriving as ``{"field": "<base64>"}`` messages."""

    def __init__(self, config: Config, broker: Broker) -> None:
        self.config = config
        self.broker = broker

    def on_message(self, metadata: Mapping[str, str], data: bytes) -> str | None:
        """Store the image in the message and post back where it went.

        Returns the stored file's path, or None for a message without a field.
        """
        md = Metadata(metadata)
        try:
            file_name = self._store(md, data)
        except (ValueError, OSError) as exc:
            log.error("[File] Store failed!: err=[%s] metadata=[%s] data=[%r]", exc, dict(md), data)
            raise
        return file_name

    def _store(self, md: Metadata, data: bytes) -> str | None:
        message = _decode_message(data)
        field, payload = next(iter(message.items()), ("", ""))
        if not field:
            return None

        dir_base = os.path.join(self.config.get("dir_base", default=""), md.get("Domain", ""))
        try:
            file_name = generate_file_name(payload, dir_base, md)
        except (ValueError, OSError) as exc:
            raise _wrap(exc, f"Cannot generate file name: err=[{exc}] dir_base=[{dir_base}]") from exc
        log.debug("[File] Generate file name: %s", file_name)

        try:
            save_to_disk(file_name, payload)
        except (ValueError, OSError) as exc:
            raise _wrap(exc, f"Cannot save to disk: err=[{exc}] file_name=[{file_name}]") from exc
        log.info("[File] Save to disk success: id=[%s], file_name=[%s]", md.get("ID", ""), file_name)

        postback = {field: file_name}
        md["Timestamp"] = str(int(time.time()))
        try:
            self.publish(postback, md)
        except Exception:
            log.exception("[File] Postback failed!: metadata=[%s] msg=[%s]", dict(md), postback)
        return file_name

    def publish(self, message: Any, metadata: Metadata) -> None:
        """Send message as JSON to the configured topics and any Postback topic."""
        topics = list(self.config.get("broker", "topic_out", default=[]))
        postback = metadata.get("Postback")
        if postback is not None:
            topics.append(postback)
            del metadata["Postback"]
        payload = json.dumps(message, separators=(",", ":"), sort_keys=True).encode()
        for topic in topics:
            self.broker.publish(topic, payload, metadata)


def register_file(config: Config, broker: Broker, subscriber: FileSubscriber) -> None:
    """Subscribe the file subscriber to the configured input topic and queue."""
    broker.subscribe(
        config.get("broker", "topic_in", default=""),
        subscriber.on_message,
        config.get("broker", "queue", default=""),
    )