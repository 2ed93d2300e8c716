import base64
import json
import os

import pytest

from filesrv.config import Config
from filesrv.messages import (
    Chunk,
    DownloadReq,
    DownloadStream,
    Metadata,
    UploadReq,
    UploadStream,
)
from filesrv.service import Service, main
from filesrv.subscriber import Broker
from filesrv.util import sha1_hex

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00pixels" * 10
JPEG = b"\xff\xd8\xff\xe0" + bytes(range(256)) * 4


def _config(tmp_path):
    return Config(
        {
            "dir_base": str(tmp_path / "base"),
            "broker": {"topic_in": "file.in", "topic_out": ["file.out"], "queue": "files"},
        }
    )


def test_start_creates_base_directory(tmp_path):
    service = Service(_config(tmp_path), Broker())
    assert not (tmp_path / "base").exists()
    service.start()
    assert (tmp_path / "base").is_dir()
    assert service.running is True


def test_start_twice_raises(tmp_path):
    service = Service(_config(tmp_path), Broker())
    service.start()
    with pytest.raises(RuntimeError):
        service.start()


def test_stop_ends_service(tmp_path):
    service = Service(_config(tmp_path), Broker())
    service.start()
    assert service.wait(timeout=0) is False
    service.stop()
    assert service.running is False
    assert service.wait(timeout=0) is True


def test_context_manager_starts_and_stops(tmp_path):
    with Service(_config(tmp_path), Broker()) as service:
        assert service.running is True
    assert service.running is False


def test_started_service_stores_published_images(tmp_path):
    broker = Broker()
    service = Service(_config(tmp_path), broker)
    service.start()

    payload = json.dumps({"photo": base64.b64encode(PNG).decode()}).encode()
    broker.publish(
        "file.in", payload, {"Domain": "staging", "Alias": "vehicles", "Resource": "photos"}
    )

    postbacks = [(data, md) for topic, data, md in broker.published if topic == "file.out"]
    assert len(postbacks) == 1
    stored = json.loads(postbacks[0][0])["photo"]
    assert stored.endswith(sha1_hex(PNG) + ".png")
    with open(stored, "rb") as fh:
        assert fh.read() == PNG


def test_not_started_service_ignores_messages(tmp_path):
    broker = Broker()
    Service(_config(tmp_path), broker)
    payload = json.dumps({"photo": base64.b64encode(PNG).decode()}).encode()
    broker.publish("file.in", payload, {"Domain": "staging"})
    assert [topic for topic, _, _ in broker.published] == ["file.in"]


def test_handler_upload_then_download_round_trip(tmp_path):
    service = Service(_config(tmp_path), Broker())
    service.start()
    md = Metadata({"Domain": "staging", "Alias": "vehicles", "Chunk-Size": "100"})

    upload = UploadStream(requests=[UploadReq(chunk=Chunk(data=JPEG, checksum=sha1_hex(JPEG)))])
    service.handler.upload(md, upload)
    file_id = upload.responses[0].id

    download = DownloadStream()
    service.handler.download(md, DownloadReq(id=file_id), download)
    assert b"".join(r.chunk.data for r in download.responses) == JPEG
    assert all(len(r.chunk.data) <= 100 for r in download.responses)
    assert download.responses[-1].desc.size == len(JPEG)


def test_main_missing_config_fails(tmp_path):
    assert main(["--config", str(tmp_path / "missing.json")]) == 1


def test_main_config_not_object_fails(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[1, 2]", encoding="utf-8")
    assert main(["--config", str(path)]) == 1


def test_main_rejects_unknown_option():
    with pytest.raises(SystemExit) as info:
        main(["--no-such-option"])
    assert info.value.code == 2


def test_service_name_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("MICRO_SERVER_NAME", "files.test")
    assert Service(_config(tmp_path)).name == "files.test"
    monkeypatch.delenv("MICRO_SERVER_NAME")
    assert Service(_config(tmp_path)).name == "go.srv.file"
    assert os.environ.get("MICRO_SERVER_NAME") is None