import base64
import json
from pathlib import Path

import pytest

from filesrv.config import Config
from filesrv.messages import Metadata
from filesrv.subscriber import (
    Broker,
    FileSubscriber,
    generate_file_name,
    image_format,
    register_file,
    save_to_disk,
)
from filesrv.util import sha1_hex

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + bytes(range(13))
PNG_B64 = base64.b64encode(PNG).decode()


@pytest.fixture
def config(tmp_path):
    return Config(
        {
            "dir_base": str(tmp_path),
            "broker": {"topic_in": "files.in", "topic_out": ["files.out"], "queue": "files"},
        }
    )


@pytest.fixture
def metadata():
    return Metadata(
        {"ID": "req-1", "Domain": "staging", "Alias": "vehicles", "Resource": "photos"}
    )


def test_image_format_known_types():
    assert image_format(PNG) == "png"
    assert image_format(b"\xff\xd8\xff\xe0rest") == "jpeg"
    assert image_format(b"GIF89a....") == "gif"


def test_image_format_unknown_raises():
    with pytest.raises(ValueError):
        image_format(b"plain text")


def test_save_to_disk_writes_decoded(tmp_path):
    target = tmp_path / "out.png"
    written = save_to_disk(str(target), PNG_B64)
    assert written == len(PNG)
    assert target.read_bytes() == PNG


def test_generate_file_name_layout(tmp_path, metadata):
    name = Path(generate_file_name(PNG_B64, str(tmp_path), metadata))
    assert name.name == sha1_hex(PNG) + ".png"
    assert name.parent.parent == tmp_path / "staging" / "vehicles" / "photos"
    assert name.parent.is_dir()


def test_generate_file_name_rejects_bad_base64(tmp_path, metadata):
    with pytest.raises(ValueError):
        generate_file_name("!!not base64!!", str(tmp_path), metadata)


def test_on_message_stores_and_posts_back(config, metadata, tmp_path):
    broker = Broker()
    metadata["Postback"] = "files.reply"
    subscriber = FileSubscriber(config, broker)

    file_name = subscriber.on_message(metadata, json.dumps({"avatar": PNG_B64}).encode())

    stored = Path(file_name)
    assert stored.read_bytes() == PNG
    assert stored.parent.parent == tmp_path / "staging" / "staging" / "vehicles" / "photos"
    assert [topic for topic, _, _ in broker.published] == ["files.out", "files.reply"]
    for _, data, md in broker.published:
        assert json.loads(data) == {"avatar": file_name}
        assert "Postback" not in md
        assert md["Timestamp"].isdigit()
    assert metadata["Postback"] == "files.reply"


def test_on_message_without_field_does_nothing(config, metadata, tmp_path):
    broker = Broker()
    result = FileSubscriber(config, broker).on_message(metadata, b"{}")
    assert result is None
    assert broker.published == []
    assert list(tmp_path.iterdir()) == []


def test_on_message_bad_json(config, metadata):
    with pytest.raises(ValueError, match="Cannot decode message"):
        FileSubscriber(config, Broker()).on_message(metadata, b"not json")


def test_on_message_not_an_image(config, metadata):
    broker = Broker()
    payload = json.dumps({"avatar": base64.b64encode(b"hello").decode()}).encode()
    with pytest.raises(ValueError, match="Cannot generate file name"):
        FileSubscriber(config, broker).on_message(metadata, payload)
    assert broker.published == []


def test_publish_without_postback_uses_configured_topics(config):
    broker = Broker()
    md = Metadata({"Domain": "staging"})
    FileSubscriber(config, broker).publish({"k": "v"}, md)
    assert [(topic, json.loads(data)) for topic, data, _ in broker.published] == [
        ("files.out", {"k": "v"})
    ]


def test_register_file_delivers_messages(config, metadata, tmp_path):
    broker = Broker()
    register_file(config, broker, FileSubscriber(config, broker))

    broker.publish("files.in", json.dumps({"avatar": PNG_B64}).encode(), metadata)

    outputs = [data for topic, data, _ in broker.published if topic == "files.out"]
    assert len(outputs) == 1
    stored = Path(json.loads(outputs[0])["avatar"])
    assert stored.read_bytes() == PNG


def test_broker_queue_group_delivers_once():
    broker = Broker()
    first, second, everyone = [], [], []
    broker.subscribe("t", lambda md, data: first.append(data), "q")
    broker.subscribe("t", lambda md, data: second.append(data), "q")
    broker.subscribe("t", lambda md, data: everyone.append(data))

    broker.publish("t", b"a")
    broker.publish("t", b"b")

    assert len(first) + len(second) == 2
    assert sorted(first + second) == [b"a", b"b"]
    assert everyone == [b"a", b"b"]


def test_broker_survives_failing_subscriber():
    broker = Broker()
    received = []

    def failing(md, data):
        raise RuntimeError("boom")

    broker.subscribe("t", failing)
    broker.subscribe("t", lambda md, data: received.append(data))
    broker.publish("t", b"x")
    assert received == [b"x"]