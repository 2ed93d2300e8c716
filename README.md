# filesrv

A small file storage library. Files are kept under a base directory, and
there are two ways to get them in:

- **Chunked upload and download** (`filesrv.handler.FileHandler`). A client
  sends a file in chunks. Each chunk carries the SHA-1 checksum of its data.
  Uploads are checked against a size limit. Each one is stored as
  `<dir_base>/<Domain>/<Alias>/<YYYY-MM-DD>/<object id><ext>`. The extension
  is worked out from the first chunk's content, for example `.jpeg`, `.png`
  or `.gif`. Downloads are sent back in chunks. The client can ask for a
  chunk size through the `Chunk-Size` metadata, and it is capped at the
  server's `chunk_size_limit`.
- **Broker subscriber** (`filesrv.subscriber.FileSubscriber`). A message is a
  JSON object whose first field holds a base64-encoded PNG, JPEG or GIF
  image. The subscriber decodes the image and writes it to disk. The file is
  named after the SHA-1 of the image. The stored path is then published as
  `{"<field>": "<path>"}` to the configured output topics and to any
  `Postback` topic named in the metadata.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Configuration

The configuration is a JSON object. Load it with
`filesrv.config.load_config(path)`, or build it in code with
`filesrv.config.Config({...})`.

| Key                  | Meaning                                          | Default    |
|----------------------|--------------------------------------------------|------------|
| `dir_base`           | Root directory for stored files                  | `""`       |
| `bytes_limit`        | Largest upload accepted, in bytes                | 5 MiB      |
| `chunk_size_limit`   | Largest download chunk, in bytes                 | 1 MiB      |
| `broker.topic_in`    | Topic the subscriber listens on                  | `""`       |
| `broker.queue`       | Queue group for the subscriber                   | `""`       |
| `broker.topic_out`   | Topics that receive the stored file's path       | `[]`       |

`Config.get("broker", "topic_in", default="")` reads a nested value. It
returns the default when the key is missing or its value has a different
type. `Config.set(value, *keys)` stores a value and creates any sections
it needs along the way.

## Uploading and downloading

```python
from filesrv.config import Config
from filesrv.handler import FileHandler
from filesrv.messages import (
    Chunk, DownloadReq, DownloadStream, Metadata, UploadReq, UploadStream,
)
from filesrv.util import sha1_hex

handler = FileHandler(Config({"dir_base": "/tmp/files"}))
metadata = Metadata(Domain="staging", Alias="photos")

with open("photo.jpeg", "rb") as fh:
    data = fh.read()
upload = UploadStream(requests=[UploadReq(chunk=Chunk(data=data, checksum=sha1_hex(data)))])
handler.upload(metadata, upload)
file_id = upload.responses[-1].id

download = DownloadStream()
handler.download(metadata, DownloadReq(id=file_id), download)
content = b"".join(resp.chunk.data for resp in download.responses)
```

`Metadata` is a mapping with case-insensitive keys. For example,
`chunk-size` and `Chunk-Size` are the same key.

Every stored chunk of an upload is acknowledged with an `UploadResp` that
carries the new file's id. If an upload fails, the partly written file is
removed.

A download looks for `<id>.jpeg` in the date directory given by the id's
timestamp. Every `DownloadResp` carries its chunk's SHA-1. The final one
also carries a `Description` with the extension, size and modification
time.

Failures raise `filesrv.status.StatusError`, whose `code` is a
`filesrv.status.Code`:

| Code                 | Raised when                                            |
|----------------------|--------------------------------------------------------|
| `DATA_LOSS`          | a chunk's checksum does not match its data             |
| `RESOURCE_EXHAUSTED` | an upload grows past `bytes_limit`                     |
| `NOT_FOUND`          | a download id is malformed or its file does not exist  |
| `INTERNAL`           | the file cannot be named, opened, written or read      |
| `UNKNOWN`            | reading from the upload stream fails                   |

## Storing images from a broker

```python
from filesrv.subscriber import Broker, FileSubscriber, register_file

broker = Broker()
subscriber = FileSubscriber(config, broker)
register_file(config, broker, subscriber)
broker.publish("images.in", b'{"photo": "<base64>"}', {"Domain": "staging"})
```

`Broker` runs inside the process. Within each queue group a message is
delivered to only one subscriber, and every publication is recorded in
`broker.published`.

The stored path is
`<dir_base>/<Domain>/<Domain>/<Alias>/<Resource>/<YYYY-MM-DD>/<sha1>.<png|jpeg|gif>`,
using today's local date. `Domain` appears twice in this path.

A message that cannot be decoded, or whose data is not valid base64 or not
a recognised image, raises `ValueError` from `FileSubscriber.on_message`.
A message with no field is ignored. A failed postback is logged and does
not raise.

## Running

```
filesrv --config settings.json --log-level DEBUG
```

The `filesrv` command does the following:

1. Loads the configuration.
2. Creates `dir_base`.
3. Subscribes the file subscriber to `broker.topic_in` on an in-process
   broker.
4. Waits until it is interrupted or sent SIGTERM.

The service name used in its log lines comes from the `MICRO_SERVER_NAME`
environment variable. If it is not set, the name is `go.srv.file`. The same
set-up is available in code as `filesrv.service.Service`, which can also be
used as a context manager.

## What it does not do

There is no network transport. The command opens no port, speaks no RPC
protocol, and does not connect to an external message broker or service
registry. Uploads, downloads and broker messages reach the service only
through the library calls described above, in the same process.