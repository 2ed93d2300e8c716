"""The file service: wires configuration, broker, subscriber and handler."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from collections.abc import Sequence

from filesrv.config import Config, load_config
from filesrv.handler import FileHandler
from filesrv.subscriber import Broker, FileSubscriber, register_file

log = logging.getLogger(__name__)

DEFAULT_NAME = "go.srv.file"


class Service:
    """Holds the upload/download handler and the broker subscriber.

    ``start`` prepares the base directory and subscribes to the input topic;
    ``stop`` ends a running service. It can also be used as a context manager.
    """

    def __init__(self, config: Config | None = None, broker: Broker | None = None) -> None:
        self.config = config if config is not None else Config()
        self.broker = broker if broker is not None else Broker()
        self.name = os.environ.get("MICRO_SERVER_NAME") or DEFAULT_NAME
        self.handler = FileHandler(self.config)
        self.subscriber = FileSubscriber(self.config, self.broker)
        self._running = False
        self._stopped = threading.Event()

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Create the base directory and register the file subscriber."""
        if self._running:
            raise RuntimeError(f"service {self.name} is already running")
        self.config.ensure_dir_base()
        register_file(self.config, self.broker, self.subscriber)
        self._stopped.clear()
        self._running = True
        log.info("Starting [service] %s", self.name)

    def stop(self) -> None:
        """Stop the service; stopping a stopped service does nothing."""
        if self._running:
            log.info("[Subscriber][Close] Do nothing")
            log.info("Stopping [service] %s", self.name)
        self._running = False
        self._stopped.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the service is stopped; False if the timeout ran out."""
        return self._stopped.wait(timeout)

    def __enter__(self) -> Service:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="filesrv", description="Serve file uploads, downloads and image storage."
    )
    parser.add_argument("--config", help="path of a JSON configuration file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the service until interrupted; returns the process exit status."""
    args = _parse_args(argv)
    logging.basicConfig(level=args.log_level)
    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        log.critical("%s", exc)
        return 1

    service = Service(config)
    try:
        service.start()
    except Exception as exc:
        log.critical("%s", exc)
        return 1

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, lambda *_: service.stop())
    try:
        service.wait()
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
    return 0