"""Entry point for the development sync backend."""

import logging
import os
import signal
import threading

from werkzeug.serving import make_server

from sync_tracker.server import create_app, load_server_config


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger(__name__)

    host = os.environ.get("SERVER_HOST", "0.0.0.0")
    port = int(os.environ.get("SERVER_PORT", "8080"))
    app = create_app(load_server_config())
    server = make_server(host, port, app, threaded=True)
    shutdown_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    logger.info("Development sync backend listening on %s:%d", host, port)

    try:
        shutdown_event.wait()
    finally:
        server.shutdown()
        thread.join(timeout=5)
        logger.info("Development sync backend stopped")


if __name__ == "__main__":
    main()
