"""Entry point for the sync tracker CLI."""

import logging
import signal
import sys
import threading

from sync_tracker.client import SyncClient
from sync_tracker.config import load_config
from sync_tracker.errors import ConfigError, SyncTrackerError
from sync_tracker.shipper import LogShipper
from sync_tracker.tracker import SyncTracker
from sync_tracker.transport import HttpTransport


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger(__name__)

    try:
        config = load_config(argv)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 2

    shutdown_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    transports = [HttpTransport(config.base_url, max_retries=config.max_retries)]
    client = SyncClient(config.app_id, config.base_url, config.data_dir, transport=transports[0])

    shipper = None
    if config.remote_logging:
        transports.append(HttpTransport(config.base_url, max_retries=config.max_retries))
        log_client = SyncClient(
            config.log_app_id, config.base_url, config.data_dir, transport=transports[-1]
        )
        shipper = LogShipper(log_client, config.log_api_key)
    else:
        logger.info("Remote logging disabled: no log app id or API key configured")

    tracker = SyncTracker(config, client, shipper, shutdown_event)
    logger.info(
        "Starting sync tracker: app=%s, backend=%s, batch_size=%d",
        config.app_id,
        config.base_url,
        config.batch_size,
    )

    exit_code = 0
    try:
        tracker.start_logging()
        tracker.run()
    except SyncTrackerError as exc:
        logger.error("Error: %s", exc)
        exit_code = 1
    finally:
        try:
            tracker.shutdown()
        except SyncTrackerError as exc:
            logger.error("Shutdown error: %s", exc)
            exit_code = 1
        finally:
            for transport in transports:
                transport.close()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
