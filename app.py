import json
import logging
import signal
import threading
from dataclasses import asdict
from typing import Sequence

from src.config.app_config import load_from_env
from src.config.env import APP_ENV, LOG_LEVEL
from src.core.scheduler import DeviceReport, PollScheduler

logger = logging.getLogger("miner_dashboard")


def log_reports(reports: Sequence[DeviceReport]) -> None:
    """Stand-in broadcast: the WebSocket layer serialises the same payload."""
    for report in reports:
        payload = {
            "miner": report.target.display_name,
            "error": report.error,
            "stale": report.stale,
            "stats": asdict(report.stats) if report.stats else None,
        }
        logger.info(json.dumps(payload, default=str))


def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    config = load_from_env()
    if not config.devices:
        logger.warning("No miner configured. Set MINER_HOSTS to one or more addresses.")

    scheduler = PollScheduler(config, broadcast=log_reports)
    stop = threading.Event()

    def _shutdown(signum, frame):
        logger.info("Signal %s received, shutting down gracefully...", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    logger.info("Miner dashboard core starting (env: %s)", APP_ENV)
    scheduler.start()
    stop.wait()
    scheduler.shutdown()


if __name__ == "__main__":
    main()
