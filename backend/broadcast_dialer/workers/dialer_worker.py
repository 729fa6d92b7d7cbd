"""
Pacer worker: dials every active broadcast at its configured rate.

Run as a separate process:
    python -m broadcast_dialer.workers.dialer_worker
"""
import logging
import signal
import time

from ..core.config import get_settings
from ..core.db import SessionLocal
from ..core.logging_config import configure_logging
from ..integrations import build_collaborators
from ..services.dialer_service import Pacer

logger = logging.getLogger(__name__)
settings = get_settings()


class DialerWorker:
    def __init__(self, pacer: Pacer, tick_seconds: float | None = None, max_consecutive_errors: int | None = None):
        self.pacer = pacer
        self.tick_seconds = tick_seconds or settings.pacer_tick_seconds
        self.max_consecutive_errors = max_consecutive_errors or settings.worker_max_consecutive_errors
        self.running = False
        self.calls_dispatched = 0

    def stop(self, *_args) -> None:
        logger.info("Dialer worker received shutdown signal")
        self.running = False

    def run(self) -> None:
        self.running = True
        consecutive_errors = 0
        logger.info("Dialer worker started (tick=%ss)", self.tick_seconds)
        while self.running:
            try:
                self.calls_dispatched += self.pacer.tick()
                consecutive_errors = 0
            except Exception:
                consecutive_errors += 1
                logger.exception("Dialer tick failed (%s in a row)", consecutive_errors)
                if consecutive_errors >= self.max_consecutive_errors:
                    logger.critical("Too many consecutive errors, stopping dialer worker")
                    break
                time.sleep(min(5 * consecutive_errors, 60))
                continue
            time.sleep(self.tick_seconds)
        logger.info("Dialer worker stopped after dispatching %s calls", self.calls_dispatched)


def main() -> None:
    configure_logging(settings.log_level)
    worker = DialerWorker(Pacer(SessionLocal, build_collaborators(settings)))
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, worker.stop)
    worker.run()


if __name__ == "__main__":
    main()
