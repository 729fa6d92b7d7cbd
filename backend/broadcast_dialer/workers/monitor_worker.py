"""
Monitor worker: cleans up stuck calls and re-sends failed DNC writes.

Run as a separate process:
    python -m broadcast_dialer.workers.monitor_worker
"""
import logging
import signal
import time

from ..core.config import get_settings
from ..core.db import SessionLocal
from ..core.logging_config import configure_logging
from ..integrations import Collaborators, build_collaborators
from ..models.broadcast import Broadcast, BroadcastStatus
from ..services import monitor_service

logger = logging.getLogger(__name__)
settings = get_settings()


def run_once(session_factory, collaborators: Collaborators) -> dict:
    """One monitoring pass over active and paused broadcasts."""
    db = session_factory()
    cleaned = 0
    try:
        broadcast_ids = [
            row[0]
            for row in db.query(Broadcast.id).filter(
                Broadcast.status.in_([BroadcastStatus.ACTIVE, BroadcastStatus.PAUSED]),
                Broadcast.deleted_at.is_(None),
            )
        ]
        for broadcast_id in broadcast_ids:
            cleaned += monitor_service.cleanup_stuck_calls(db, broadcast_id).cleaned
        dnc_delivered = monitor_service.flush_dnc_retries(db, collaborators)
    finally:
        db.close()
    return {"broadcasts": len(broadcast_ids), "cleaned": cleaned, "dnc_delivered": dnc_delivered}


class MonitorWorker:
    def __init__(self, session_factory, collaborators: Collaborators, interval_seconds: int | None = None):
        self.session_factory = session_factory
        self.collaborators = collaborators
        self.interval_seconds = interval_seconds or settings.monitor_interval_seconds
        self.running = False

    def stop(self, *_args) -> None:
        logger.info("Monitor worker received shutdown signal")
        self.running = False

    def run(self) -> None:
        self.running = True
        consecutive_errors = 0
        logger.info("Monitor worker started (interval=%ss)", self.interval_seconds)
        while self.running:
            try:
                summary = run_once(self.session_factory, self.collaborators)
                consecutive_errors = 0
                if summary["cleaned"] or summary["dnc_delivered"]:
                    logger.info("Monitor pass: %s", summary)
            except Exception:
                consecutive_errors += 1
                logger.exception("Monitor pass failed (%s in a row)", consecutive_errors)
                if consecutive_errors >= settings.worker_max_consecutive_errors:
                    logger.critical("Too many consecutive errors, stopping monitor worker")
                    break
            self._sleep(self.interval_seconds)

    def _sleep(self, seconds: float) -> None:
        # short naps so a shutdown signal is honoured promptly
        deadline = time.monotonic() + seconds
        while self.running and time.monotonic() < deadline:
            time.sleep(min(1.0, deadline - time.monotonic()))


def main() -> None:
    configure_logging(settings.log_level)
    worker = MonitorWorker(SessionLocal, build_collaborators(settings))
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, worker.stop)
    worker.run()


if __name__ == "__main__":
    main()
