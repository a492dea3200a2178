"""
Standalone resume processing worker.

    python -m hirefit.worker

Runs the queue consumer and the stale-resume reaper until SIGINT/SIGTERM.
Set QUEUE_CONSUMER_IN_API=false on the API when running workers separately.
"""
import logging
import signal
import threading

import hirefit.models  # noqa: F401  register models with SQLAlchemy
from hirefit.core.config import settings
from hirefit.core.init_system import init_system_data
from hirefit.core.logging import setup_logging
from hirefit.database import init_db
from hirefit.dependencies import get_blob_store
from hirefit.services.ai import get_ai_provider
from hirefit.services.queue import get_queue_publisher
from hirefit.services.queue_consumer import QueueConsumer, StaleResumeReaper

logger = logging.getLogger(__name__)


def main() -> int:
    setup_logging(service="worker")

    publisher = get_queue_publisher()
    if not publisher.is_enabled:
        logger.error("QUEUE_BROKER_URL is not set; nothing to consume")
        return 1

    init_db()
    init_system_data()

    provider = get_ai_provider()
    consumer = QueueConsumer(
        broker=publisher.broker,
        provider=provider,
        blob_store=get_blob_store(),
        publisher=publisher,
    )
    reaper = StaleResumeReaper(provider=provider)

    shutdown = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        shutdown.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info(f"Worker started (provider={provider.name}, queue={settings.queue.processing_queue})")
    consumer.start()
    reaper.start()

    shutdown.wait()

    consumer.stop()
    reaper.stop()
    publisher.broker.close()
    logger.info("Worker stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
