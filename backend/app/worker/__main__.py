import asyncio
import signal

from app.core.config import get_settings
from app.core.logging import configure_logging, get_logger
from app.services import build_services
from app.worker.runner import IngestionWorker

logger = get_logger(__name__)


async def run_worker() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    logger.info("worker_startup", env=settings.app_env, concurrency=settings.worker_concurrency)

    services = await build_services(settings)
    worker = IngestionWorker(
        services.queue,
        services.processor,
        concurrency=settings.worker_concurrency,
        block_timeout_seconds=settings.queue_block_timeout_seconds,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        await services.close()


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
