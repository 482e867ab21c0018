# User value: This file runs the translation workers that turn queued jobs into translated subtitle files.
# worker.py
import logging
import signal
import threading

import config
from services.container import build_container
from services.worker_runtime import QueueWorker
from startup_env import validate_startup_env
from utils.json_logging import configure_json_logging

logger = logging.getLogger("worker.main")


def start_workers(container, stop_event: threading.Event, concurrency: int) -> list[threading.Thread]:
    threads = []
    for index in range(1, max(1, int(concurrency)) + 1):
        runner = QueueWorker(
            queue=container.queue,
            processor=container.processor,
            name=f"translation-worker-{index}",
            idle_sleep_sec=config.WORKER_IDLE_SLEEP_SEC,
        )
        thread = threading.Thread(target=runner.run_forever, args=(stop_event,), name=runner.name)
        thread.start()
        threads.append(thread)
    return threads


def install_signal_handlers(stop_event: threading.Event) -> None:
    def _request_stop(signum, _frame):
        # stop leasing; in-flight jobs run to completion
        logger.info("worker_shutdown_requested signal=%s", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)


def main() -> None:
    configure_json_logging(service=f"{config.SERVICE_NAME}-worker", level=getattr(logging, config.LOG_LEVEL, logging.INFO))
    validate_startup_env("worker")

    container = build_container("worker")
    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    threads = start_workers(container, stop_event, config.WORKER_CONCURRENCY)
    logger.info(
        "worker_pool_started queue=%s concurrency=%s lease_sec=%s",
        container.queue.name,
        len(threads),
        container.queue.lease_sec,
    )

    # join with a timeout so the main thread keeps receiving signals
    while any(t.is_alive() for t in threads):
        for thread in threads:
            thread.join(timeout=1.0)

    container.close()
    logger.info("worker_pool_stopped queue=%s", container.queue.name)


if __name__ == "__main__":
    main()
