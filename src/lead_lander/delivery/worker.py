"""Background worker threads draining the delivery queue."""

import logging
import threading
import uuid
from typing import List, Optional

from .dispatcher import DeliveryDispatcher

logger = logging.getLogger(__name__)


class DeliveryWorkerPool:
    """N daemon threads, each claiming and processing one job at a time."""

    def __init__(
        self,
        dispatcher: DeliveryDispatcher,
        concurrency: int = 5,
        poll_seconds: float = 1.0,
    ):
        self.dispatcher = dispatcher
        self.concurrency = max(1, concurrency)
        self.poll_seconds = poll_seconds
        self.threads: List[threading.Thread] = []
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self.threads)

    def start(self):
        self._stop.clear()
        for i in range(self.concurrency):
            worker_id = f"worker-{i + 1}-{uuid.uuid4().hex[:8]}"
            thread = threading.Thread(target=self._run_loop, args=(worker_id,), name=worker_id, daemon=True)
            thread.start()
            self.threads.append(thread)
        logger.info(f"Delivery worker pool started ({self.concurrency} workers, poll {self.poll_seconds}s)")

    def stop(self, timeout: Optional[float] = 15.0):
        """Signal workers to stop after their current job and wait for them."""
        self._stop.set()
        for thread in self.threads:
            thread.join(timeout=timeout)
        self.threads = []
        logger.info("Delivery worker pool stopped")

    def _run_loop(self, worker_id: str):
        while not self._stop.is_set():
            try:
                result = self.dispatcher.process_next(worker_id)
            except Exception as e:
                logger.exception(f"Worker {worker_id} error: {e}")
                result = None
            if result is None:
                self._stop.wait(self.poll_seconds)
