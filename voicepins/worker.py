import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class JobWorker:
    """
    Runs one background task per job id on a thread pool.
    Replaces request-scoped background tasks so shutdown can drain in-flight jobs.
    """

    def __init__(self, max_workers: int = 4):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tour-job")
        self._running: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(self, job_id: str, fn: Callable, *args, **kwargs) -> Future:
        with self._lock:
            if job_id in self._running:
                raise RuntimeError(f"job {job_id} is already running")
            fut = self._pool.submit(fn, *args, **kwargs)
            self._running[job_id] = fut
        fut.add_done_callback(lambda f: self._done(job_id, f))
        return fut

    def _done(self, job_id: str, fut: Future) -> None:
        with self._lock:
            self._running.pop(job_id, None)
        if not fut.cancelled() and fut.exception() is not None:
            logger.error("Background job %s crashed", job_id, exc_info=fut.exception())

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight jobs; True if all finished within timeout."""
        with self._lock:
            pending = list(self._running.values())
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, timeout: Optional[float] = None) -> None:
        if not self.drain(timeout):
            logger.warning("Shutting down with tour jobs still running")
        self._pool.shutdown(wait=False)
