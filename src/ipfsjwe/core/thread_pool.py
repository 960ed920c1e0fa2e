"""
=============================================================================
THREAD POOL
=============================================================================

Each request spends almost all of its time waiting on IPFS, so requests
are handled on worker threads while the accept loop keeps accepting.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   accept loop ──submit()──►  [ bounded task queue ]                  │
    │                                   │      │      │                    │
    │                                   ▼      ▼      ▼                    │
    │                               Worker  Worker  Worker ...             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The queue is bounded. When it is full, submit() refuses the connection and
the gateway answers "42 Server overloaded." on the accept thread.

The pool starts min_workers threads and adds one more (up to max_workers)
whenever a connection is queued while no worker is free. Workers live
until shutdown, which puts one None per worker on the queue.

=============================================================================
"""

import queue
import threading
import time
import logging
from typing import Any, Callable, List, Optional, Tuple


logger = logging.getLogger(__name__)


Job = Tuple[Callable[..., Any], tuple]


class Worker(threading.Thread):
    """Runs jobs from the shared queue until it gets None or is stopped."""

    def __init__(self, pool: "ThreadPool", worker_id: int):
        # daemon=True: a stuck IPFS call never keeps the process alive
        super().__init__(name=f"Worker-{worker_id}", daemon=True)
        self.pool = pool
        self.worker_id = worker_id
        self.stopping = threading.Event()

    def run(self):
        jobs = self.pool.jobs
        while not self.stopping.is_set():
            try:
                job = jobs.get(timeout=self.pool.poll_interval)
            except queue.Empty:
                continue

            try:
                if job is None:
                    break
                self._run_job(job)
            finally:
                jobs.task_done()

        logger.debug(f"Worker {self.worker_id} exited")

    def _run_job(self, job: Job):
        func, args = job
        self.pool.job_started()
        try:
            func(*args)
        except Exception as e:
            logger.exception(f"Worker {self.worker_id}: unhandled error in {func.__name__}: {e}")
            self.pool.failed += 1
        finally:
            self.pool.job_finished()


class ThreadPool:
    """
    Bounded pool of connection workers.

        pool = ThreadPool(min_workers=4, max_workers=16, queue_size=100)
        pool.start()

        if not pool.submit(process, args=(conn,)):
            ...  # queue full, reject the connection

        pool.shutdown(wait=True, timeout=30.0)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        queue_size: int = 100,
        poll_interval: float = 1.0,
    ):
        self.min_workers = min_workers
        self.max_workers = max_workers
        # How often an idle worker wakes up to check whether it was stopped
        self.poll_interval = poll_interval

        self.jobs: "queue.Queue[Optional[Job]]" = queue.Queue(maxsize=queue_size)
        self.failed = 0

        self._workers: List[Worker] = []
        self._busy = 0
        self._lock = threading.Lock()  # Guards _workers and _busy
        self._accepting = False

    def start(self):
        if self._accepting:
            return
        logger.info(f"Starting thread pool with {self.min_workers} workers")
        with self._lock:
            for _ in range(self.min_workers):
                self._spawn_locked()
        self._accepting = True

    def _spawn_locked(self):
        worker = Worker(self, len(self._workers))
        self._workers.append(worker)
        worker.start()

    def job_started(self):
        with self._lock:
            self._busy += 1

    def job_finished(self):
        with self._lock:
            self._busy -= 1

    def submit(self, func: Callable[..., Any], args: tuple = ()) -> bool:
        """
        Queue func(*args) without blocking.

        Returns:
            False if the queue is full.

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self._accepting:
            raise RuntimeError("Thread pool is not running")

        try:
            self.jobs.put((func, args), block=False)
        except queue.Full:
            return False

        with self._lock:
            if self._busy >= len(self._workers) and len(self._workers) < self.max_workers:
                logger.debug(f"All {len(self._workers)} workers busy, adding one")
                self._spawn_locked()
        return True

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop accepting jobs and stop the workers.

        Args:
            wait: Let queued jobs finish first.
            timeout: Give up waiting for queued jobs after this many seconds.
        """
        if not self._accepting and not self._workers:
            return

        logger.info("Shutting down thread pool...")
        self._accepting = False

        if wait:
            deadline = time.time() + timeout if timeout else None
            while self.jobs.unfinished_tasks:
                if deadline and time.time() > deadline:
                    logger.warning("Queued connections still pending, stopping anyway")
                    break
                time.sleep(0.05)

        with self._lock:
            workers, self._workers = self._workers, []

        for worker in workers:
            worker.stopping.set()
            try:
                self.jobs.put(None, block=False)
            except queue.Full:
                pass  # stopping flag is seen within poll_interval

        for worker in workers:
            worker.join(timeout=2.0)

        logger.info("Thread pool stopped")
