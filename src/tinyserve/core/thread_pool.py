"""
=============================================================================
WORKER POOL
=============================================================================

Daemon threads pulling (func, args) pairs from one bounded queue.

What gets submitted:

    HTTP/1.1   one task per accepted connection; it serves every
               keep-alive request on that connection
    HTTP/2     one task for the connection's I/O loop, plus one task per
               stream, submitted without blocking

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          ThreadPool                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   submit() ──► queue.Queue(maxsize) ──► worker ──► worker ──► ...   │
    │                                                                      │
    │   grow     every thread already has a job, below max_workers        │
    │   shrink   a worker above min_workers idles for idle_timeout        │
    │   stop     drain (bounded by timeout), then one None per worker     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from typing import Any, Callable, Optional, Set, Tuple
import logging
import queue
import threading
import time


logger = logging.getLogger(__name__)


Job = Tuple[Callable[..., Any], tuple]


class ThreadPool:
    """
    Bounded pool that grows under load and shrinks back when idle.

    Args:
        min_workers: Threads started by start() and never retired
        max_workers: Upper bound on threads
        queue_size: Jobs that may wait for a worker
        idle_timeout: Seconds a surplus worker waits before exiting
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 32,
        queue_size: int = 128,
        idle_timeout: float = 30.0,
    ):
        if min_workers < 1 or max_workers < min_workers:
            raise ValueError(
                f"Invalid worker bounds: min_workers={min_workers}, max_workers={max_workers}"
            )
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.idle_timeout = idle_timeout

        self._jobs: "queue.Queue[Optional[Job]]" = queue.Queue(maxsize=queue_size)
        self._threads: Set[threading.Thread] = set()
        self._outstanding = 0
        self._lock = threading.Lock()
        self._accepting = False
        self._serial = 0

    @property
    def running(self) -> bool:
        return self._accepting

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._threads)

    def start(self) -> None:
        with self._lock:
            if self._accepting:
                return
            self._accepting = True
            for _ in range(self.min_workers):
                self._spawn()
        logger.debug(f"Worker pool started with {self.min_workers} threads (max {self.max_workers})")

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        block: bool = True,
        queue_timeout: Optional[float] = None,
    ) -> bool:
        """
        Queue ``func(*args)``.

        Returns:
            False when the queue stayed full (immediately if ``block`` is
            False, otherwise after ``queue_timeout``)

        Raises:
            RuntimeError: the pool is not running
        """
        if not self._accepting:
            raise RuntimeError("Worker pool is not running")

        with self._lock:
            if self._outstanding >= len(self._threads) and len(self._threads) < self.max_workers:
                self._spawn()
            self._outstanding += 1

        try:
            self._jobs.put((func, args), block=block, timeout=queue_timeout)
        except queue.Full:
            with self._lock:
                self._outstanding -= 1
            return False
        return True

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop accepting jobs and release the threads.

        Args:
            wait: Let queued and running jobs finish first
            timeout: Upper bound on that wait, in seconds
        """
        with self._lock:
            if not self._accepting:
                return
            self._accepting = False

        if wait:
            deadline = time.monotonic() + timeout if timeout else None
            while self._jobs.unfinished_tasks:
                if deadline is not None and time.monotonic() > deadline:
                    logger.warning(f"{self._jobs.unfinished_tasks} jobs still running after {timeout}s, not waiting")
                    break
                time.sleep(0.05)

        with self._lock:
            threads = list(self._threads)
        for _ in threads:
            try:
                self._jobs.put_nowait(None)
            except queue.Full:
                break
        for thread in threads:
            thread.join(timeout=2.0)
        logger.debug("Worker pool stopped")

    # =========================================================================
    # WORKERS
    # =========================================================================

    def _spawn(self) -> None:
        # Caller holds _lock
        self._serial += 1
        thread = threading.Thread(target=self._work, name=f"tinyserve-worker-{self._serial}", daemon=True)
        self._threads.add(thread)
        thread.start()

    def _work(self) -> None:
        me = threading.current_thread()
        try:
            while True:
                try:
                    job = self._jobs.get(timeout=self.idle_timeout)
                except queue.Empty:
                    with self._lock:
                        if len(self._threads) > self.min_workers or not self._accepting:
                            self._threads.discard(me)
                            return
                    continue

                if job is None:
                    self._jobs.task_done()
                    return

                func, args = job
                try:
                    func(*args)
                except Exception:
                    logger.exception(f"{me.name}: job {getattr(func, '__name__', func)!r} failed")
                finally:
                    self._jobs.task_done()
                    with self._lock:
                        self._outstanding -= 1
        finally:
            with self._lock:
                self._threads.discard(me)
