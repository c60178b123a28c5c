"""
Unit tests for the worker pool.
"""

import threading

import pytest

from tinyserve.core.thread_pool import ThreadPool


@pytest.fixture
def pool():
    pool = ThreadPool(min_workers=1, max_workers=3, queue_size=2, idle_timeout=0.2)
    pool.start()
    yield pool
    pool.shutdown(wait=False)


class TestThreadPool:
    """Tests for ThreadPool."""

    def test_invalid_bounds(self):
        """Test worker bounds are checked."""
        with pytest.raises(ValueError):
            ThreadPool(min_workers=0)
        with pytest.raises(ValueError):
            ThreadPool(min_workers=4, max_workers=2)

    def test_submit_before_start(self):
        """Test submitting to a stopped pool raises."""
        with pytest.raises(RuntimeError):
            ThreadPool().submit(print)

    def test_runs_jobs(self, pool):
        """Test jobs run with their arguments."""
        done = threading.Event()
        results = []

        def job(a, b):
            results.append(a + b)
            done.set()

        assert pool.submit(job, args=(2, 3))
        assert done.wait(2.0)
        assert results == [5]

    def test_failing_job_keeps_worker(self, pool):
        """Test an exception does not stop later jobs."""
        done = threading.Event()

        def boom():
            raise RuntimeError("boom")

        pool.submit(boom)
        pool.submit(done.set)
        assert done.wait(2.0)

    def test_grows_under_load(self, pool):
        """Test blocked jobs make the pool add threads up to the maximum."""
        release = threading.Event()
        started = threading.Semaphore(0)

        def hold():
            started.release()
            release.wait(5.0)

        for _ in range(3):
            assert pool.submit(hold)
        for _ in range(3):
            assert started.acquire(timeout=2.0)

        assert pool.size == 3
        release.set()

    def test_full_queue_non_blocking(self, pool):
        """Test a full queue rejects non-blocking submits."""
        release = threading.Event()
        for _ in range(3):
            pool.submit(release.wait, args=(5.0,))

        accepted = [pool.submit(release.wait, args=(5.0,), block=False) for _ in range(4)]
        release.set()

        assert False in accepted

    def test_shutdown_waits_for_jobs(self):
        """Test shutdown(wait=True) lets queued jobs finish."""
        pool = ThreadPool(min_workers=1, max_workers=1)
        pool.start()
        results = []
        for n in range(5):
            pool.submit(results.append, args=(n,))

        pool.shutdown(wait=True, timeout=5.0)

        assert results == [0, 1, 2, 3, 4]
        assert not pool.running
        with pytest.raises(RuntimeError):
            pool.submit(print)
