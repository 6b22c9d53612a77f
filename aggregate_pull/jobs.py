"""Composable background jobs with cooperative cancellation.

A Job wraps a function of a RunnerStatus. Nothing runs until the job is
launched. Jobs never get interrupted: the work is expected to poll
`runner_status.is_cancelled()` before every blocking call and bail out.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Generic, Iterable, List, Optional, Tuple, TypeVar

logger = logging.getLogger("aggregate_pull")

T = TypeVar("T")
U = TypeVar("U")

DEFAULT_MAX_WORKERS = 8


class RunnerStatus:
    """Shared cancellation flag, checked by the work and never enforced."""

    def __init__(self):
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_still_running(self) -> bool:
        return not self._cancelled.is_set()


class Job(Generic[T]):
    def __init__(self, work: Callable[[RunnerStatus], T]):
        self._work = work

    @classmethod
    def supply(cls, work: Callable[[RunnerStatus], T]) -> "Job[T]":
        return cls(work)

    @classmethod
    def all_of(cls, *jobs: "Job[Any]", max_workers: Optional[int] = None) -> "Job[Tuple[Any, ...]]":
        """Run `jobs` in parallel; the result is the tuple of their results, in order."""

        def _run(runner_status: RunnerStatus) -> Tuple[Any, ...]:
            if not jobs:
                return ()
            workers = min(len(jobs), max_workers or len(jobs))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="job") as executor:
                futures = [executor.submit(job.run, runner_status) for job in jobs]
                return tuple(f.result() for f in futures)

        return cls(_run)

    def then_apply(self, fn: Callable[[RunnerStatus, T], U]) -> "Job[U]":
        return Job(lambda runner_status: fn(runner_status, self.run(runner_status)))

    def then_accept(self, fn: Callable[[RunnerStatus, T], Any]) -> "Job[T]":
        """Run `fn` for its side effects; the job's result passes through unchanged."""

        def _run(runner_status: RunnerStatus) -> T:
            result = self.run(runner_status)
            fn(runner_status, result)
            return result

        return Job(_run)

    def run(self, runner_status: RunnerStatus) -> T:
        return self._work(runner_status)


class JobsRunner:
    """Runs independent top-level jobs with bounded parallelism.

    A failing job reports to `on_error` and leaves its siblings alone.
    `on_success` gets the results of the jobs that succeeded, once all of
    them are done.
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS):
        self.runner_status = RunnerStatus()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pull")
        self._futures: List[Future] = []
        self._lock = threading.Lock()
        self._pending = 0
        self.errors: List[BaseException] = []

    @classmethod
    def launch_async(cls, jobs: Iterable[Job[T]],
                     on_error: Callable[[BaseException], None],
                     on_success: Optional[Callable[[List[T]], None]] = None,
                     max_workers: int = DEFAULT_MAX_WORKERS) -> "JobsRunner":
        runner = cls(max_workers)
        runner._launch(list(jobs), on_error, on_success)
        return runner

    def _launch(self, jobs, on_error, on_success):
        self._pending = len(jobs)
        if not jobs:
            if on_success is not None:
                on_success([])
            return

        def _done(future: Future):
            try:
                exc = future.exception()
                if exc is not None:
                    logger.error(f"Job failed: {exc}")
                    with self._lock:
                        self.errors.append(exc)
                    try:
                        on_error(exc)
                    except Exception:
                        logger.exception("Error callback failed")
            finally:
                with self._lock:
                    self._pending -= 1
                    finished = self._pending == 0
            if finished and on_success is not None:
                on_success(self._successful_results())

        for job in jobs:
            future = self._executor.submit(job.run, self.runner_status)
            self._futures.append(future)
        # Callbacks are attached after every submit so `_pending` covers all jobs
        for future in self._futures:
            future.add_done_callback(_done)

    def _successful_results(self) -> List[Any]:
        return [f.result() for f in self._futures if f.done() and f.exception() is None]

    def cancel(self):
        self.runner_status.cancel()

    def wait_for_completion(self) -> List[Any]:
        """Block until every job is done and return the successful results."""
        self._executor.shutdown(wait=True)
        return self._successful_results()
