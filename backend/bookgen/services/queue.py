"""In-process job queues drained by a bounded worker pool.

Two named queues exist: the primary generation queue and the regeneration
queue, so operator-triggered retries never compete with first-pass
throughput. Each job is delivered to exactly one worker thread; failed jobs
are retried according to their RetryPolicy and then logged.
"""

import logging
import queue
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from tenacity import Retrying, before_sleep_log, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

PRIMARY_QUEUE = "book-generation"
REGENERATION_QUEUE = "book-regeneration"

_DEFAULT_CONCURRENCY = 5


class QueueStoppedError(RuntimeError):
    """Raised when a job is added to a queue that has been stopped."""


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 1
    backoff_seconds: float = 1.0


@dataclass
class Job:
    stage: str
    payload: dict[str, Any]
    queue: str
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    id: uuid.UUID = field(default_factory=uuid.uuid4)


JobHandler = Callable[[Job], None]

# Stage hand-off: enqueue(stage, payload) on the queue the current job came from.
Enqueue = Callable[[str, dict[str, Any]], Any]

# Queue-addressed enqueue: dispatch(queue_name, stage, payload).
Dispatch = Callable[[str, str, dict[str, Any]], Any]


class JobQueue:
    """A named FIFO of jobs processed by up to *concurrency* worker threads."""

    def __init__(
        self,
        name: str,
        concurrency: int = _DEFAULT_CONCURRENCY,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.name = name
        self.concurrency = concurrency
        self.retry_policy = retry_policy or RetryPolicy()
        self._handlers: dict[str, JobHandler] = {}
        self._jobs: queue.Queue[Job | None] = queue.Queue()
        self._executor: ThreadPoolExecutor | None = None
        self._stopped = False
        self._lock = threading.Lock()

    def register(self, stage: str, handler: JobHandler) -> None:
        self._handlers[stage] = handler

    def enqueue(
        self,
        stage: str,
        payload: dict[str, Any],
        retry_policy: RetryPolicy | None = None,
    ) -> Job:
        """Add a job for *stage*.

        Raises ValueError if no handler is registered for it, and
        QueueStoppedError once the queue has been stopped: such a job would
        never be taken.
        """
        if stage not in self._handlers:
            raise ValueError(f"No handler registered for stage {stage!r} on queue {self.name}")
        if self._stopped:
            logger.warning("rejecting job '%s' with data %s: queue %s is stopped", stage, payload, self.name)
            raise QueueStoppedError(f"Queue {self.name} is stopped")
        job = Job(
            stage=stage,
            payload=payload,
            queue=self.name,
            retry_policy=retry_policy or self.retry_policy,
        )
        logger.info("adding job %s '%s' to queue %s with data %s", job.id, stage, self.name, payload)
        self._jobs.put(job)
        return job

    def pending(self) -> int:
        return self._jobs.qsize()

    def start(self) -> None:
        """Start the worker pool. No-op if already running."""
        with self._lock:
            if self._executor is not None:
                return
            self._stopped = False
            self._executor = ThreadPoolExecutor(
                max_workers=self.concurrency, thread_name_prefix=self.name
            )
            for _ in range(self.concurrency):
                self._executor.submit(self._drain)
        logger.info("queue %s started with %d workers", self.name, self.concurrency)

    def stop(self, wait: bool = True) -> None:
        """Stop the worker pool once the jobs already queued have been taken.

        Jobs enqueued after this point, hand-offs from jobs still running
        included, are rejected.
        """
        with self._lock:
            executor = self._executor
            self._executor = None
            if executor is not None:
                self._stopped = True
        if executor is None:
            return
        for _ in range(self.concurrency):
            self._jobs.put(None)
        executor.shutdown(wait=wait)
        logger.info("queue %s stopped", self.name)

    def join(self) -> None:
        """Block until every job enqueued so far, including hand-offs, has been processed."""
        self._jobs.join()

    def _drain(self) -> None:
        while True:
            job = self._jobs.get()
            try:
                if job is None:
                    return
                self.run_job(job)
            finally:
                self._jobs.task_done()

    def run_job(self, job: Job) -> bool:
        """Run *job* through its handler with retries. Returns False if it finally failed."""
        handler = self._handlers[job.stage]
        policy = job.retry_policy
        retrying = Retrying(
            stop=stop_after_attempt(max(policy.attempts, 1)),
            wait=wait_exponential(multiplier=policy.backoff_seconds),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        logger.info("processing job %s '%s' on queue %s", job.id, job.stage, self.name)
        try:
            for attempt in retrying:
                with attempt:
                    handler(job)
        except Exception:
            logger.exception("job %s '%s' on queue %s has failed", job.id, job.stage, self.name)
            return False
        logger.info("job %s '%s' has completed", job.id, job.stage)
        return True
