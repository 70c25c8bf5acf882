"""Wiring of stage workers onto the generation and regeneration queues."""

import os
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from bookgen.db import get_session_factory
from bookgen.services.drive import DriveService
from bookgen.services.gemini import GeminiService
from bookgen.services.ideogram import IdeogramService
from bookgen.services.queue import PRIMARY_QUEUE, REGENERATION_QUEUE, Job, JobQueue, RetryPolicy
from bookgen.services.stages.base import Stage
from bookgen.services.stages.chapters import ChapterStage
from bookgen.services.stages.cover import CoverStage
from bookgen.services.stages.description import DescriptionStage
from bookgen.services.stages.tags import TagStage
from bookgen.services.stages.title import TitleStage


def _concurrency_from_env(var: str) -> int:
    raw = os.environ.get(var, "").strip()
    if not raw:
        return 5
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{var} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ValueError(f"{var} must be >= 1, got {value}")
    return value


def build_stages(
    session_factory: Callable[[], Session],
    text_client: GeminiService | None = None,
    image_client: IdeogramService | None = None,
    storage: DriveService | None = None,
) -> list[Stage]:
    text = text_client or GeminiService()
    return [
        TitleStage(session_factory, text),
        DescriptionStage(session_factory, text),
        ChapterStage(session_factory, text),
        CoverStage(session_factory, text, image_client or IdeogramService(), storage or DriveService()),
        TagStage(session_factory, text),
    ]


class Pipeline:
    """Both named queues with every stage registered on each.

    A stage hands its successor off on the queue its own job came from, so a
    regeneration run stays on the regeneration queue end to end.
    """

    def __init__(
        self,
        stages: list[Stage],
        generation_concurrency: int | None = None,
        regeneration_concurrency: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        policy = retry_policy or RetryPolicy(attempts=1)
        self.queues: dict[str, JobQueue] = {
            PRIMARY_QUEUE: JobQueue(
                PRIMARY_QUEUE,
                generation_concurrency or _concurrency_from_env("GENERATION_CONCURRENCY"),
                policy,
            ),
            REGENERATION_QUEUE: JobQueue(
                REGENERATION_QUEUE,
                regeneration_concurrency or _concurrency_from_env("REGENERATION_CONCURRENCY"),
                policy,
            ),
        }
        self.stages = {stage.name: stage for stage in stages}
        for job_queue in self.queues.values():
            for stage in stages:
                job_queue.register(stage.name, self._handler(stage))

    def _handler(self, stage: Stage) -> Callable[[Job], None]:
        def handle(job: Job) -> None:
            def hand_off(next_stage: str, payload: dict[str, Any]) -> Job:
                return self.enqueue(job.queue, next_stage, payload)

            stage.handle(job.payload, hand_off)

        return handle

    def enqueue(self, queue_name: str, stage: str, payload: dict[str, Any]) -> Job:
        job_queue = self.queues.get(queue_name)
        if job_queue is None:
            raise ValueError(f"Unknown queue: {queue_name!r}")
        return job_queue.enqueue(stage, payload)

    def start(self) -> None:
        for job_queue in self.queues.values():
            job_queue.start()

    def stop(self, wait: bool = True) -> None:
        for job_queue in self.queues.values():
            job_queue.stop(wait=wait)

    def join(self) -> None:
        """Wait until both queues are drained, including hand-offs made while waiting."""
        for job_queue in self.queues.values():
            job_queue.join()


# Process-wide pipeline, built lazily on first access.
_pipeline: Pipeline | None = None


def get_pipeline() -> Pipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = Pipeline(build_stages(get_session_factory()))
    return _pipeline
