"""In-process job queue for fire-and-forget follow-up work."""

from __future__ import annotations

import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from contextvars import copy_context
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping
from uuid import uuid4

import structlog
from structlog.contextvars import bind_contextvars

from slack_incident_engine.slack_client import SlackClient

logger = structlog.get_logger(__name__)


class JobType(str, Enum):
    FETCH_SLACK_USER_PROFILE = "fetch_slack_user_profile"
    POST_USER_PROFILE_MESSAGE = "post_user_profile_message"
    UPDATE_SLACK_CHANNEL_METADATA = "update_slack_channel_metadata"
    GATHER_INCIDENT_ANALYTICS = "gather_incident_analytics"


class RetryJob(Exception):
    """Raised by a handler whose inputs are not ready yet; the job is retried."""


@dataclass(frozen=True)
class Job:
    job_type: str
    payload: Dict[str, Any]
    job_id: str = field(default_factory=lambda: str(uuid4()))


JobHandler = Callable[["JobQueue", Job], None]


@dataclass(frozen=True)
class JobSpec:
    handler: JobHandler
    max_attempts: int = 3


class JobQueue:
    """Dispatch jobs to registered handlers on a worker pool.

    Delivery is at-least-once: a handler that raises is run again until it
    succeeds or ``max_attempts`` is exhausted, so handlers must be idempotent.
    The structlog context of the enqueuing request is carried into the worker.
    """

    def __init__(
        self,
        *,
        handlers: Mapping[str, JobSpec],
        slack_factory: Callable[[int], SlackClient],
        executor: Executor | None = None,
        max_workers: int = 4,
        retry_delay: float = 1.0,
    ) -> None:
        self._handlers = dict(handlers)
        self._slack_factory = slack_factory
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="incident-jobs")
        self._retry_delay = retry_delay

    def slack_for(self, organization_id: int) -> SlackClient:
        return self._slack_factory(organization_id)

    def enqueue(self, job_type: JobType | str, **payload: Any) -> Future | None:
        """Schedule a job and return immediately; scheduling problems are logged, not raised."""

        try:
            job = Job(job_type=JobType(job_type).value, payload=payload)
        except ValueError:
            logger.error("job_unknown_type", job_type=str(job_type))
            return None
        if job.job_type not in self._handlers:
            logger.error("job_unknown_type", job_type=job.job_type)
            return None

        context = copy_context()
        context.run(lambda: bind_contextvars(job_id=job.job_id, job_type=job.job_type))
        try:
            future = self._executor.submit(context.run, self.run, job)
        except RuntimeError:
            logger.exception("job_enqueue_failed", job_type=job.job_type)
            return None
        logger.info("job_enqueued", job_type=job.job_type, job_id=job.job_id)
        return future

    def run(self, job: Job) -> bool:
        """Run *job* with retries; return True once a handler attempt succeeds."""

        spec = self._handlers[job.job_type]
        for attempt in range(1, spec.max_attempts + 1):
            try:
                spec.handler(self, job)
            except Exception as exc:
                final = attempt >= spec.max_attempts
                log = logger.warning if isinstance(exc, RetryJob) else logger.error
                log(
                    "job_failed",
                    job_type=job.job_type,
                    attempt=attempt,
                    max_attempts=spec.max_attempts,
                    error=str(exc),
                    exc_info=not isinstance(exc, RetryJob),
                )
                if final:
                    logger.error("job_abandoned", job_type=job.job_type, attempts=attempt)
                    return False
                if self._retry_delay:
                    time.sleep(self._retry_delay * attempt)
                continue
            logger.info("job_completed", job_type=job.job_type, attempt=attempt)
            return True
        return False

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
