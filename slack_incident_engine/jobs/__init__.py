"""Background jobs: queue, job types and their handlers."""

from slack_incident_engine.tenancy import slack_client_for_organization

from .queue import Job, JobQueue, JobSpec, JobType, RetryJob
from .handlers import JOB_HANDLERS


def build_job_queue(*, max_workers: int = 4, retry_delay: float = 1.0) -> JobQueue:
    """Create the queue used by the web process, wired to per-organization Slack clients."""

    return JobQueue(
        handlers=JOB_HANDLERS,
        slack_factory=slack_client_for_organization,
        max_workers=max_workers,
        retry_delay=retry_delay,
    )


__all__ = [
    "Job",
    "JobQueue",
    "JobSpec",
    "JobType",
    "RetryJob",
    "JOB_HANDLERS",
    "build_job_queue",
]
