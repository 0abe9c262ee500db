from typing import Optional


class PublishError(Exception):
    """Base class for publish-job errors surfaced to callers."""


class JobNotFoundError(PublishError):
    def __init__(self, job_id: str):
        super().__init__(f"Publish job {job_id} not found")
        self.job_id = job_id


class JobStateError(PublishError):
    """Operation not allowed in the job's current status."""


class JobConflictError(PublishError):
    def __init__(self, active_job_id: str):
        super().__init__(f"Publish job {active_job_id} is already in progress")
        self.active_job_id = active_job_id


class EnqueueError(PublishError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
