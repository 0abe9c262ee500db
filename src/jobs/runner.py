import logging

from jobs.processor import JobProcessor
from jobs.state import JobStatus

logger = logging.getLogger(__name__)


def run_job_guarded(processor: JobProcessor, job_id: str):
    """Background entry point: an unexpected error fails the job instead of leaving it RUNNING."""
    try:
        return processor.run(job_id)
    except Exception as ex:
        logger.exception(f"Background publish job {job_id} failed")
        processor.jobs.finish(job_id, JobStatus.FAILED, error_message=str(ex) or type(ex).__name__)
        return JobStatus.FAILED
