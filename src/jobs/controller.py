from __future__ import annotations
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
import logging
import math

from pydantic import BaseModel

from jobs.errors import EnqueueError, JobConflictError, JobNotFoundError, JobStateError
from jobs.state import ACTIVE_STATUSES, ChannelProgress, JobSnapshot, JobStatus
from storage.catalog import EntitySource
from storage.job_store import JobStore

logger = logging.getLogger(__name__)

CANCEL_REASON = "Cancelled by user"


class ProgressCounts(BaseModel):
    total: int
    done: int
    percent: int
    created: int
    updated: int
    failed: int


class JobProgress(BaseModel):
    id: str
    status: JobStatus
    progress: ProgressCounts
    channel_progress: Dict[str, ChannelProgress]
    current_channel: Optional[str] = None
    current_channel_id: Optional[str] = None
    current_item_index: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_time_remaining: Optional[str] = None
    error_message: Optional[str] = None


def _format_remaining(seconds: float) -> str:
    if seconds < 60:
        return f"{math.ceil(seconds)}s"
    minutes, rest = divmod(seconds, 60)
    return f"{int(minutes)}m {math.ceil(rest)}s"


def estimate_remaining(job: JobSnapshot, now: Optional[datetime] = None) -> Optional[str]:
    """Linear ETA from the rate so far; only meaningful while RUNNING."""
    if job.status is not JobStatus.RUNNING or not job.started_at or job.processed_items <= 0:
        return None
    now = now or datetime.now(timezone.utc)
    started = job.started_at if job.started_at.tzinfo else job.started_at.replace(tzinfo=timezone.utc)
    elapsed = (now - started).total_seconds()
    if elapsed <= 0:
        return None
    remaining_items = max(job.total_items - job.processed_items, 0)
    return _format_remaining(remaining_items * elapsed / job.processed_items)


def to_progress(job: JobSnapshot, now: Optional[datetime] = None) -> JobProgress:
    current = next(
        (cp.name for cp in job.channel_progress.values() if cp.done < cp.total), None
    )
    percent = round(job.processed_items * 100 / job.total_items) if job.total_items > 0 else 0
    return JobProgress(
        id=job.id,
        status=job.status,
        progress=ProgressCounts(
            total=job.total_items,
            done=job.processed_items,
            percent=percent,
            created=job.created_count,
            updated=job.updated_count,
            failed=job.failed_count,
        ),
        channel_progress=job.channel_progress,
        current_channel=current,
        current_channel_id=job.current_channel_id,
        current_item_index=job.current_item_index,
        started_at=job.started_at,
        completed_at=job.completed_at,
        estimated_time_remaining=estimate_remaining(job, now),
        error_message=job.error_message,
    )


class JobController:
    """Creates publish jobs, reports their progress and cancels them.

    Running a job is someone else's concern (see ``jobs.runner``); the
    controller only guarantees that at most one job is active at a time.
    """

    def __init__(self, jobs: JobStore, catalog: EntitySource, channel_types: Iterable[str]):
        self.jobs = jobs
        self.catalog = catalog
        self.channel_types = [t.upper() for t in channel_types]

    def enqueue(
        self,
        entity_ids: List[str],
        channel_ids: List[str],
        requested_by: Optional[str] = None,
    ) -> str:
        entity_ids = list(dict.fromkeys(entity_ids or []))
        channel_ids = list(dict.fromkeys(channel_ids or []))
        if not entity_ids:
            raise EnqueueError("Select at least one product", field="entity_ids")
        if not channel_ids:
            raise EnqueueError("Select at least one channel", field="channel_ids")

        active = self.jobs.find_active()
        if active:
            raise JobConflictError(active)

        channels = self.catalog.resolve_channels(channel_ids, types=self.channel_types)
        if not channels:
            raise EnqueueError("No valid channels in the selection", field="channel_ids")
        product_count = self.catalog.count_entities(entity_ids)
        if product_count == 0:
            raise EnqueueError("Selected products do not exist", field="entity_ids")

        job = self.jobs.create(
            entity_ids=entity_ids,
            channel_ids=[c.id for c in channels],
            total_items=product_count * len(channels),
            requested_by=requested_by,
        )
        logger.info(
            f"Publish job {job.id} queued: {product_count} products on {len(channels)} channels"
        )
        return job.id

    def get_progress(self, job_id: str) -> JobProgress:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return to_progress(job)

    def active_job(self, requested_by: Optional[str] = None) -> Optional[str]:
        return self.jobs.find_active(requested_by)

    def cancel(self, job_id: str) -> None:
        status = self.jobs.get_status(job_id)
        if status is None:
            raise JobNotFoundError(job_id)
        if status not in ACTIVE_STATUSES or not self.jobs.request_cancel(job_id, CANCEL_REASON):
            raise JobStateError(f"Publish job {job_id} cannot be cancelled (not in progress)")
        logger.info(f"Publish job {job_id} cancelled")
