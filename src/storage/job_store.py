from __future__ import annotations
from typing import List, Optional
import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import sessionmaker

from jobs.errors import JobNotFoundError
from jobs.state import ACTIVE_STATUSES, ChannelProgress, JobSnapshot, JobStatus, ProgressSnapshot
from storage.db import session_scope
from storage.models import PublishJobRow, utcnow

logger = logging.getLogger(__name__)

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


def _to_snapshot(row: PublishJobRow) -> JobSnapshot:
    return JobSnapshot(
        id=row.id,
        status=JobStatus(row.status),
        entity_ids=list(row.entity_ids or []),
        channel_ids=list(row.channel_ids or []),
        total_items=row.total_items or 0,
        processed_items=row.processed_items or 0,
        created_count=row.created_count or 0,
        updated_count=row.updated_count or 0,
        failed_count=row.failed_count or 0,
        channel_progress={
            cid: ChannelProgress(**cp) for cid, cp in (row.channel_progress or {}).items()
        },
        current_channel_id=row.current_channel_id,
        current_item_index=row.current_item_index or 0,
        requested_by=row.requested_by,
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
        error_message=row.error_message,
    )


class JobStore:
    """Publish-job rows with single-statement partial updates.

    Every write is an ``UPDATE ... WHERE id = ?`` touching only the columns it
    owns, so a checkpoint never clobbers a concurrently written status and a
    terminal write never overrides an earlier terminal status.
    """

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    # ---------- reads ----------
    def get(self, job_id: str) -> Optional[JobSnapshot]:
        with session_scope(self._sessions) as s:
            row = s.get(PublishJobRow, job_id)
            return _to_snapshot(row) if row else None

    def get_status(self, job_id: str) -> Optional[JobStatus]:
        with session_scope(self._sessions) as s:
            status = s.execute(
                select(PublishJobRow.status).where(PublishJobRow.id == job_id)
            ).scalar_one_or_none()
        return JobStatus(status) if status else None

    def find_active(self, requested_by: Optional[str] = None) -> Optional[str]:
        q = select(PublishJobRow.id).where(PublishJobRow.status.in_(_ACTIVE))
        if requested_by:
            q = q.where(PublishJobRow.requested_by == requested_by)
        q = q.order_by(PublishJobRow.created_at.desc()).limit(1)
        with session_scope(self._sessions) as s:
            return s.execute(q).scalar_one_or_none()

    # ---------- writes ----------
    def create(
        self,
        entity_ids: List[str],
        channel_ids: List[str],
        total_items: int = 0,
        requested_by: Optional[str] = None,
    ) -> JobSnapshot:
        row = PublishJobRow(
            status=JobStatus.PENDING.value,
            entity_ids=list(entity_ids),
            channel_ids=list(channel_ids),
            total_items=total_items,
            processed_items=0,
            created_count=0,
            updated_count=0,
            failed_count=0,
            channel_progress={},
            current_item_index=0,
            requested_by=requested_by,
        )
        with session_scope(self._sessions) as s:
            s.add(row)
            s.flush()
            return _to_snapshot(row)

    def _update(self, job_id: str, values: dict, only_active: bool = False) -> int:
        stmt = update(PublishJobRow).where(PublishJobRow.id == job_id)
        if only_active:
            stmt = stmt.where(PublishJobRow.status.in_(_ACTIVE))
        with session_scope(self._sessions) as s:
            return s.execute(stmt.values(**values)).rowcount

    def mark_running(self, job_id: str) -> bool:
        """PENDING/RUNNING -> RUNNING. ``started_at`` is kept if already set."""
        return self._update(job_id, {
            "status": JobStatus.RUNNING.value,
            "started_at": func.coalesce(PublishJobRow.started_at, utcnow()),
        }, only_active=True) > 0

    def begin(self, job_id: str, total_items: int, progress: ProgressSnapshot) -> None:
        if not self._update(job_id, {
            "total_items": total_items,
            "processed_items": progress.processed,
            "created_count": progress.created,
            "updated_count": progress.updated,
            "failed_count": progress.failed,
            "channel_progress": progress.channels_json(),
        }):
            raise JobNotFoundError(job_id)

    def checkpoint(
        self,
        job_id: str,
        progress: ProgressSnapshot,
        current_channel_id: Optional[str] = None,
        current_item_index: Optional[int] = None,
    ) -> None:
        values = {
            "processed_items": progress.processed,
            "created_count": progress.created,
            "updated_count": progress.updated,
            "failed_count": progress.failed,
            "channel_progress": progress.channels_json(),
        }
        if current_channel_id is not None:
            values["current_channel_id"] = current_channel_id
        if current_item_index is not None:
            values["current_item_index"] = current_item_index
        if not self._update(job_id, values):
            raise JobNotFoundError(job_id)

    def finish(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[ProgressSnapshot] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Write a terminal status. No-op (returns False) if the job is already terminal."""
        values = {"status": status.value, "completed_at": utcnow()}
        if progress is not None:
            values["channel_progress"] = progress.channels_json()
        if error_message is not None:
            values["error_message"] = error_message
        written = self._update(job_id, values, only_active=True) > 0
        if not written:
            logger.info(f"Publish job {job_id} already terminal; {status.value} not written")
        return written

    def request_cancel(self, job_id: str, reason: str = "Cancelled by user") -> bool:
        return self.finish(job_id, JobStatus.CANCELLED, error_message=reason)
