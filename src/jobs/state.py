from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self not in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})


class ItemOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


class ChannelProgress(BaseModel):
    """Per-channel counters as persisted in ``publish_jobs.channel_progress``.

    Instances are immutable; every ``record_*`` call returns a new value so a
    checkpoint always writes a consistent whole.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    total: int = 0
    done: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    errors_omitted: int = 0

    def _with_error(self, message: str, cap: int) -> dict:
        if len(self.errors) < cap:
            return {"errors": [*self.errors, message]}
        return {"errors_omitted": self.errors_omitted + 1}

    def record(self, outcome: ItemOutcome, error: Optional[str] = None, cap: int = 100) -> "ChannelProgress":
        update = {"done": self.done + 1}
        if outcome is ItemOutcome.CREATED:
            update["created"] = self.created + 1
        elif outcome is ItemOutcome.UPDATED:
            update["updated"] = self.updated + 1
        else:
            update["failed"] = self.failed + 1
            if error:
                update.update(self._with_error(error, cap))
        return self.model_copy(update=update)

    def fail_all(self, count: int, message: str, cap: int = 100) -> "ChannelProgress":
        # one error entry for the whole allotment, not one per product
        update = {"done": self.done + count, "failed": self.failed + count}
        update.update(self._with_error(message, cap))
        return self.model_copy(update=update)

    @property
    def remaining(self) -> int:
        return max(self.total - self.done, 0)


class ProgressSnapshot(BaseModel):
    """Job-wide counters plus per-channel progress at one checkpoint."""

    model_config = ConfigDict(frozen=True)

    processed: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    channels: Dict[str, ChannelProgress] = Field(default_factory=dict)

    @classmethod
    def initial(cls, channel_names: Dict[str, str], per_channel: int) -> "ProgressSnapshot":
        return cls(channels={
            cid: ChannelProgress(name=name, total=per_channel)
            for cid, name in channel_names.items()
        })

    def record(self, channel_id: str, outcome: ItemOutcome, error: Optional[str] = None, cap: int = 100) -> "ProgressSnapshot":
        channels = dict(self.channels)
        channels[channel_id] = channels[channel_id].record(outcome, error, cap)
        return self.model_copy(update={
            "processed": self.processed + 1,
            "created": self.created + (outcome is ItemOutcome.CREATED),
            "updated": self.updated + (outcome is ItemOutcome.UPDATED),
            "failed": self.failed + (outcome is ItemOutcome.FAILED),
            "channels": channels,
        })

    def fail_channel(self, channel_id: str, count: int, message: str, cap: int = 100) -> "ProgressSnapshot":
        channels = dict(self.channels)
        channels[channel_id] = channels[channel_id].fail_all(count, message, cap)
        return self.model_copy(update={
            "processed": self.processed + count,
            "failed": self.failed + count,
            "channels": channels,
        })

    def terminal_status(self, total_items: int) -> JobStatus:
        if self.failed == 0:
            return JobStatus.COMPLETED
        if self.failed == total_items:
            return JobStatus.FAILED
        return JobStatus.COMPLETED_WITH_ERRORS

    def channels_json(self) -> Dict[str, dict]:
        return {cid: cp.model_dump() for cid, cp in self.channels.items()}


class JobSnapshot(BaseModel):
    id: str
    status: JobStatus
    entity_ids: List[str] = Field(default_factory=list)
    channel_ids: List[str] = Field(default_factory=list)
    total_items: int = 0
    processed_items: int = 0
    created_count: int = 0
    updated_count: int = 0
    failed_count: int = 0
    channel_progress: Dict[str, ChannelProgress] = Field(default_factory=dict)
    current_channel_id: Optional[str] = None
    current_item_index: int = 0
    requested_by: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def progress(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            processed=self.processed_items,
            created=self.created_count,
            updated=self.updated_count,
            failed=self.failed_count,
            channels=dict(self.channel_progress),
        )
