"""Bulk publish job processor.

Walks every eligible channel of a job and, inside each channel, every product
in the order it was enqueued. Each (channel, product) pair goes through the
item graph (resolve remote id -> build payload -> create/update -> record
mapping) and the job row is checkpointed after every pair.
"""
from __future__ import annotations
from typing import Callable, Dict, List, Optional
import logging

from channels.base import ChannelConfigError, Connector, build_connector, get_connectors
from config.settings import ResumeMode, Settings, get_settings
from jobs.errors import JobNotFoundError
from jobs.state import ACTIVE_STATUSES, ItemOutcome, JobSnapshot, JobStatus, ProgressSnapshot
from pipeline.graph import PublishContext, build_graph, publish_item
from pipeline.state import Channel, Entity
from rate_limit.limiter import get_limiter
from storage.catalog import EntitySource, MappingStore
from storage.job_store import JobStore

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[Channel], Connector]


def default_connectors() -> Dict[str, ConnectorFactory]:
    return {t: build_connector for t in get_connectors()}


class _Cancelled(Exception):
    pass


class JobProcessor:
    def __init__(
        self,
        jobs: JobStore,
        catalog: EntitySource,
        mappings: MappingStore,
        connectors: Optional[Dict[str, ConnectorFactory]] = None,
        settings: Optional[Settings] = None,
        limiter_for: Callable = get_limiter,
    ):
        self.jobs = jobs
        self.catalog = catalog
        self.mappings = mappings
        self.connectors = {
            t.upper(): f for t, f in (connectors if connectors is not None else default_connectors()).items()
        }
        self.settings = settings or get_settings()
        self.limiter_for = limiter_for

    # ---------- entry point ----------
    def run(self, job_id: str) -> Optional[JobStatus]:
        """Process one job. Returns the status the run ended with, or None if it aborted.

        Terminal jobs are left untouched. A CANCELLED result means the run
        stopped early; the status itself was written by whoever cancelled.
        """
        job = self.jobs.get(job_id)
        if job is None:
            logger.error(f"Publish job {job_id} not found")
            return None
        if job.status not in ACTIVE_STATUSES:
            logger.info(f"Publish job {job_id} is {job.status.value}, skipping")
            return job.status

        resuming = job.status is JobStatus.RUNNING
        if not self.jobs.mark_running(job_id):
            logger.info(f"Publish job {job_id} left pending/running before start, skipping")
            return None

        try:
            return self._process(job, resuming)
        except _Cancelled:
            logger.info(f"Publish job {job_id} was cancelled, stopping")
            return JobStatus.CANCELLED
        except JobNotFoundError:
            logger.error(f"Publish job {job_id} disappeared mid-run, stopping")
            return None

    # ---------- steps ----------
    def _process(self, job: JobSnapshot, resuming: bool) -> JobStatus:
        channels = self.catalog.resolve_channels(job.channel_ids, types=self.connectors.keys())
        if not channels:
            message = (
                f"No eligible channels selected (supported types: {', '.join(sorted(self.connectors))})"
            )
            logger.error(f"Publish job {job.id}: {message}")
            self.jobs.finish(job.id, JobStatus.FAILED, error_message=message)
            return JobStatus.FAILED

        entities = self.catalog.load_entities(job.entity_ids)
        total_items = len(entities) * len(channels)
        progress = self._starting_progress(job, channels, len(entities), resuming)
        self.jobs.begin(job.id, total_items, progress)
        logger.info(
            f"Publish job {job.id}: {len(entities)} products x {len(channels)} channels, "
            f"{progress.processed} already processed"
        )

        for channel in channels:
            self._check_cancelled(job.id)
            progress = self._process_channel(job.id, channel, entities, progress)

        status = progress.terminal_status(total_items)
        if not self.jobs.finish(job.id, status, progress):
            # cancelled after the last poll; the stored row wins
            logger.info(f"Publish job {job.id} was cancelled before it could finish")
            return self.jobs.get_status(job.id) or JobStatus.CANCELLED
        logger.info(
            f"Publish job {job.id} {status.value}: {progress.created} created, "
            f"{progress.updated} updated, {progress.failed} failed"
        )
        return status

    def _starting_progress(
        self, job: JobSnapshot, channels: List[Channel], per_channel: int, resuming: bool
    ) -> ProgressSnapshot:
        fresh = ProgressSnapshot.initial({c.id: c.name for c in channels}, per_channel)
        if not resuming or self.settings.resume_mode is not ResumeMode.SKIP_DONE:
            return fresh
        saved = job.progress()
        same_shape = set(saved.channels) == set(fresh.channels) and all(
            cp.total == per_channel for cp in saved.channels.values()
        )
        if not same_shape:
            logger.info(f"Publish job {job.id}: saved progress does not match, rescanning")
            return fresh
        return saved

    def _process_channel(
        self, job_id: str, channel: Channel, entities: List[Entity], progress: ProgressSnapshot
    ) -> ProgressSnapshot:
        cap = self.settings.max_errors_per_channel
        start = progress.channels[channel.id].done
        if start >= len(entities):
            return progress

        try:
            if channel.store is None:
                raise ChannelConfigError(f"Channel {channel.name} has no linked store")
            connector = self.connectors[channel.type](channel)
        except ChannelConfigError as ex:
            logger.error(f"Publish job {job_id}: skipping channel {channel.name}: {ex}")
            remaining = progress.channels[channel.id].remaining
            progress = progress.fail_channel(channel.id, remaining, str(ex), cap)
            self.jobs.checkpoint(job_id, progress, channel.id, len(entities))
            return progress

        self.jobs.checkpoint(job_id, progress, channel.id, start)
        app = build_graph(PublishContext(
            connector=connector,
            mappings=self.mappings,
            limiter=self.limiter_for(channel.type),
        ))
        try:
            for idx in range(start, len(entities)):
                if idx % self.settings.cancel_check_interval == 0:
                    self._check_cancelled(job_id)
                progress = self._publish_one(app, channel, entities[idx], progress)
                self.jobs.checkpoint(job_id, progress, channel.id, idx + 1)
        finally:
            connector.close()
        return progress

    def _publish_one(self, app, channel: Channel, entity: Entity, progress: ProgressSnapshot) -> ProgressSnapshot:
        cap = self.settings.max_errors_per_channel
        try:
            result = publish_item(app, channel, entity)
        except Exception as ex:
            message = str(ex) or type(ex).__name__
            logger.error(f"Error publishing {entity.natural_key} to channel {channel.name}: {message}")
            try:
                self.mappings.record_failure(entity.id, channel.id, message)
            except Exception:
                logger.exception(f"Could not save sync error for {entity.natural_key} on {channel.name}")
            return progress.record(channel.id, ItemOutcome.FAILED, f"{entity.natural_key}: {message}", cap)
        logger.debug(
            f"{entity.natural_key} {result.outcome} on {channel.name} as {result.external_id}"
            + (" (adopted by SKU)" if result.adopted else "")
        )
        return progress.record(channel.id, ItemOutcome(result.outcome), cap=cap)

    def _check_cancelled(self, job_id: str) -> None:
        status = self.jobs.get_status(job_id)
        if status is None:
            raise JobNotFoundError(job_id)
        if status is JobStatus.CANCELLED:
            raise _Cancelled()
