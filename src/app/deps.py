from dataclasses import dataclass
from functools import lru_cache

from config.settings import get_settings
from jobs.controller import JobController
from jobs.processor import JobProcessor, default_connectors
from rate_limit.limiter import get_limiter
from storage.catalog import EntitySource, MappingStore
from storage.db import init_db, make_engine, make_session_factory
from storage.job_store import JobStore


@dataclass
class Services:
    controller: JobController
    processor: JobProcessor


def build_services(session_factory, settings=None, connectors=None, limiter_for=None) -> Services:
    settings = settings or get_settings()
    connectors = connectors if connectors is not None else default_connectors()
    jobs = JobStore(session_factory)
    catalog = EntitySource(session_factory)
    processor = JobProcessor(
        jobs, catalog, MappingStore(session_factory),
        connectors=connectors, settings=settings, limiter_for=limiter_for or get_limiter,
    )
    return Services(
        controller=JobController(jobs, catalog, channel_types=processor.connectors.keys()),
        processor=processor,
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    settings = get_settings()
    engine = make_engine(settings.database_url)
    init_db(engine)
    return build_services(make_session_factory(engine), settings)
