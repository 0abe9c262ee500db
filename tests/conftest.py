from decimal import Decimal
from typing import Callable, Dict, List, Optional

import pytest

from channels.base import Connector, ConnectorError
from config.settings import Settings
from jobs.controller import JobController
from jobs.processor import JobProcessor
from rate_limit.limiter import Unlimited
from storage.catalog import EntitySource, MappingStore
from storage.db import init_db, make_engine, make_session_factory, session_scope
from storage.job_store import JobStore
from storage.models import ChannelRow, ProductChannelRow, ProductImageRow, ProductRow, StoreRow


def _sku(payload) -> str:
    return getattr(payload, "sku", None) or payload.variants[0].sku


class FakeConnector(Connector):
    """In-memory channel: remote ids keyed by SKU, every call recorded."""

    channel_type = "SHOPIFY"

    def __init__(self, remote: Optional[Dict[str, str]] = None, fail_skus=(), on_call: Optional[Callable] = None):
        self.remote = dict(remote or {})
        self.fail_skus = set(fail_skus)
        self.on_call = on_call
        self.calls: List[tuple] = []
        self._next_id = 1000

    @classmethod
    def from_channel(cls, channel):
        return cls()

    def _hit(self, op: str, arg: str) -> None:
        self.calls.append((op, arg))
        if self.on_call:
            self.on_call(op, arg, self)

    def find(self, natural_key):
        self._hit("find", natural_key)
        return self.remote.get(natural_key)

    def create(self, payload):
        sku = _sku(payload)
        self._hit("create", sku)
        if sku in self.fail_skus:
            raise ConnectorError(f"create rejected for {sku}", status_code=422)
        self._next_id += 1
        self.remote[sku] = str(self._next_id)
        return str(self._next_id)

    def update(self, remote_id, payload):
        sku = _sku(payload)
        self._hit("update", remote_id)
        if sku in self.fail_skus:
            raise ConnectorError(f"update rejected for {sku}", status_code=422)

    def ops(self, op: str) -> List[str]:
        return [arg for o, arg in self.calls if o == op]


class RecordingJobStore(JobStore):
    """JobStore that keeps every checkpointed snapshot for assertions."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.checkpoints = []

    def checkpoint(self, job_id, progress, current_channel_id=None, current_item_index=None):
        super().checkpoint(job_id, progress, current_channel_id, current_item_index)
        self.checkpoints.append(progress)


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite:///:memory:", cancel_check_interval=10)


@pytest.fixture
def jobs(session_factory):
    return RecordingJobStore(session_factory)


@pytest.fixture
def catalog(session_factory):
    return EntitySource(session_factory)


@pytest.fixture
def mappings(session_factory):
    return MappingStore(session_factory)


@pytest.fixture
def controller(jobs, catalog):
    return JobController(jobs, catalog, channel_types=["SHOPIFY", "EBAY"])


@pytest.fixture
def fake_remote():
    return FakeConnector()


@pytest.fixture
def fakes():
    """channel id -> FakeConnector, created on first use."""
    return {}


@pytest.fixture
def make_processor(jobs, catalog, mappings, settings, fakes):
    def _make(custom_settings=None):
        def factory(channel):
            return fakes.setdefault(channel.id, FakeConnector())
        return JobProcessor(
            jobs, catalog, mappings,
            connectors={"SHOPIFY": factory},
            settings=custom_settings or settings,
            limiter_for=lambda channel_type: Unlimited(),
        )
    return _make


@pytest.fixture
def seed(session_factory):
    """Helpers that insert catalog rows and return their ids."""

    class Seed:
        def channel(self, name, type="SHOPIFY", with_store=True, id=None):
            with session_scope(session_factory) as s:
                store = None
                if with_store:
                    store = StoreRow(domain=f"{name.lower()}.myshopify.com", access_token="tok")
                    s.add(store)
                    s.flush()
                row = ChannelRow(id=id or name.lower(), type=type, name=name,
                                 store_id=store.id if store else None)
                s.add(row)
                s.flush()
                return row.id

        def product(self, sku, title=None, price="10.00", images=(), id=None):
            with session_scope(session_factory) as s:
                row = ProductRow(id=id or f"p-{sku}", sku=sku, title=title or f"Product {sku}",
                                 description="Line one\nLine two", price=Decimal(price), tags=["new"])
                row.images = [ProductImageRow(url=u, position=i) for i, u in enumerate(images)]
                s.add(row)
                s.flush()
                return row.id

        def products(self, n, prefix="SKU"):
            return [self.product(f"{prefix}-{i}") for i in range(1, n + 1)]

        def mapping(self, product_id, channel_id, external_id):
            with session_scope(session_factory) as s:
                s.add(ProductChannelRow(product_id=product_id, channel_id=channel_id,
                                        external_id=external_id, is_published=True, is_active=True))

    return Seed()
