from __future__ import annotations
from typing import Iterable, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from pipeline.state import Channel, ChannelMapping, Entity, Image, StoreCredentials
from storage.db import session_scope
from storage.models import ChannelRow, ProductChannelRow, ProductRow, utcnow

logger = logging.getLogger(__name__)


def _mapping(row: ProductChannelRow) -> ChannelMapping:
    return ChannelMapping(
        channel_id=row.channel_id,
        external_id=row.external_id,
        is_published=bool(row.is_published),
        is_active=bool(row.is_active),
        last_synced_at=row.last_synced_at,
        sync_error=row.sync_error,
    )


def _entity(row: ProductRow) -> Entity:
    return Entity(
        id=row.id,
        natural_key=row.sku,
        title=row.title or "",
        description=row.description or "",
        brand=row.brand or "",
        price=row.price,
        compare_at_price=row.compare_at_price,
        barcode=row.barcode,
        weight=row.weight,
        quantity=row.quantity,
        tags=list(row.tags or []),
        images=[Image(url=i.url, position=i.position or 0) for i in row.images],
        mappings={m.channel_id: _mapping(m) for m in row.channels},
    )


def _channel(row: ChannelRow) -> Channel:
    store = None
    if row.store is not None:
        store = StoreCredentials(
            id=row.store.id,
            domain=row.store.domain,
            access_token=row.store.access_token,
            extra=dict(row.store.credentials or {}),
        )
    return Channel(id=row.id, type=row.type.upper(), name=row.name, store=store)


class EntitySource:
    """Read-only access to products and channels for a publish run."""

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def load_entities(self, entity_ids: List[str]) -> List[Entity]:
        """Products with images and mappings, in the order of ``entity_ids``.

        Ids with no product row are dropped.
        """
        if not entity_ids:
            return []
        q = (
            select(ProductRow)
            .where(ProductRow.id.in_(entity_ids))
            .options(selectinload(ProductRow.images), selectinload(ProductRow.channels))
        )
        with session_scope(self._sessions) as s:
            by_id = {row.id: _entity(row) for row in s.execute(q).scalars()}
        return [by_id[i] for i in dict.fromkeys(entity_ids) if i in by_id]

    def count_entities(self, entity_ids: List[str]) -> int:
        if not entity_ids:
            return 0
        with session_scope(self._sessions) as s:
            return len(s.execute(
                select(ProductRow.id).where(ProductRow.id.in_(entity_ids))
            ).scalars().all())

    def resolve_channels(self, channel_ids: List[str], types: Optional[Iterable[str]] = None) -> List[Channel]:
        """Channels for ``channel_ids`` in supplied order, optionally limited to ``types``."""
        if not channel_ids:
            return []
        q = select(ChannelRow).where(ChannelRow.id.in_(channel_ids))
        allowed = {t.upper() for t in types} if types is not None else None
        with session_scope(self._sessions) as s:
            by_id = {row.id: _channel(row) for row in s.execute(q).scalars().unique()}
        out = [by_id[c] for c in dict.fromkeys(channel_ids) if c in by_id]
        if allowed is not None:
            out = [c for c in out if c.type in allowed]
        return out


class MappingStore:
    """Writes ``product_channels`` rows. One row per (product, channel)."""

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def _get_or_new(self, s: Session, entity_id: str, channel_id: str) -> ProductChannelRow:
        row = s.execute(
            select(ProductChannelRow).where(
                ProductChannelRow.product_id == entity_id,
                ProductChannelRow.channel_id == channel_id,
            )
        ).scalar_one_or_none()
        if row is None:
            row = ProductChannelRow(
                product_id=entity_id,
                channel_id=channel_id,
                is_published=False,
                is_active=False,
            )
            s.add(row)
        return row

    def adopt_external_id(self, entity_id: str, channel_id: str, external_id: str) -> None:
        """Persist a remote id found by natural key, before any publish attempt."""
        with session_scope(self._sessions) as s:
            self._get_or_new(s, entity_id, channel_id).external_id = external_id

    def record_success(self, entity_id: str, channel_id: str, external_id: str) -> None:
        with session_scope(self._sessions) as s:
            row = self._get_or_new(s, entity_id, channel_id)
            row.external_id = external_id
            row.is_published = True
            row.is_active = True
            row.last_synced_at = utcnow()
            row.sync_error = None

    def record_failure(self, entity_id: str, channel_id: str, message: str) -> None:
        with session_scope(self._sessions) as s:
            row = self._get_or_new(s, entity_id, channel_id)
            row.is_published = False
            row.is_active = False
            row.sync_error = message

    def get(self, entity_id: str, channel_id: str) -> Optional[ChannelMapping]:
        with session_scope(self._sessions) as s:
            row = s.execute(
                select(ProductChannelRow).where(
                    ProductChannelRow.product_id == entity_id,
                    ProductChannelRow.channel_id == channel_id,
                )
            ).scalar_one_or_none()
            return _mapping(row) if row else None

    def count(self, entity_id: str, channel_id: str) -> int:
        with session_scope(self._sessions) as s:
            return len(s.execute(
                select(ProductChannelRow.id).where(
                    ProductChannelRow.product_id == entity_id,
                    ProductChannelRow.channel_id == channel_id,
                )
            ).scalars().all())
