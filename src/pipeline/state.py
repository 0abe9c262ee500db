from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional
from datetime import datetime
from decimal import Decimal

class Image(BaseModel):
    url: str
    position: int = 0

class ChannelMapping(BaseModel):
    channel_id: str
    external_id: Optional[str] = None
    is_published: bool = False
    is_active: bool = False
    last_synced_at: Optional[datetime] = None
    sync_error: Optional[str] = None

class Entity(BaseModel):
    id: str
    natural_key: str  # SKU
    title: str
    description: str = ""
    brand: str = ""
    price: Optional[Decimal] = None
    compare_at_price: Optional[Decimal] = None
    barcode: Optional[str] = None
    weight: Optional[Decimal] = None
    quantity: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    images: List[Image] = Field(default_factory=list)
    mappings: Dict[str, ChannelMapping] = Field(default_factory=dict)

    def mapping_for(self, channel_id: str) -> Optional[ChannelMapping]:
        return self.mappings.get(channel_id)

class StoreCredentials(BaseModel):
    id: str
    domain: Optional[str] = None
    access_token: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

class Channel(BaseModel):
    id: str
    type: str
    name: str
    store: Optional[StoreCredentials] = None

class PublishState(BaseModel):
    """State threaded through the per-item publish graph."""
    channel: Channel
    entity: Entity
    external_id: Optional[str] = None
    adopted: bool = False  # external id came from a natural-key lookup
    payload: Dict[str, Any] = Field(default_factory=dict)
    outcome: Optional[str] = None  # "created" | "updated"
