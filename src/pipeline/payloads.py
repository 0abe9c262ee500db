# Typed outbound payloads, one model per channel type.
# build_payload() is the only way a channel payload gets made from an Entity.

from __future__ import annotations
from decimal import Decimal, InvalidOperation
from html import escape
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union
import re

from pydantic import BaseModel, Field, TypeAdapter

from pipeline.state import Entity

DRIVE_PUBLIC_URL = "https://lh3.googleusercontent.com/d/{file_id}"

_DRIVE_PATTERNS = [
    re.compile(r"/file/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"id=([a-zA-Z0-9_-]+)"),
    re.compile(r"/d/([a-zA-Z0-9_-]+)"),
]
_BARE_DRIVE_ID = re.compile(r"^[a-zA-Z0-9_-]{20,}$")
_HTML_TAG = re.compile(r"<[a-zA-Z][^>]*>")


class UnsupportedChannelError(ValueError):
    pass


# ---------- field helpers ----------
def normalize_image_url(url: Optional[str]) -> Optional[str]:
    """Rewrite an image reference to a URL a remote platform can fetch.

    Google Drive links (internal ``/api/drive-image/<id>`` proxy paths, share
    links, bare file ids) become direct ``lh3.googleusercontent.com`` links.
    Plain http(s) URLs pass through. Anything else returns None.
    """
    url = (url or "").strip()
    if not url or "undefined" in url:
        return None

    file_id: Optional[str] = None
    if "/api/drive-image/" in url:
        file_id = url.split("/api/drive-image/", 1)[1].split("?", 1)[0].strip("/") or None
    elif "drive.google.com" in url:
        for pattern in _DRIVE_PATTERNS:
            m = pattern.search(url)
            if m:
                file_id = m.group(1)
                break
    elif _BARE_DRIVE_ID.match(url):
        file_id = url
    elif url.startswith(("https://", "http://")):
        return url

    if file_id:
        return DRIVE_PUBLIC_URL.format(file_id=file_id)
    return None


def description_to_html(text: Optional[str]) -> str:
    text = (text or "").strip()
    if not text:
        return ""
    if _HTML_TAG.search(text):
        return text
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
    return "".join(
        "<p>" + "<br>".join(escape(line.strip()) for line in p.splitlines()) + "</p>"
        for p in paragraphs
    )


def clean_title(title: Optional[str], max_len: int = 255) -> str:
    return " ".join((title or "").split())[:max_len]


def format_price(value: Any) -> Optional[str]:
    """Price -> "0.00" string; None if it can't be parsed."""
    if value is None or value == "":
        return None
    try:
        # remove currency symbols/commas/spaces
        cleaned = re.sub(r"[^\d.\-]", "", str(value))
        return f"{Decimal(cleaned):.2f}"
    except (InvalidOperation, ValueError):
        return None


# ---------- Shopify ----------
class ShopifyVariant(BaseModel):
    sku: str
    price: str = "0.00"
    compare_at_price: Optional[str] = None
    barcode: Optional[str] = None
    weight: Optional[float] = None
    weight_unit: Literal["kg"] = "kg"
    inventory_management: None = None  # untracked inventory


class ShopifyImage(BaseModel):
    src: str
    position: int
    alt: Optional[str] = None


class ShopifyProductPayload(BaseModel):
    channel_type: Literal["SHOPIFY"] = "SHOPIFY"
    title: str
    body_html: str = ""
    tags: List[str] = Field(default_factory=list)
    variants: List[ShopifyVariant]
    images: List[ShopifyImage] = Field(default_factory=list)

    def to_api(self) -> Dict[str, Any]:
        body = self.model_dump(exclude={"channel_type"}, exclude_none=True)
        # Shopify needs the explicit null to stop inventory tracking
        for v in body["variants"]:
            v["inventory_management"] = None
        return body


def _shopify_payload(entity: Entity) -> ShopifyProductPayload:
    images = []
    for img in sorted(entity.images, key=lambda i: i.position):
        src = normalize_image_url(img.url)
        if src:
            images.append(ShopifyImage(src=src, position=img.position, alt=entity.title))
    return ShopifyProductPayload(
        title=clean_title(entity.title),
        body_html=description_to_html(entity.description),
        tags=list(entity.tags),
        variants=[ShopifyVariant(
            sku=entity.natural_key,
            price=format_price(entity.price) or "0.00",
            compare_at_price=format_price(entity.compare_at_price),
            barcode=entity.barcode or None,
            weight=float(entity.weight) if entity.weight else None,
        )],
        images=images,
    )


# ---------- eBay ----------
class EbayListingPayload(BaseModel):
    channel_type: Literal["EBAY"] = "EBAY"
    sku: str
    title: str
    description: str = ""
    brand: str = ""
    price: str = "0.00"
    quantity: int = 1
    image_urls: List[str] = Field(default_factory=list)
    aspects: Dict[str, List[str]] = Field(default_factory=dict)

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"channel_type"})


def _ebay_payload(entity: Entity) -> EbayListingPayload:
    urls = [normalize_image_url(i.url) for i in sorted(entity.images, key=lambda i: i.position)]
    aspects = {"Brand": [entity.brand]} if entity.brand else {}
    return EbayListingPayload(
        sku=entity.natural_key,
        title=clean_title(entity.title, max_len=80),  # eBay title limit
        description=description_to_html(entity.description)[:4000],
        brand=entity.brand,
        price=format_price(entity.price) or "0.00",
        quantity=entity.quantity if entity.quantity is not None else 1,
        image_urls=[u for u in urls if u],
        aspects=aspects,
    )


ChannelPayload = Annotated[
    Union[ShopifyProductPayload, EbayListingPayload],
    Field(discriminator="channel_type"),
]
channel_payload_adapter = TypeAdapter(ChannelPayload)

_BUILDERS: Dict[str, Callable[[Entity], BaseModel]] = {
    "SHOPIFY": _shopify_payload,
    "EBAY": _ebay_payload,
}


def build_payload(channel_type: str, entity: Entity):
    builder = _BUILDERS.get((channel_type or "").upper())
    if builder is None:
        raise UnsupportedChannelError(f"No payload builder for channel type {channel_type!r}")
    return builder(entity)


def parse_payload(data: Dict[str, Any]):
    """Rebuild a typed payload from its dumped form (with ``channel_type``)."""
    return channel_payload_adapter.validate_python(data)
