from decimal import Decimal

import pytest

from pipeline.payloads import (
    EbayListingPayload,
    ShopifyProductPayload,
    UnsupportedChannelError,
    build_payload,
    description_to_html,
    format_price,
    normalize_image_url,
    parse_payload,
)
from pipeline.state import Entity, Image

DRIVE_ID = "1AbCdEfGhIjKlMnOpQrStUv"


@pytest.mark.parametrize("url", [
    f"/api/drive-image/{DRIVE_ID}",
    f"https://drive.google.com/file/d/{DRIVE_ID}/view?usp=sharing",
    f"https://drive.google.com/open?id={DRIVE_ID}",
    DRIVE_ID,
])
def test_drive_urls_become_direct_links(url):
    assert normalize_image_url(url) == f"https://lh3.googleusercontent.com/d/{DRIVE_ID}"


def test_other_urls():
    assert normalize_image_url("https://cdn.example.com/a.jpg") == "https://cdn.example.com/a.jpg"
    assert normalize_image_url("") is None
    assert normalize_image_url("https://cdn.example.com/undefined") is None
    assert normalize_image_url("not a url") is None


def test_description_and_price_helpers():
    assert description_to_html("a & b\nc\n\nd") == "<p>a &amp; b<br>c</p><p>d</p>"
    assert description_to_html("<p>already</p>") == "<p>already</p>"
    assert format_price("1,299.5 lei") == "1299.50"
    assert format_price("n/a") is None


def _entity(**kw):
    base = dict(
        id="p1", natural_key="SKU-1", title="  Red   mug ", description="Nice",
        price=Decimal("12.5"), brand="Acme", quantity=3,
        images=[Image(url="junk", position=1), Image(url="https://x/a.jpg", position=0)],
    )
    base.update(kw)
    return Entity(**base)


def test_shopify_payload_drops_bad_images():
    payload = build_payload("shopify", _entity())
    assert isinstance(payload, ShopifyProductPayload)
    assert payload.title == "Red mug"
    assert [i.src for i in payload.images] == ["https://x/a.jpg"]
    body = payload.to_api()
    assert body["variants"][0] == {
        "sku": "SKU-1", "price": "12.50", "weight_unit": "kg", "inventory_management": None,
    }
    assert "channel_type" not in body


def test_ebay_payload_and_roundtrip():
    payload = build_payload("EBAY", _entity())
    assert isinstance(payload, EbayListingPayload)
    assert payload.aspects == {"Brand": ["Acme"]}
    assert payload.quantity == 3
    assert isinstance(parse_payload(payload.model_dump()), EbayListingPayload)


def test_unknown_channel_type():
    with pytest.raises(UnsupportedChannelError):
        build_payload("AMAZON", _entity())
