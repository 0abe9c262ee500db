import json

import httpx
import pytest

from channels.base import ChannelConfigError, ConnectorError, build_connector, supported_types
from channels.ebay import EbayConnector
from channels.shopify import ShopifyConnector
from pipeline.payloads import EbayListingPayload, ShopifyProductPayload, ShopifyVariant
from pipeline.state import Channel, StoreCredentials

API = "/admin/api/2024-01"


def _shopify(handler):
    return ShopifyConnector("shop.myshopify.com", "tok", http=httpx.Client(transport=httpx.MockTransport(handler)))


def _graphql_hit(*products):
    edges = [
        {"node": {"legacyResourceId": pid, "variants": {"edges": [{"node": {"sku": sku}}]}}}
        for pid, sku in products
    ]
    return {"data": {"products": {"edges": edges}}}


def _shopify_payload():
    return ShopifyProductPayload(title="Mug", variants=[ShopifyVariant(sku="SKU-1", price="9.00")])


def test_registry_knows_shopify_and_ebay():
    assert supported_types() == ["EBAY", "SHOPIFY"]


def test_shopify_find_requires_exact_sku():
    def handler(request):
        assert request.url.path == f"{API}/graphql.json"
        assert request.headers["X-Shopify-Access-Token"] == "tok"
        return httpx.Response(200, json=_graphql_hit(("10", "SKU-10"), ("42", "SKU-1")))

    assert _shopify(handler).find("SKU-1") == "42"


def test_shopify_find_not_found():
    conn = _shopify(lambda r: httpx.Response(200, json=_graphql_hit(("10", "SKU-10"))))
    assert conn.find("SKU-1") is None


def test_shopify_find_falls_back_to_rest_paging():
    seen = []

    def handler(request):
        if request.url.path.endswith("graphql.json"):
            return httpx.Response(500, text="boom")
        seen.append(request.url.params.get("page_info"))
        if request.url.params.get("page_info") is None:
            nxt = f"https://shop.myshopify.com{API}/products.json?limit=250&page_info=p2"
            return httpx.Response(
                200,
                json={"products": [{"id": 1, "variants": [{"sku": "OTHER"}]}]},
                headers={"Link": f'<{nxt}>; rel="next"'},
            )
        return httpx.Response(200, json={"products": [{"id": 99, "variants": [{"sku": "SKU-1"}]}]})

    assert _shopify(handler).find("SKU-1") == "99"
    assert seen == [None, "p2"]


def test_shopify_create_and_update():
    bodies = []

    def handler(request):
        bodies.append((request.method, request.url.path, json.loads(request.content)))
        if request.method == "POST":
            return httpx.Response(201, json={"product": {"id": 123}})
        return httpx.Response(200, json={"product": {"id": 123}})

    conn = _shopify(handler)
    assert conn.create(_shopify_payload()) == "123"
    conn.update("123", _shopify_payload())

    (m1, p1, b1), (m2, p2, b2) = bodies
    assert (m1, p1) == ("POST", f"{API}/products.json")
    assert b1["product"]["status"] == "active"
    assert b1["product"]["variants"][0]["inventory_management"] is None
    assert (m2, p2) == ("PUT", f"{API}/products/123.json")
    assert "status" not in b2["product"]


def test_shopify_errors_become_connector_errors():
    conn = _shopify(lambda r: httpx.Response(422, json={"errors": {"title": ["can't be blank"]}}))
    with pytest.raises(ConnectorError) as exc:
        conn.update("1", _shopify_payload())
    assert exc.value.status_code == 422
    assert "can't be blank" in str(exc.value)

    def refuse(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(ConnectorError):
        _shopify(refuse).create(_shopify_payload())


EBAY_CREDS = {
    "base_url": "https://api.sandbox.ebay.com",
    "client_id": "cid",
    "client_secret": "secret",
    "refresh_token": "refresh",
    "marketplace_id": "EBAY_US",
    "fulfillment_policy_id": "F-1",
    "return_policy_id": "R-1",
    "publish": True,
}


def _ebay_channel(**extra):
    return Channel(id="eb", type="EBAY", name="eBay US",
                   store=StoreCredentials(id="s1", extra={**EBAY_CREDS, **extra}))


def _ebay(handler, **extra):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return EbayConnector.from_channel(_ebay_channel(**extra), http=http)


def _ebay_payload(sku="SKU-2"):
    return EbayListingPayload(sku=sku, title="Mug", price="9.00", quantity=2, image_urls=["https://x/a.jpg"])


def test_ebay_find():
    def handler(request):
        if request.url.path.endswith("/oauth2/token"):
            return httpx.Response(200, json={"access_token": "T", "expires_in": 7200})
        assert request.headers["Authorization"] == "Bearer T"
        if request.url.params["sku"] == "SKU-1":
            return httpx.Response(200, json={"offers": [{"sku": "SKU-1", "offerId": "O-1"}]})
        return httpx.Response(404, json={"errors": [{"errorId": 25713}]})

    conn = _ebay(handler)
    assert conn.find("SKU-1") == "O-1"
    assert conn.find("SKU-9") is None


def test_ebay_create_publishes_offer():
    calls = []

    def handler(request):
        path = request.url.path
        calls.append((request.method, path))
        if path.endswith("/oauth2/token"):
            return httpx.Response(200, json={"access_token": "T", "expires_in": 7200})
        if path.endswith("/inventory_item/SKU-2"):
            return httpx.Response(204)
        if path.endswith("/payment_policy"):
            return httpx.Response(200, json={"paymentPolicies": [{"paymentPolicyId": "P-1"}]})
        if path == "/sell/inventory/v1/offer":
            offer = json.loads(request.content)
            assert offer["listingPolicies"] == {
                "paymentPolicyId": "P-1", "fulfillmentPolicyId": "F-1", "returnPolicyId": "R-1",
            }
            assert offer["pricingSummary"]["price"] == {"value": "9.00", "currency": "USD"}
            return httpx.Response(201, json={"offerId": "O-2"})
        if path.endswith("/offer/O-2/publish"):
            return httpx.Response(200, json={"listingId": "L-1"})
        return httpx.Response(500)

    assert _ebay(handler).create(_ebay_payload()) == "O-2"
    assert ("POST", "/sell/inventory/v1/offer/O-2/publish") in calls


def test_ebay_update_failure():
    def handler(request):
        if request.url.path.endswith("/oauth2/token"):
            return httpx.Response(200, json={"access_token": "T", "expires_in": 7200})
        if request.method == "PUT" and "inventory_item" in request.url.path:
            return httpx.Response(400, json={"errors": [{"message": "Invalid aspects"}]})
        return httpx.Response(200, json={})

    with pytest.raises(ConnectorError, match="inventory item"):
        _ebay(handler).update("O-1", _ebay_payload())


def test_missing_credentials_are_config_errors():
    with pytest.raises(ChannelConfigError, match="refresh_token"):
        EbayConnector.from_channel(_ebay_channel(refresh_token=""))
    with pytest.raises(ChannelConfigError, match="no linked store"):
        build_connector(Channel(id="c", type="SHOPIFY", name="Shop"))
    with pytest.raises(ChannelConfigError, match="No connector"):
        build_connector(Channel(id="c", type="AMAZON", name="Amazon", store=StoreCredentials(id="s")))
