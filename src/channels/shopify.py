# src/channels/shopify.py
from __future__ import annotations
from typing import Any, Dict, Optional
import json
import logging
import httpx

from pipeline.payloads import ShopifyProductPayload
from pipeline.state import Channel
from .base import Connector, ConnectorError, raise_for_response, require

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-01"

_FIND_BY_SKU = """
{
  products(first: 10, query: %s) {
    edges {
      node {
        legacyResourceId
        variants(first: 10) { edges { node { sku } } }
      }
    }
  }
}
"""


class ShopifyConnector(Connector):
    """
    Shopify Admin API adapter for products.

    find:   GraphQL product search by SKU (exact variant match), falling back
            to paging REST /products.json if GraphQL fails.
    create: POST /products.json (status=active)
    update: PUT  /products/{id}.json
    """
    channel_type = "SHOPIFY"

    def __init__(
        self,
        domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        http: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        self.domain = domain.strip().rstrip("/")
        self.base = f"https://{self.domain}/admin/api/{api_version}"
        self._http = http or httpx.Client(timeout=timeout)
        self._headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    def from_channel(cls, channel: Channel) -> "ShopifyConnector":
        store = channel.store
        require({"domain": store.domain, "access_token": store.access_token},
                ["domain", "access_token"], channel)
        return cls(
            domain=store.domain,
            access_token=store.access_token,
            api_version=store.extra.get("api_version") or DEFAULT_API_VERSION,
        )

    # ---------- helpers ----------
    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._http.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as ex:
            raise ConnectorError(f"{method} {url}: {type(ex).__name__}: {ex}") from ex

    def _find_graphql(self, sku: str) -> Optional[str]:
        query = _FIND_BY_SKU % json.dumps(f"sku:{sku}")
        r = self._request("POST", f"{self.base}/graphql.json", json={"query": query})
        raise_for_response(r, "Shopify product search")
        body = r.json() or {}
        if body.get("errors"):
            raise ConnectorError(f"Shopify product search failed: {body['errors']}")
        edges = (((body.get("data") or {}).get("products") or {}).get("edges")) or []
        # search is fuzzy; only an exact variant SKU counts
        for edge in edges:
            node = edge.get("node") or {}
            variants = ((node.get("variants") or {}).get("edges")) or []
            if any((v.get("node") or {}).get("sku") == sku for v in variants):
                return str(node["legacyResourceId"])
        return None

    def _find_rest(self, sku: str) -> Optional[str]:
        url: Optional[str] = f"{self.base}/products.json"
        params: Optional[Dict[str, Any]] = {"fields": "id,title,variants", "limit": 250}
        while url:
            r = self._request("GET", url, params=params)
            raise_for_response(r, "Shopify product listing")
            for product in (r.json() or {}).get("products", []):
                if any(v.get("sku") == sku for v in product.get("variants") or []):
                    return str(product["id"])
            # page_info cursor is already in the next link
            url = r.links.get("next", {}).get("url")
            params = None
        return None

    # ---------- public interface ----------
    def find(self, natural_key: str) -> Optional[str]:
        try:
            return self._find_graphql(natural_key)
        except ConnectorError as ex:
            logger.warning(f"GraphQL search on {self.domain} failed, paging REST products: {ex}")
            return self._find_rest(natural_key)

    def create(self, payload: ShopifyProductPayload) -> str:
        body = {"product": {**payload.to_api(), "status": "active"}}
        r = self._request("POST", f"{self.base}/products.json", json=body)
        raise_for_response(r, "Shopify product create")
        product = (r.json() or {}).get("product") or {}
        if "id" not in product:
            raise ConnectorError("Shopify product create returned no product id")
        return str(product["id"])

    def update(self, remote_id: str, payload: ShopifyProductPayload) -> None:
        r = self._request("PUT", f"{self.base}/products/{remote_id}.json",
                          json={"product": payload.to_api()})
        raise_for_response(r, "Shopify product update")

    def close(self) -> None:
        self._http.close()
