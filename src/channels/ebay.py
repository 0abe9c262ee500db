# src/channels/ebay.py
# eBay Sell Inventory API connector:
#   find(sku)              -> offerId of the first offer for that SKU, or None
#   create(payload)        -> inventory item + offer (+ publish) -> offerId
#   update(offerId, payload)
#
# Uses the OAuth2 user token (via refresh token) for inventory/offer/account calls.
# Offers stay unpublished unless the store credentials set "publish": true.

from __future__ import annotations
from typing import Dict, Any, Optional
import logging
import time
import httpx

from pipeline.payloads import EbayListingPayload
from pipeline.state import Channel
from .base import Connector, ConnectorError, raise_for_response, require

logger = logging.getLogger(__name__)

_USER_SCOPES = " ".join([
    "https://api.ebay.com/oauth/api_scope/sell.inventory",
    "https://api.ebay.com/oauth/api_scope/sell.account",
])


class _EbayAuth:
    def __init__(self, base_url: str, client_id: str, client_secret: str, refresh_token: str,
                 http: httpx.Client) -> None:
        self.base = base_url.rstrip("/")
        self.cid = client_id
        self.csec = client_secret
        self.refresh = refresh_token
        self._http = http
        self._user_tok: Optional[str] = None
        self._user_exp: float = 0.0

    def user_token(self) -> str:
        now = time.time()
        if self._user_tok and now < self._user_exp - 60:  # reuse until ~1 min before expiry
            return self._user_tok
        try:
            r = self._http.post(
                f"{self.base}/identity/v1/oauth2/token",
                data={"grant_type": "refresh_token", "refresh_token": self.refresh, "scope": _USER_SCOPES},
                auth=(self.cid, self.csec),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as ex:
            raise ConnectorError(f"eBay token refresh: {type(ex).__name__}: {ex}") from ex
        raise_for_response(r, "eBay token refresh")
        j = r.json()
        self._user_tok = j["access_token"]
        self._user_exp = now + float(j.get("expires_in", 7200))
        return self._user_tok


class EbayConnector(Connector):
    channel_type = "EBAY"

    def __init__(
        self,
        *,
        base_url: str,
        marketplace_id: str,
        auth: _EbayAuth,
        http: httpx.Client,
        currency: str = "USD",
        category_id: Optional[str] = None,
        merchant_location_key: Optional[str] = None,
        policies: Optional[Dict[str, str]] = None,
        publish: bool = False,
    ):
        self.base = base_url.rstrip("/")
        self.market = marketplace_id
        self.auth = auth
        self.currency = currency
        self.category_id = category_id
        self.location = merchant_location_key
        self.publish = publish
        self._policies = {k: v for k, v in (policies or {}).items() if v}
        self._policies_resolved = False
        self._http = http

    @classmethod
    def from_channel(cls, channel: Channel, http: Optional[httpx.Client] = None) -> "EbayConnector":
        creds = dict(channel.store.extra)
        require(creds, ["base_url", "client_id", "client_secret", "refresh_token", "marketplace_id"], channel)
        http = http or httpx.Client(timeout=60)
        auth = _EbayAuth(creds["base_url"], creds["client_id"], creds["client_secret"],
                         creds["refresh_token"], http)
        return cls(
            base_url=creds["base_url"],
            marketplace_id=creds["marketplace_id"],
            auth=auth,
            http=http,
            currency=creds.get("currency") or "USD",
            category_id=creds.get("category_id"),
            merchant_location_key=creds.get("merchant_location_key"),
            policies={
                "paymentPolicyId": creds.get("payment_policy_id") or "",
                "fulfillmentPolicyId": creds.get("fulfillment_policy_id") or "",
                "returnPolicyId": creds.get("return_policy_id") or "",
            },
            publish=bool(creds.get("publish")),
        )

    # ---------- headers ----------
    def _h_user(self) -> dict:
        return {
            "Authorization": f"Bearer {self.auth.user_token()}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Content-Language": "en-US",
            "X-EBAY-C-MARKETPLACE-ID": self.market,
        }

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._http.request(method, f"{self.base}{path}", headers=self._h_user(), **kwargs)
        except httpx.HTTPError as ex:
            raise ConnectorError(f"{method} {path}: {type(ex).__name__}: {ex}") from ex

    # ---------- shaping helpers ----------
    def _to_inventory_item(self, p: EbayListingPayload) -> Dict[str, Any]:
        product: Dict[str, Any] = {
            "title": p.title,
            "description": p.description,
            "aspects": p.aspects,
        }
        if p.brand:
            product["brand"] = p.brand
        if p.image_urls:
            product["imageUrls"] = p.image_urls
        return {
            "product": product,
            "availability": {"shipToLocationAvailability": {"quantity": p.quantity}},
        }

    def _to_offer(self, p: EbayListingPayload) -> Dict[str, Any]:
        offer: Dict[str, Any] = {
            "sku": p.sku,
            "marketplaceId": self.market,
            "format": "FIXED_PRICE",
            "availableQuantity": p.quantity,
            "pricingSummary": {"price": {"value": p.price, "currency": self.currency}},
            "listingDescription": p.description[:4000],
        }
        pol = self._find_policies()
        if pol:
            offer["listingPolicies"] = pol
        if self.category_id:
            offer["categoryId"] = self.category_id
        if self.location:
            offer["merchantLocationKey"] = self.location
        return offer

    def _find_policies(self) -> Dict[str, str]:
        # fill missing policy ids with the first policy of each kind, once
        if self._policies_resolved:
            return self._policies
        lists = {
            "paymentPolicyId": ("payment_policy", "paymentPolicies"),
            "fulfillmentPolicyId": ("fulfillment_policy", "fulfillmentPolicies"),
            "returnPolicyId": ("return_policy", "returnPolicies"),
        }
        for key, (path, field) in lists.items():
            if self._policies.get(key):
                continue
            r = self._request("GET", f"/sell/account/v1/{path}", params={"marketplace_id": self.market})
            if r.status_code == 200 and (r.json() or {}).get(field):
                self._policies[key] = r.json()[field][0][key]
            else:
                logger.warning(f"No eBay {path} found for marketplace {self.market}")
        self._policies_resolved = True
        return self._policies

    def _put_inventory_item(self, p: EbayListingPayload) -> None:
        r = self._request("PUT", f"/sell/inventory/v1/inventory_item/{p.sku}",
                          json=self._to_inventory_item(p))
        raise_for_response(r, "eBay inventory item upsert")

    # ---------- public API ----------
    def find(self, natural_key: str) -> Optional[str]:
        r = self._request("GET", "/sell/inventory/v1/offer",
                          params={"sku": natural_key, "marketplace_id": self.market})
        if r.status_code == 404:
            return None
        raise_for_response(r, "eBay offer lookup")
        offers = (r.json() or {}).get("offers") or []
        for offer in offers:
            if offer.get("sku") == natural_key and offer.get("offerId"):
                return str(offer["offerId"])
        return None

    def create(self, payload: EbayListingPayload) -> str:
        self._put_inventory_item(payload)
        r = self._request("POST", "/sell/inventory/v1/offer", json=self._to_offer(payload))
        raise_for_response(r, "eBay offer create")
        offer_id = (r.json() or {}).get("offerId")
        if not offer_id:
            raise ConnectorError("eBay offer create returned no offerId")
        if self.publish:
            r = self._request("POST", f"/sell/inventory/v1/offer/{offer_id}/publish")
            raise_for_response(r, "eBay offer publish")
        return str(offer_id)

    def update(self, remote_id: str, payload: EbayListingPayload) -> None:
        self._put_inventory_item(payload)
        r = self._request("PUT", f"/sell/inventory/v1/offer/{remote_id}", json=self._to_offer(payload))
        raise_for_response(r, "eBay offer update")

    def close(self) -> None:
        self._http.close()
