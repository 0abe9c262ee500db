# src/channels/base.py
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type

from pipeline.state import Channel


class ConnectorError(Exception):
    """A remote channel call failed (transport error, non-2xx, bad response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChannelConfigError(Exception):
    """The channel lacks the store/credentials its connector needs."""


class Connector(ABC):
    """One external channel's catalog API.

    find(natural_key)          -> remote id or None
    create(payload)            -> new remote id
    update(remote_id, payload) -> None

    Errors surface as ConnectorError. Connectors never retry.
    """

    channel_type = "base"

    @classmethod
    @abstractmethod
    def from_channel(cls, channel: Channel) -> "Connector":
        ...

    @abstractmethod
    def find(self, natural_key: str) -> Optional[str]:
        ...

    @abstractmethod
    def create(self, payload: Any) -> str:
        ...

    @abstractmethod
    def update(self, remote_id: str, payload: Any) -> None:
        ...

    def close(self) -> None:
        pass


def _error_detail(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "")[:300]
    if isinstance(body, dict):
        for key in ("errors", "error", "message"):
            if body.get(key):
                return str(body[key])[:300]
    return str(body)[:300]


def raise_for_response(response, action: str) -> None:
    if not (200 <= response.status_code < 300):
        raise ConnectorError(
            f"{action} failed: HTTP {response.status_code} {_error_detail(response)}".strip(),
            status_code=response.status_code,
        )


def require(values: Dict[str, Any], names: List[str], channel: Channel) -> None:
    missing = [n for n in names if not values.get(n)]
    if missing:
        raise ChannelConfigError(
            f"Channel {channel.name} is missing store credentials: {', '.join(missing)}"
        )


def _registry() -> Dict[str, Type[Connector]]:
    from .shopify import ShopifyConnector
    from .ebay import EbayConnector
    return {"SHOPIFY": ShopifyConnector, "EBAY": EbayConnector}


CONNECTORS: Dict[str, Type[Connector]] = {}


def get_connectors() -> Dict[str, Type[Connector]]:
    if not CONNECTORS:
        CONNECTORS.update(_registry())
    return CONNECTORS


def supported_types() -> List[str]:
    return sorted(get_connectors())


def build_connector(channel: Channel) -> Connector:
    cls = get_connectors().get((channel.type or "").upper())
    if cls is None:
        raise ChannelConfigError(f"No connector for channel type {channel.type!r}")
    if channel.store is None:
        raise ChannelConfigError(f"Channel {channel.name} has no linked store")
    return cls.from_channel(channel)
