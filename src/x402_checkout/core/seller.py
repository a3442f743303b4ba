"""
Per-asset lookup of the seller address a payment must go to.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Mapping, Optional

from .errors import CheckoutError
from .models import normalize_address
from .transport import CheckoutTransport

__all__ = ["SELLER_ADDRESS_FIELDS", "SellerResolver", "seller_from_details"]

SELLER_ADDRESS_FIELDS = ("seller_address", "sellerAddress", "creator_address", "wallet_address")


def seller_from_details(payload: Any) -> Optional[str]:
    """Pull the seller address out of an asset details document."""
    if not isinstance(payload, Mapping):
        return None
    records = [payload.get("asset"), payload.get("soul"), payload]
    for record in records:
        if not isinstance(record, Mapping):
            continue
        for key in SELLER_ADDRESS_FIELDS:
            if record.get(key):
                return normalize_address(record.get(key))
    return None


class SellerResolver:
    """
    Resolves and caches the expected seller of each asset.

    Only successful lookups are cached; a failed lookup returns ``None`` and
    is retried on the next purchase.
    """

    def __init__(self, transport: CheckoutTransport) -> None:
        self.transport = transport
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    def resolve(self, asset_id: str) -> Optional[str]:
        with self._lock:
            if asset_id in self._cache:
                return self._cache[asset_id]

        try:
            response = self.transport.get(
                self.transport.asset_details_url(asset_id),
                {"Accept": "application/json"},
            )
        except CheckoutError as exc:
            logging.warning("Could not load details for %s: %s", asset_id, exc)
            return None
        if not response.ok:
            logging.warning("Asset details for %s returned %s", asset_id, response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            return None

        seller = seller_from_details(payload)
        if seller is None:
            logging.warning("Asset details for %s carry no valid seller address", asset_id)
            return None
        with self._lock:
            self._cache[asset_id] = seller
        return seller
