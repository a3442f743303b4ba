"""
HTTP transport and x402 header codecs.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import requests

from .errors import NetworkError, NetworkTimeout
from .models import PaymentRequired, SettlementConfirmation

__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "CheckoutTransport",
    "decode_header",
    "decode_payment_required",
    "encode_header",
    "read_error",
    "read_settlement_confirmation",
]

DEFAULT_TIMEOUT_SECONDS = 45.0

PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
PAYMENT_SIGNATURE_HEADER = "PAYMENT-SIGNATURE"
PAYMENT_RESPONSE_HEADERS = ("PAYMENT-RESPONSE", "X-PAYMENT-RESPONSE")


def encode_header(value: Mapping[str, Any]) -> str:
    """Base64-encode a JSON document for use in an x402 header."""
    return base64.b64encode(json.dumps(value, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_header(value: Optional[str]) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    try:
        decoded = json.loads(base64.b64decode(value, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError):
        return None
    return decoded if isinstance(decoded, dict) else None


def _json_body(response: requests.Response) -> Optional[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def read_error(response: requests.Response) -> Optional[str]:
    body = _json_body(response)
    if not body:
        return None
    message = body.get("error") or body.get("message")
    return str(message) if message else None


def decode_payment_required(response: requests.Response) -> PaymentRequired:
    """
    Decode the payment challenge of a 402 response.

    The ``PAYMENT-REQUIRED`` header wins; a JSON body carrying ``accepts`` is
    the fallback.
    """
    payload = decode_header(response.headers.get(PAYMENT_REQUIRED_HEADER))
    if payload is None:
        body = _json_body(response)
        if body is not None and "accepts" in body:
            payload = body
    if payload is None:
        raise ValueError("402 response did not carry a readable payment challenge")
    return PaymentRequired.from_dict(payload)


def read_settlement_confirmation(response: requests.Response) -> Optional[SettlementConfirmation]:
    for header in PAYMENT_RESPONSE_HEADERS:
        payload = decode_header(response.headers.get(header))
        if payload is not None:
            return SettlementConfirmation.from_response(payload)
    return None


class CheckoutTransport:
    """
    Thin wrapper around a :class:`requests.Session` bound to the marketplace API.

    Every call carries the configured timeout; timeouts and connection failures
    surface as :class:`NetworkTimeout` / :class:`NetworkError`.
    """

    def __init__(
        self,
        api_base: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def asset_download_url(self, asset_id: str) -> str:
        return f"{self.api_base}/assets/{quote(str(asset_id), safe='')}/download"

    def asset_details_url(self, asset_id: str) -> str:
        return f"{self.api_base}/assets/{quote(str(asset_id), safe='')}"

    def session_url(self) -> str:
        return f"{self.api_base}/auth/session"

    def get(self, url: str, headers: Mapping[str, str]) -> requests.Response:
        logging.debug("GET %s", url)
        try:
            response = self.session.get(url, headers=dict(headers), timeout=self.timeout)
        except requests.Timeout as exc:
            raise NetworkTimeout(url, self.timeout) from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Request to {url} failed: {exc}") from exc
        logging.debug("GET %s -> %s", url, response.status_code)
        return response
