import pytest
import requests
from conftest import API_BASE, SELLER, make_response, make_transport

from x402_checkout.core.seller import SellerResolver, seller_from_details


@pytest.mark.parametrize(
    "payload",
    [
        {"asset": {"seller_address": SELLER.lower()}},
        {"asset": {"sellerAddress": SELLER}},
        {"soul": {"creator_address": SELLER}},
        {"soul": {"wallet_address": SELLER}},
    ],
)
def test_seller_from_details(payload):
    assert seller_from_details(payload) == SELLER


def test_seller_from_details_rejects_bad_values():
    assert seller_from_details({"asset": {"seller_address": "not-an-address"}}) is None
    assert seller_from_details({"asset": {}}) is None
    assert seller_from_details(["nope"]) is None


def test_resolver_caches_successful_lookup():
    transport, session = make_transport(lambda url, headers: make_response(200, json_body={"asset": {"seller_address": SELLER}}))
    resolver = SellerResolver(transport)

    assert resolver.resolve("asset-1") == SELLER
    assert resolver.resolve("asset-1") == SELLER
    assert session.urls() == [f"{API_BASE}/assets/asset-1"]


def test_resolver_failures_return_none_and_are_retried():
    def offline(url, headers):
        raise requests.ConnectionError("refused")

    transport, session = make_transport(offline)
    resolver = SellerResolver(transport)

    assert resolver.resolve("asset-1") is None
    assert resolver.resolve("asset-1") is None
    assert len(session.calls) == 2


def test_resolver_ignores_unreadable_details():
    transport, _ = make_transport(lambda url, headers: make_response(200, content=b"<html>"))
    assert SellerResolver(transport).resolve("asset-1") is None
