import pytest
import requests
from conftest import API_BASE, make_response, make_transport, requirement

from x402_checkout.core.errors import NetworkError, NetworkTimeout
from x402_checkout.core.transport import (
    decode_header,
    decode_payment_required,
    encode_header,
    read_error,
    read_settlement_confirmation,
)


def test_header_codec():
    encoded = encode_header({"success": True, "transaction": "0xabc"})
    assert decode_header(encoded) == {"success": True, "transaction": "0xabc"}
    assert decode_header("%%%") is None
    assert decode_header(encode_header({}) + "garbage") is None
    assert decode_header(None) is None


def test_payment_required_from_header_wins_over_body():
    offer = requirement(amount=5)
    response = make_response(
        402,
        json_body={"accepts": []},
        headers={"PAYMENT-REQUIRED": encode_header({"x402Version": 2, "accepts": [offer.to_dict()]})},
    )
    decoded = decode_payment_required(response)
    assert decoded.accepts == [offer]


def test_payment_required_from_body():
    offer = requirement(amount=7).to_dict()
    offer["maxAmountRequired"] = offer.pop("amount")
    decoded = decode_payment_required(make_response(402, json_body={"x402Version": 1, "accepts": [offer]}))
    assert decoded.accepts[0].amount == 7
    assert decoded.x402_version == 1


def test_payment_required_without_challenge():
    with pytest.raises(ValueError):
        decode_payment_required(make_response(402, content=b"nope"))


def test_settlement_confirmation_legacy_header():
    response = make_response(
        200,
        headers={"X-PAYMENT-RESPONSE": encode_header({"success": True, "transaction": "0x1"})},
    )
    confirmation = read_settlement_confirmation(response)
    assert confirmation.success
    assert confirmation.transaction == "0x1"
    assert read_settlement_confirmation(make_response(200)) is None


def test_read_error():
    assert read_error(make_response(500, json_body={"error": "boom"})) == "boom"
    assert read_error(make_response(500, json_body={"message": "later"})) == "later"
    assert read_error(make_response(500, content=b"<html>")) is None


def test_asset_download_url_quotes_identifier():
    transport, _ = make_transport(lambda url, headers: make_response(200))
    assert transport.asset_download_url("a b/c") == f"{API_BASE}/assets/a%20b%2Fc/download"


def test_every_call_carries_timeout():
    transport, session = make_transport(lambda url, headers: make_response(200))
    transport.get(transport.session_url(), {"Accept": "application/json"})
    assert session.calls[0].timeout == 5.0


def test_timeout_and_connection_errors_are_mapped():
    def timeout(url, headers):
        raise requests.ReadTimeout("slow")

    def refused(url, headers):
        raise requests.ConnectionError("refused")

    transport, _ = make_transport(timeout)
    with pytest.raises(NetworkTimeout):
        transport.get(transport.session_url(), {})

    transport, _ = make_transport(refused)
    with pytest.raises(NetworkError, match="refused"):
        transport.get(transport.session_url(), {})


@pytest.mark.parametrize(
    "body",
    [
        {"x402Version": 2, "accepts": ["not-an-offer"]},
        {"x402Version": 2, "accepts": [dict(requirement().to_dict(), extra=["permit2"])]},
        {"x402Version": "two", "accepts": []},
    ],
)
def test_malformed_challenge_raises_value_error(body):
    response = make_response(402, headers={"PAYMENT-REQUIRED": encode_header(body)})
    with pytest.raises(ValueError):
        decode_payment_required(response)


def test_asset_details_url_quotes_identifier():
    transport, _ = make_transport(lambda url, headers: make_response(200))
    assert transport.asset_details_url("a b") == f"{API_BASE}/assets/a%20b"
