import pytest
from conftest import BUYER, SELLER, USDC, StubSigner, requirement
from eth_account import Account
from eth_account.messages import encode_typed_data

from x402_checkout.core.errors import SigningCapabilityError, SigningRejected
from x402_checkout.core.payloads import (
    DEFAULT_PERMIT2_PROXY_ADDRESS,
    PERMIT2_ADDRESS,
    PaymentPayloadBuilder,
    build_eip3009_typed_data,
    chain_id_from_network,
)
from x402_checkout.core.signing import LocalAccountSigner

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
NOW = 1_700_000_000
NONCE = bytes(range(32))


def _builder(**kwargs):
    return PaymentPayloadBuilder(clock=lambda: NOW, nonce_factory=lambda size: NONCE[:size], **kwargs)


def test_chain_id_from_network():
    assert chain_id_from_network("eip155:8453") == 8453
    assert chain_id_from_network("base") is None
    assert chain_id_from_network("") is None


def test_eip3009_payload_is_faithful_to_selection():
    selected = requirement(amount=10_000)
    signer = StubSigner()
    payload = _builder().build(selected, BUYER, signer, resource={"url": "https://market.test/a"})

    assert payload.accepted is selected
    authorization = payload.payload["authorization"]
    assert authorization == {
        "from": BUYER,
        "to": SELLER,
        "value": "10000",
        "validAfter": str(NOW - 600),
        "validBefore": str(NOW + 300),
        "nonce": "0x" + NONCE.hex(),
    }
    assert payload.payload["signature"] == "0x" + "11" * 65

    typed = signer.typed_data[0]
    assert typed["primaryType"] == "TransferWithAuthorization"
    assert typed["domain"]["chainId"] == 8453
    assert typed["domain"]["verifyingContract"] == USDC
    assert typed["message"]["value"] == 10_000

    body = payload.to_dict()
    assert body["x402Version"] == 2
    assert body["accepted"]["payTo"] == SELLER
    assert body["accepted"]["amount"] == "10000"
    assert body["resource"] == {"url": "https://market.test/a"}


def test_local_signer_signature_recovers_payer():
    signer = LocalAccountSigner(PRIVATE_KEY)
    selected = requirement()
    payload = _builder().build(selected, signer.address, signer)

    typed = build_eip3009_typed_data(
        selected,
        payer=signer.address,
        chain_id=8453,
        valid_after=NOW - 600,
        valid_before=NOW + 300,
        nonce=NONCE,
    )
    recovered = Account.recover_message(
        encode_typed_data(full_message=typed),
        signature=payload.payload["signature"],
    )
    assert recovered == signer.address


def test_permit2_payload_binds_recipient_in_witness():
    selected = requirement(method="permit2", amount=25_000)
    signer = StubSigner()
    payload = _builder().build(selected, BUYER, signer)

    authorization = payload.payload["permit2Authorization"]
    assert authorization["from"] == BUYER
    assert authorization["permitted"] == {"token": USDC, "amount": "25000"}
    assert authorization["spender"] == DEFAULT_PERMIT2_PROXY_ADDRESS
    assert authorization["witness"]["to"] == SELLER
    assert authorization["nonce"] == str(int.from_bytes(NONCE, "big"))

    typed = signer.typed_data[0]
    assert typed["primaryType"] == "PermitWitnessTransferFrom"
    assert typed["domain"]["verifyingContract"] == PERMIT2_ADDRESS


def test_rejection_surfaces_verbatim():
    with pytest.raises(SigningRejected):
        _builder().build(requirement(), BUYER, StubSigner(reject=True))


def test_capability_failure_is_wrapped():
    class BrokenSigner(StubSigner):
        def sign_typed_data(self, typed_data):
            raise RuntimeError("device disconnected")

    with pytest.raises(SigningCapabilityError, match="device disconnected"):
        _builder().build(requirement(), BUYER, BrokenSigner())


def test_invalid_wallet_is_refused_before_signing():
    signer = StubSigner()
    with pytest.raises(ValueError):
        _builder().build(requirement(), "not-a-wallet", signer)
    assert signer.typed_data == []


def test_unknown_network_falls_back_to_configured_chain():
    signer = StubSigner()
    _builder(chain_id=56).build(requirement(network="bsc"), BUYER, signer)
    assert signer.typed_data[0]["domain"]["chainId"] == 56
