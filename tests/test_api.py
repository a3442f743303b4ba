import pytest
from conftest import OTHER, SELLER, StubSigner

from x402_checkout import (
    PurchaseOrchestrator,
    build_context,
    create_orchestrator,
    load_checkout_config,
)
from x402_checkout.core.storage import EntitlementStore


def _config(**kwargs):
    return load_checkout_config(env_file=None, base={}, **kwargs)


def test_create_orchestrator_wires_configuration():
    config = _config(api_base="https://market.test/api", request_timeout_seconds=7, store_path="none")
    orchestrator = create_orchestrator(config=config)

    assert isinstance(orchestrator, PurchaseOrchestrator)
    assert orchestrator.transport.timeout == 7.0
    assert orchestrator.sessions.challenge_domain == "market.test"
    assert orchestrator.store.path is None
    assert orchestrator.payload_builder.chain_id == 8453
    assert orchestrator.seller_resolver.transport is orchestrator.transport


def test_create_orchestrator_refuses_mixed_inputs():
    with pytest.raises(ValueError):
        create_orchestrator(config=_config(), api_base="https://other.test/api")


def test_create_orchestrator_uses_given_store():
    store = EntitlementStore()
    orchestrator = create_orchestrator(config=_config(), store=store)
    assert orchestrator.store is store
    assert orchestrator.sessions.store is store


def test_build_context_defaults_from_config():
    signer = StubSigner()
    context = build_context(
        _config(expected_seller=SELLER, transfer_method="permit2"),
        signer=signer,
    )
    assert context.wallet == signer.address
    assert context.expected_seller == SELLER
    assert context.preferred_method == "permit2"


def test_build_context_explicit_values_win():
    context = build_context(
        _config(expected_seller=SELLER),
        signer=StubSigner(),
        expected_seller=OTHER,
        preferred_method="eip3009",
    )
    assert context.expected_seller == OTHER
    assert context.preferred_method == "eip3009"
