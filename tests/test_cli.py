import logging
import os

import pytest
from conftest import (
    OTHER,
    SELLER,
    TX_HASH,
    USDC,
    DeferredExecutor,
    StubReceiptSource,
    StubSession,
    make_response,
    payment_required_response,
    requirement,
    settled_response,
)

from x402_checkout import api, cli
from x402_checkout.core import settlement
from x402_checkout.core.storage import EntitlementStore

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    store_path = tmp_path / "entitlements.json"
    monkeypatch.setenv("X402_API_BASE", "https://market.test/api")
    monkeypatch.setenv("X402_PAYER_PRIVATE_KEY", PRIVATE_KEY)
    monkeypatch.setenv("X402_STORE_PATH", str(store_path))
    source = StubReceiptSource()
    monkeypatch.setattr(settlement, "get_receipt_source", lambda rpc_url=None: source)
    return {"env_file": str(tmp_path / "missing.env"), "store_path": store_path, "source": source}


def _run(cli_env, *args):
    return cli.run_cli(["--env-file", cli_env["env_file"], *args])


def test_invalid_configuration_exits_1(cli_env):
    assert _run(cli_env, "--set", "X402_TRANSFER_METHOD=wire", "owned") == 1


def test_override_syntax_is_validated(cli_env):
    with pytest.raises(SystemExit):
        _run(cli_env, "--set", "nonsense", "owned")


def test_owned_lists_stored_receipts(cli_env, capsys):
    from x402_checkout.core.config import load_checkout_config

    wallet = load_checkout_config(env_file=None).payer_address
    store = EntitlementStore(cli_env["store_path"])
    store.store_receipt("asset-b", wallet, "r2")
    store.store_receipt("asset-a", wallet, "r1")

    assert _run(cli_env, "owned") == 0
    assert capsys.readouterr().out.split() == ["asset-a", "asset-b"]


def test_verify_reports_unmined_transaction(cli_env):
    assert _run(cli_env, "verify", TX_HASH, "--token", USDC, "--pay-to", SELLER) == 1
    assert cli_env["source"].lookups == [TX_HASH]


def test_verify_rejects_bad_amount(cli_env):
    assert _run(cli_env, "verify", TX_HASH, "--token", USDC, "--pay-to", SELLER, "--amount", "lots") == 1
    assert cli_env["source"].lookups == []


def test_purchase_writes_content(cli_env, tmp_path, monkeypatch):
    def market(url, headers):
        if "PAYMENT-SIGNATURE" in headers:
            return settled_response(b"# Bought\n")
        return payment_required_response(requirement())

    monkeypatch.setattr(cli.requests, "Session", lambda: StubSession(market))
    output = tmp_path / "asset.md"

    assert _run(cli_env, "purchase", "asset-1", "--output", str(output), "--wait") == 0
    assert output.read_bytes() == b"# Bought\n"
    assert cli_env["source"].lookups == [TX_HASH]


def test_purchase_failure_exits_1(cli_env, monkeypatch):
    session = StubSession(lambda url, headers: make_response(503))
    monkeypatch.setattr(cli.requests, "Session", lambda: session)

    assert _run(cli_env, "purchase", "asset-1") == 1
    assert len(session.calls) == 1


def test_redownload_without_receipt_exits_1(cli_env, monkeypatch):
    session = StubSession(lambda url, headers: make_response(500))
    monkeypatch.setattr(cli.requests, "Session", lambda: session)

    assert _run(cli_env, "redownload", "asset-1") == 1
    assert session.calls == []


def test_purchase_checks_listed_seller(cli_env, monkeypatch):
    def market(url, headers):
        if url.endswith("/assets/asset-1"):
            return make_response(200, json_body={"asset": {"seller_address": OTHER}})
        if "PAYMENT-SIGNATURE" in headers:
            return settled_response()
        return payment_required_response(requirement(pay_to=SELLER))

    session = StubSession(market)
    monkeypatch.setattr(cli.requests, "Session", lambda: session)

    assert _run(cli_env, "purchase", "asset-1") == 1
    assert all("PAYMENT-SIGNATURE" not in call.headers for call in session.calls)


def test_purchase_without_wait_reports_background_verification(cli_env, monkeypatch, caplog):
    def market(url, headers):
        if "PAYMENT-SIGNATURE" in headers:
            return settled_response()
        return payment_required_response(requirement())

    monkeypatch.setattr(cli.requests, "Session", lambda: StubSession(market))
    monkeypatch.setattr(
        cli,
        "create_orchestrator",
        lambda **kwargs: api.create_orchestrator(executor=DeferredExecutor(), **kwargs),
    )
    caplog.set_level(logging.INFO)

    assert _run(cli_env, "purchase", "asset-1", "--output", os.devnull) == 0
    assert "continues in the background" in caplog.text
    assert cli_env["source"].lookups == []
