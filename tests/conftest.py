from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from x402_checkout.core.errors import SigningRejected
from x402_checkout.core.models import PaymentRequirement
from x402_checkout.core.transport import CheckoutTransport, encode_header

API_BASE = "https://market.test/api"
BUYER = "0x1111111111111111111111111111111111111111"
SELLER = "0x2222222222222222222222222222222222222222"
OTHER = "0x3333333333333333333333333333333333333333"
USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
TX_HASH = "0x" + "ab" * 32
NOW_MS = 1_700_000_000_000


def make_response(
    status_code: int = 200,
    *,
    json_body: Any = None,
    content: bytes = b"",
    headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.headers = CaseInsensitiveDict(headers or {})
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
        response.headers.setdefault("Content-Type", "application/json")
    else:
        response._content = content
    response.encoding = "utf-8"
    response.url = API_BASE
    return response


@dataclass
class Call:
    url: str
    headers: Dict[str, str]
    timeout: Optional[float]


class StubSession:
    """Stand-in for ``requests.Session`` that routes every GET to ``handler``."""

    def __init__(self, handler: Callable[[str, Dict[str, str]], requests.Response]) -> None:
        self.handler = handler
        self.calls: List[Call] = []

    def get(self, url: str, headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = None):
        recorded = dict(headers or {})
        self.calls.append(Call(url, recorded, timeout))
        return self.handler(url, recorded)

    def urls(self) -> List[str]:
        return [call.url for call in self.calls]


class StubSigner:
    def __init__(self, address: str = BUYER, *, reject: bool = False) -> None:
        self._address = address
        self.reject = reject
        self.typed_data: List[Dict[str, Any]] = []
        self.messages: List[str] = []

    @property
    def address(self) -> str:
        return self._address

    def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        if self.reject:
            raise SigningRejected("User rejected the request.")
        self.typed_data.append(typed_data)
        return "0x" + "11" * 65

    def sign_message(self, text: str) -> str:
        if self.reject:
            raise SigningRejected("User rejected the request.")
        self.messages.append(text)
        return "0x" + "22" * 65


@dataclass
class StubReceiptSource:
    receipts: Dict[str, Any] = field(default_factory=dict)
    lookups: List[str] = field(default_factory=list)

    def get_transaction_receipt(self, tx_hash: str):
        self.lookups.append(tx_hash)
        return self.receipts.get(tx_hash)


class DeferredExecutor:
    """Executor that only runs submitted work when ``run_all``/``run`` is called."""

    def __init__(self) -> None:
        self.pending: List[Any] = []

    def submit(self, fn, *args, **kwargs):
        from concurrent.futures import Future

        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run(self, index: int) -> None:
        future, fn, args, kwargs = self.pending.pop(index)
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:  # noqa: BLE001
            future.set_exception(exc)

    def run_all(self) -> None:
        while self.pending:
            self.run(0)

    def shutdown(self, wait: bool = True) -> None:
        if wait:
            self.run_all()


class ImmediateExecutor(DeferredExecutor):
    def submit(self, fn, *args, **kwargs):
        future = super().submit(fn, *args, **kwargs)
        self.run_all()
        return future


def requirement(
    *,
    pay_to: str = SELLER,
    method: Optional[str] = "eip3009",
    amount: int = 10_000,
    network: str = "eip155:8453",
) -> PaymentRequirement:
    extra: Dict[str, Any] = {"name": "USD Coin", "version": "2"}
    if method is not None:
        extra["assetTransferMethod"] = method
    return PaymentRequirement(
        scheme="exact",
        network=network,
        amount=amount,
        asset=USDC,
        pay_to=pay_to,
        max_timeout_seconds=300,
        extra=extra,
    )


def payment_required_response(*requirements: PaymentRequirement) -> requests.Response:
    body = {
        "x402Version": 2,
        "error": "Payment required",
        "resource": {"url": f"{API_BASE}/assets/asset-1/download"},
        "accepts": [item.to_dict() for item in requirements],
    }
    return make_response(402, json_body={"error": "Payment required"}, headers={"PAYMENT-REQUIRED": encode_header(body)})


def settled_response(content: bytes = b"# Asset\n", *, transaction: Optional[str] = TX_HASH, receipt: str = "receipt-2"):
    confirmation = {"success": True, "transaction": transaction, "network": "eip155:8453", "payer": BUYER}
    return make_response(
        200,
        content=content,
        headers={"PAYMENT-RESPONSE": encode_header(confirmation), "X-PURCHASE-RECEIPT": receipt},
    )


def transfer_log(sender: str, recipient: str, amount: int, *, token: str = USDC) -> Dict[str, Any]:
    from x402_checkout.core.settlement import TRANSFER_TOPIC

    def topic(address: str) -> str:
        return "0x" + "00" * 12 + address[2:].lower()

    return {
        "address": token,
        "topics": [TRANSFER_TOPIC, topic(sender), topic(recipient)],
        "data": "0x" + amount.to_bytes(32, "big").hex(),
    }


@pytest.fixture
def signer() -> StubSigner:
    return StubSigner()


@pytest.fixture
def clock_ms():
    state = {"now": NOW_MS}

    def now() -> int:
        return state["now"]

    now.state = state  # type: ignore[attr-defined]
    return now


def make_transport(handler) -> tuple[CheckoutTransport, StubSession]:
    session = StubSession(handler)
    return CheckoutTransport(API_BASE, session=session, timeout=5.0), session
