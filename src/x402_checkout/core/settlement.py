"""
Independent on-chain confirmation of an x402 settlement.

The server already attests settlement in ``PAYMENT-RESPONSE``; this module
re-reads the transaction receipt from a JSON-RPC endpoint and checks that an
ERC-20 ``Transfer`` matching the signed payment actually happened.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Protocol

from eth_utils import keccak
from hexbytes import HexBytes
from web3 import HTTPProvider, Web3
from web3.exceptions import TransactionNotFound

from .errors import InvalidReference, NetworkMismatch
from .models import (
    SettlementExpectation,
    SettlementResult,
    TransferEvent,
    normalize_address,
    parse_amount,
)

__all__ = [
    "BASE_MAINNET_NETWORK",
    "DEFAULT_RPC_URL",
    "ReceiptSource",
    "SettlementVerifier",
    "TRANSFER_TOPIC",
    "Web3ReceiptSource",
    "decode_transfer_log",
    "format_micro_usdc",
    "get_receipt_source",
    "is_transaction_hash",
]

DEFAULT_RPC_URL = "https://mainnet.base.org"
BASE_MAINNET_NETWORK = "eip155:8453"
RPC_TIMEOUT_SECONDS = 30

TRANSFER_TOPIC = HexBytes(keccak(text="Transfer(address,address,uint256)"))
_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_transaction_hash(value: Any) -> bool:
    return isinstance(value, str) and bool(_TX_HASH_RE.match(value))


def format_micro_usdc(value: Any) -> str:
    amount = parse_amount(value)
    if amount is None:
        return "-"
    whole, fractional = divmod(amount, 1_000_000)
    fraction = f"{fractional:06d}".rstrip("0")
    return f"{whole}.{fraction} USDC" if fraction else f"{whole} USDC"


class ReceiptSource(Protocol):
    def get_transaction_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]: ...


class Web3ReceiptSource:
    """
    Receipt lookups through a :class:`web3.Web3` HTTP provider.
    """

    def __init__(self, rpc_url: str, *, timeout: float = RPC_TIMEOUT_SECONDS) -> None:
        self.rpc_url = rpc_url
        self.web3 = Web3(HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        try:
            return self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None


_RECEIPT_SOURCES: Dict[str, Web3ReceiptSource] = {}


def get_receipt_source(rpc_url: Optional[str] = None) -> Web3ReceiptSource:
    """Return the cached provider for ``rpc_url``, creating it on first use."""
    normalized = str(rpc_url or DEFAULT_RPC_URL).strip()
    source = _RECEIPT_SOURCES.get(normalized)
    if source is None:
        source = Web3ReceiptSource(normalized)
        _RECEIPT_SOURCES[normalized] = source
    return source


def _topic_address(topic: Any) -> Optional[str]:
    raw = HexBytes(topic)
    if len(raw) != 32:
        return None
    return normalize_address("0x" + raw[-20:].hex())


def decode_transfer_log(log: Mapping[str, Any]) -> Optional[TransferEvent]:
    """
    Decode an ERC-20 ``Transfer(address indexed, address indexed, uint256)`` log.

    Returns ``None`` for anything else.
    """
    topics = list(log.get("topics") or [])
    if len(topics) != 3:
        return None
    try:
        if HexBytes(topics[0]) != TRANSFER_TOPIC:
            return None
        data = HexBytes(log.get("data") or b"")
        if len(data) != 32:
            return None
        return TransferEvent(
            sender=_topic_address(topics[1]),
            recipient=_topic_address(topics[2]),
            amount=int.from_bytes(data, "big"),
        )
    except (TypeError, ValueError):
        return None


class SettlementVerifier:
    """
    Confirms a settlement transaction against what the buyer signed.

    Verification is read-only: it never touches receipts or sessions.
    """

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        *,
        receipt_source: Optional[ReceiptSource] = None,
        supported_network: str = BASE_MAINNET_NETWORK,
    ) -> None:
        self.rpc_url = rpc_url
        self._receipt_source = receipt_source
        self.supported_network = supported_network

    @property
    def receipt_source(self) -> ReceiptSource:
        if self._receipt_source is None:
            self._receipt_source = get_receipt_source(self.rpc_url)
        return self._receipt_source

    def _transfers(self, receipt: Mapping[str, Any], token: Optional[str]) -> List[TransferEvent]:
        transfers: List[TransferEvent] = []
        for log in receipt.get("logs") or []:
            if normalize_address(log.get("address")) != token:
                continue
            event = decode_transfer_log(log)
            if event is not None:
                transfers.append(event)
        return transfers

    def verify(self, tx_reference: Any, expected: SettlementExpectation) -> SettlementResult:
        if not is_transaction_hash(tx_reference):
            raise InvalidReference(tx_reference)
        expected = expected.normalized()
        if expected.network and expected.network != self.supported_network:
            raise NetworkMismatch(expected.network, self.supported_network)

        logging.info("Checking settlement %s via %s", tx_reference, self.rpc_url)
        receipt = self.receipt_source.get_transaction_receipt(tx_reference)
        if not receipt:
            return SettlementResult(
                verified=False,
                expected=expected,
                reason="receipt not found yet",
                code="receipt_not_found",
            )
        if int(receipt.get("status", 0)) != 1:
            return SettlementResult(verified=False, expected=expected, reason="reverted", code="reverted")

        transfers = self._transfers(receipt, expected.token)
        if not transfers:
            return SettlementResult(
                verified=False,
                expected=expected,
                reason="No transfer log found for the expected token in this transaction.",
                code="no_transfer",
            )

        for transfer in transfers:
            if transfer.sender is None or transfer.recipient is None or transfer.amount is None:
                continue
            if expected.pay_to and transfer.recipient != expected.pay_to:
                continue
            if expected.payer and transfer.sender != expected.payer:
                continue
            if expected.amount is not None and transfer.amount < expected.amount:
                continue
            # First satisfying transfer wins when several qualify.
            return SettlementResult(verified=True, expected=expected, actual=transfer)

        mismatches = []
        if expected.pay_to and not any(t.recipient == expected.pay_to for t in transfers):
            mismatches.append("recipient mismatch")
        if expected.payer and not any(t.sender == expected.payer for t in transfers):
            mismatches.append("payer mismatch")
        if expected.amount is not None and not any(
            t.amount is not None and t.amount >= expected.amount for t in transfers
        ):
            mismatches.append("amount below expected")
        reason = "; ".join(mismatches) or (
            "Transfer log found but fields did not match expected payment details."
        )
        logging.warning("Settlement %s did not match expectation: %s", tx_reference, reason)
        return SettlementResult(
            verified=False,
            expected=expected,
            actual=transfers[0],
            reason=reason,
            code="field_mismatch",
        )
