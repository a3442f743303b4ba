"""
Data model shared by the checkout components.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from eth_utils import is_address, to_checksum_address

from .errors import FieldMismatch, ReceiptNotFound, Reverted, VerificationError

__all__ = [
    "DEFAULT_TRANSFER_METHOD",
    "X402_VERSION",
    "ChallengeMessage",
    "PaymentPayload",
    "PaymentRequired",
    "PaymentRequirement",
    "ReacquireResult",
    "RedownloadSession",
    "SettlementConfirmation",
    "SettlementExpectation",
    "SettlementResult",
    "TransferEvent",
    "normalize_address",
    "parse_amount",
]

DEFAULT_TRANSFER_METHOD = "eip3009"
X402_VERSION = 2


def normalize_address(value: Any) -> Optional[str]:
    """Return the EIP-55 form of ``value`` or ``None`` when it is not an address."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or not is_address(text):
        return None
    return to_checksum_address(text)


def parse_amount(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(str(value), 0) if str(value).startswith("0x") else int(str(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class PaymentRequirement:
    """One server-offered way to pay for a resource."""

    scheme: str
    network: str
    amount: int
    asset: str
    pay_to: str
    max_timeout_seconds: int
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def transfer_method(self) -> str:
        extra = self.extra or {}
        method = extra.get("assetTransferMethod") or extra.get("transferMethod")
        return str(method or DEFAULT_TRANSFER_METHOD).strip().lower()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PaymentRequirement":
        if not isinstance(payload, Mapping):
            raise ValueError("payment requirement must be an object")
        extra = payload.get("extra") or {}
        if not isinstance(extra, Mapping):
            raise ValueError("payment requirement 'extra' must be an object")
        amount = parse_amount(payload.get("amount", payload.get("maxAmountRequired")))
        if amount is None:
            raise ValueError("payment requirement is missing a valid amount")
        return cls(
            scheme=str(payload.get("scheme") or "exact"),
            network=str(payload.get("network") or ""),
            amount=amount,
            asset=str(payload.get("asset") or ""),
            pay_to=str(payload.get("payTo") or ""),
            max_timeout_seconds=parse_amount(payload.get("maxTimeoutSeconds")) or 0,
            extra=dict(extra),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": self.scheme,
            "network": self.network,
            "amount": str(self.amount),
            "asset": self.asset,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "extra": dict(self.extra or {}),
        }


@dataclass(frozen=True)
class PaymentRequired:
    """Decoded 402 challenge."""

    x402_version: int
    accepts: List[PaymentRequirement]
    resource: Optional[Mapping[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PaymentRequired":
        version = parse_amount(payload.get("x402Version", X402_VERSION))
        if version is None:
            raise ValueError("payment challenge carries an invalid x402Version")
        accepts = payload.get("accepts") or []
        if not isinstance(accepts, list):
            raise ValueError("'accepts' must be a list of payment requirements")
        resource = payload.get("resource")
        return cls(
            x402_version=version,
            accepts=[PaymentRequirement.from_dict(item) for item in accepts],
            resource=resource if isinstance(resource, Mapping) else None,
            error=payload.get("error"),
        )


@dataclass(frozen=True)
class PaymentPayload:
    accepted: PaymentRequirement
    payload: Mapping[str, Any]
    protocol_version: int = X402_VERSION
    resource: Optional[Mapping[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "x402Version": self.protocol_version,
            "accepted": self.accepted.to_dict(),
            "payload": dict(self.payload),
        }
        if self.resource:
            body["resource"] = dict(self.resource)
        return body


@dataclass(frozen=True)
class SettlementExpectation:
    """What the buyer expects the settlement transaction to show."""

    token: Optional[str] = None
    pay_to: Optional[str] = None
    payer: Optional[str] = None
    amount: Optional[int] = None
    network: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: PaymentPayload, payer: str) -> "SettlementExpectation":
        accepted = payload.accepted
        return cls(
            token=accepted.asset or None,
            pay_to=accepted.pay_to or None,
            payer=payer,
            amount=accepted.amount,
            network=accepted.network or None,
        )

    def normalized(self) -> "SettlementExpectation":
        return SettlementExpectation(
            token=normalize_address(self.token),
            pay_to=normalize_address(self.pay_to),
            payer=normalize_address(self.payer),
            amount=parse_amount(self.amount),
            network=str(self.network or "") or None,
        )


@dataclass(frozen=True)
class TransferEvent:
    sender: Optional[str]
    recipient: Optional[str]
    amount: Optional[int]


_VERIFICATION_ERRORS = {
    "receipt_not_found": ReceiptNotFound,
    "reverted": Reverted,
    "no_transfer": FieldMismatch,
    "field_mismatch": FieldMismatch,
}


@dataclass(frozen=True)
class SettlementResult:
    verified: bool
    expected: SettlementExpectation
    actual: Optional[TransferEvent] = None
    reason: Optional[str] = None
    code: Optional[str] = None

    @property
    def pending(self) -> bool:
        """True when the transaction simply has not been mined or indexed yet."""
        return self.code == "receipt_not_found"

    def raise_for_status(self) -> None:
        if self.verified:
            return
        error_cls = _VERIFICATION_ERRORS.get(self.code or "", VerificationError)
        raise error_cls(self.reason or "Settlement could not be verified")


@dataclass(frozen=True)
class SettlementConfirmation:
    success: bool
    transaction: Optional[str]
    network: Optional[str]
    payer: Optional[str]
    raw: Mapping[str, Any]

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "SettlementConfirmation":
        return cls(
            success=bool(payload.get("success")),
            transaction=payload.get("transaction") or None,
            network=payload.get("network") or None,
            payer=payload.get("payer") or None,
            raw=dict(payload),
        )


@dataclass(frozen=True)
class RedownloadSession:
    token: str
    expires_at_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at_ms


@dataclass(frozen=True)
class ChallengeMessage:
    text: str
    timestamp: int
    nonce: str


@dataclass(frozen=True)
class ReacquireResult:
    ok: bool
    requires_payment: bool = False
    content: Optional[bytes] = None
    transaction: Optional[str] = None
    receipt: Optional[str] = None
