"""
Exceptions raised by the checkout protocol core.
"""

from __future__ import annotations

from typing import Iterable, Optional

__all__ = [
    "CheckoutError",
    "EmptyOffer",
    "FieldMismatch",
    "InvalidReference",
    "MissingSettlementConfirmation",
    "NegotiationError",
    "NetworkError",
    "NetworkMismatch",
    "NetworkTimeout",
    "ReceiptNotFound",
    "RecipientMismatch",
    "Reverted",
    "SigningCapabilityError",
    "SigningError",
    "SigningRejected",
    "TransportError",
    "UnexpectedStatus",
    "UnsupportedTransferMethod",
    "VerificationError",
]


class CheckoutError(Exception):
    """Base class for every error surfaced by the checkout flows."""


class NegotiationError(CheckoutError):
    """Raised while choosing which payment offer to sign."""


class EmptyOffer(NegotiationError):
    def __init__(self) -> None:
        super().__init__("No payment requirements available")


class RecipientMismatch(NegotiationError):
    def __init__(self, expected: str) -> None:
        super().__init__(
            "Security check failed: payment recipient mismatch. "
            f"Expected {expected}. Do not continue."
        )
        self.expected = expected


class UnsupportedTransferMethod(NegotiationError):
    def __init__(self, method: str, available: Iterable[str]) -> None:
        self.method = method
        self.available = sorted(set(available))
        super().__init__(
            f"No {method} payment option available for this quote. "
            f"Available methods: {', '.join(self.available) or 'none'}."
        )


class SigningError(CheckoutError):
    """Raised when the signing capability does not produce a signature."""


class SigningRejected(SigningError):
    """The wallet owner declined the signature request."""


class SigningCapabilityError(SigningError):
    """The signing capability failed for a reason other than rejection."""


class TransportError(CheckoutError):
    """Raised for HTTP level failures."""


class NetworkTimeout(TransportError):
    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(f"Request timed out after {timeout:g}s: {url}")
        self.url = url
        self.timeout = timeout


class NetworkError(TransportError):
    pass


class UnexpectedStatus(TransportError):
    def __init__(
        self,
        status_code: int,
        detail: Optional[str] = None,
        *,
        context: str = "Request failed",
    ) -> None:
        message = detail or f"{context} (HTTP {status_code})"
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class MissingSettlementConfirmation(CheckoutError):
    def __init__(self) -> None:
        super().__init__("Payment did not include a confirmed settlement response")


class VerificationError(CheckoutError):
    """Raised by the on-chain settlement check."""


class InvalidReference(VerificationError):
    def __init__(self, reference: object) -> None:
        super().__init__("Missing or invalid transaction hash.")
        self.reference = reference


class NetworkMismatch(VerificationError):
    def __init__(self, network: str, supported: str) -> None:
        super().__init__(f"Unexpected network: {network}")
        self.network = network
        self.supported = supported


class ReceiptNotFound(VerificationError):
    pass


class Reverted(VerificationError):
    pass


class FieldMismatch(VerificationError):
    pass
