"""
Core primitives that implement the x402 checkout lifecycle.
"""

from .challenge import build_asset_action_message, build_scoped_message, challenge_nonce
from .config import (
    CheckoutConfig,
    CheckoutParameters,
    ConfigError,
    load_checkout_config,
)
from .environment import CheckoutEnvironment, build_environment
from .errors import (
    CheckoutError,
    EmptyOffer,
    FieldMismatch,
    InvalidReference,
    MissingSettlementConfirmation,
    NegotiationError,
    NetworkError,
    NetworkMismatch,
    NetworkTimeout,
    ReceiptNotFound,
    RecipientMismatch,
    Reverted,
    SigningCapabilityError,
    SigningError,
    SigningRejected,
    TransportError,
    UnexpectedStatus,
    UnsupportedTransferMethod,
    VerificationError,
)
from .models import (
    PaymentPayload,
    PaymentRequired,
    PaymentRequirement,
    ReacquireResult,
    RedownloadSession,
    SettlementConfirmation,
    SettlementExpectation,
    SettlementResult,
    TransferEvent,
)
from .orchestrator import (
    CheckoutContext,
    PurchaseOrchestrator,
    PurchaseOutcome,
    PurchaseState,
    VerificationPhase,
    VerificationView,
)
from .payloads import PaymentPayloadBuilder
from .selection import select_payment_requirement
from .seller import SellerResolver
from .sessions import EntitlementSessionManager
from .settlement import SettlementVerifier, Web3ReceiptSource
from .signing import LocalAccountSigner, SigningCapability
from .storage import EntitlementStore
from .transport import CheckoutTransport

__all__ = [
    "CheckoutConfig",
    "CheckoutContext",
    "CheckoutEnvironment",
    "CheckoutError",
    "CheckoutParameters",
    "CheckoutTransport",
    "ConfigError",
    "EmptyOffer",
    "EntitlementSessionManager",
    "EntitlementStore",
    "FieldMismatch",
    "InvalidReference",
    "LocalAccountSigner",
    "MissingSettlementConfirmation",
    "NegotiationError",
    "NetworkError",
    "NetworkMismatch",
    "NetworkTimeout",
    "PaymentPayload",
    "PaymentPayloadBuilder",
    "PaymentRequired",
    "PaymentRequirement",
    "PurchaseOrchestrator",
    "PurchaseOutcome",
    "PurchaseState",
    "ReacquireResult",
    "ReceiptNotFound",
    "RecipientMismatch",
    "RedownloadSession",
    "Reverted",
    "SettlementConfirmation",
    "SettlementExpectation",
    "SettlementResult",
    "SellerResolver",
    "SettlementVerifier",
    "SigningCapability",
    "SigningCapabilityError",
    "SigningError",
    "SigningRejected",
    "TransferEvent",
    "TransportError",
    "UnexpectedStatus",
    "UnsupportedTransferMethod",
    "VerificationError",
    "VerificationPhase",
    "VerificationView",
    "Web3ReceiptSource",
    "build_asset_action_message",
    "build_environment",
    "build_scoped_message",
    "challenge_nonce",
    "load_checkout_config",
    "select_payment_requirement",
]
