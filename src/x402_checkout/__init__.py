"""
Public facade for the x402 checkout package.

The most useful pieces are re-exported here so integrators can
``from x402_checkout import ...`` without navigating the package.
"""

from .api import (
    build_context,
    create_orchestrator,
    create_verifier,
    purchase_asset,
    redownload_asset,
    verify_settlement,
)
from .core import (
    CheckoutConfig,
    CheckoutContext,
    CheckoutError,
    CheckoutParameters,
    ConfigError,
    EntitlementStore,
    LocalAccountSigner,
    PurchaseOrchestrator,
    PurchaseOutcome,
    PurchaseState,
    SettlementExpectation,
    SettlementResult,
    SigningCapability,
    VerificationPhase,
    VerificationView,
    build_environment,
    load_checkout_config,
)

__all__ = (
    "CheckoutConfig",
    "CheckoutContext",
    "CheckoutError",
    "CheckoutParameters",
    "ConfigError",
    "EntitlementStore",
    "LocalAccountSigner",
    "PurchaseOrchestrator",
    "PurchaseOutcome",
    "PurchaseState",
    "SettlementExpectation",
    "SettlementResult",
    "SigningCapability",
    "VerificationPhase",
    "VerificationView",
    "build_context",
    "build_environment",
    "create_orchestrator",
    "create_verifier",
    "load_checkout_config",
    "purchase_asset",
    "redownload_asset",
    "verify_settlement",
)
