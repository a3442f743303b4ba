"""
Public, high-level helpers for buying and re-downloading x402-priced assets.
"""

from __future__ import annotations

from concurrent.futures import Executor
from typing import Any, Callable, Mapping, Optional

import requests

from .core.config import CheckoutConfig, CheckoutParameters, ConfigError, load_checkout_config
from .core.models import SettlementExpectation, SettlementResult
from .core.orchestrator import (
    CheckoutContext,
    PurchaseOrchestrator,
    PurchaseOutcome,
    VerificationView,
)
from .core.payloads import PaymentPayloadBuilder
from .core.seller import SellerResolver
from .core.sessions import CreatorAccess, EntitlementSessionManager
from .core.settlement import ReceiptSource, SettlementVerifier
from .core.signing import SigningCapability
from .core.storage import EntitlementStore
from .core.transport import CheckoutTransport

__all__ = [
    "ConfigError",
    "build_context",
    "create_orchestrator",
    "create_verifier",
    "purchase_asset",
    "redownload_asset",
    "verify_settlement",
]


def _resolve_config(
    config: Optional[CheckoutConfig],
    *,
    env_file: Optional[str],
    overrides: Optional[Mapping[str, str]],
    parameters: Optional[CheckoutParameters],
    explicit: Mapping[str, Any],
) -> CheckoutConfig:
    if config is not None:
        if overrides or parameters is not None or any(v is not None for v in explicit.values()):
            raise ValueError(
                "Provide either a pre-built CheckoutConfig or individual parameters, not both."
            )
        return config
    return load_checkout_config(
        env_file=env_file,
        overrides=overrides,
        parameters=parameters,
        **explicit,
    )


def create_verifier(
    config: CheckoutConfig,
    *,
    receipt_source: Optional[ReceiptSource] = None,
) -> SettlementVerifier:
    return SettlementVerifier(
        config.rpc_url,
        receipt_source=receipt_source,
        supported_network=config.network,
    )


def create_orchestrator(
    *,
    config: Optional[CheckoutConfig] = None,
    session: Optional[requests.Session] = None,
    store: Optional[EntitlementStore] = None,
    receipt_source: Optional[ReceiptSource] = None,
    executor: Optional[Executor] = None,
    on_verification: Optional[Callable[[VerificationView], None]] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    parameters: Optional[CheckoutParameters] = None,
    **explicit: Any,
) -> PurchaseOrchestrator:
    """
    Wire a :class:`PurchaseOrchestrator` from configuration.

    Callers can either supply a ready-made :class:`CheckoutConfig` or let the
    helper assemble one from environment data.
    """
    cfg = _resolve_config(
        config,
        env_file=env_file,
        overrides=overrides,
        parameters=parameters,
        explicit=explicit,
    )
    transport = CheckoutTransport(
        cfg.api_base,
        session=session,
        timeout=cfg.request_timeout_seconds,
    )
    entitlements = store if store is not None else EntitlementStore(cfg.store_path)
    sessions = EntitlementSessionManager(
        transport,
        entitlements,
        challenge_domain=cfg.siwe_domain,
        challenge_uri=cfg.siwe_uri,
        chain_id=cfg.chain_id,
        session_ttl_ms=cfg.session_ttl_ms,
    )
    return PurchaseOrchestrator(
        transport,
        sessions,
        create_verifier(cfg, receipt_source=receipt_source),
        entitlements,
        payload_builder=PaymentPayloadBuilder(
            chain_id=cfg.chain_id,
            permit2_spender=cfg.permit2_proxy_address,
        ),
        executor=executor,
        on_verification=on_verification,
        seller_resolver=SellerResolver(transport),
    )


def build_context(
    config: CheckoutConfig,
    *,
    signer: Optional[SigningCapability] = None,
    expected_seller: Optional[str] = None,
    preferred_method: Optional[str] = None,
    has_creator_access: CreatorAccess = False,
) -> CheckoutContext:
    """
    Build the buyer context for one run.

    Without an explicit ``signer`` the configured private key is used.
    """
    signer = signer if signer is not None else config.signer()
    return CheckoutContext(
        wallet=config.payer_address or signer.address,
        signer=signer,
        expected_seller=expected_seller or config.expected_seller,
        preferred_method=preferred_method or config.transfer_method,
        has_creator_access=has_creator_access,
    )


def purchase_asset(
    asset_id: str,
    *,
    config: Optional[CheckoutConfig] = None,
    signer: Optional[SigningCapability] = None,
    session: Optional[requests.Session] = None,
    store: Optional[EntitlementStore] = None,
    expected_seller: Optional[str] = None,
    preferred_method: Optional[str] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    parameters: Optional[CheckoutParameters] = None,
) -> PurchaseOutcome:
    """
    Buy ``asset_id`` (or restore it if already owned) in one call.

    Settlement verification keeps running on the orchestrator's executor; wait
    on ``outcome.verification`` for its result.
    """
    cfg = _resolve_config(config, env_file=env_file, overrides=overrides, parameters=parameters, explicit={})
    orchestrator = create_orchestrator(config=cfg, session=session, store=store)
    context = build_context(
        cfg,
        signer=signer,
        expected_seller=expected_seller,
        preferred_method=preferred_method,
    )
    return orchestrator.purchase(asset_id, context)


def redownload_asset(
    asset_id: str,
    *,
    config: Optional[CheckoutConfig] = None,
    signer: Optional[SigningCapability] = None,
    session: Optional[requests.Session] = None,
    store: Optional[EntitlementStore] = None,
    has_creator_access: CreatorAccess = False,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    parameters: Optional[CheckoutParameters] = None,
) -> PurchaseOutcome:
    cfg = _resolve_config(config, env_file=env_file, overrides=overrides, parameters=parameters, explicit={})
    orchestrator = create_orchestrator(config=cfg, session=session, store=store)
    context = build_context(cfg, signer=signer, has_creator_access=has_creator_access)
    return orchestrator.download_owned(asset_id, context)


def verify_settlement(
    tx_reference: str,
    expected: SettlementExpectation,
    *,
    config: Optional[CheckoutConfig] = None,
    receipt_source: Optional[ReceiptSource] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
) -> SettlementResult:
    """Check a settlement transaction on chain without touching any state."""
    cfg = _resolve_config(config, env_file=env_file, overrides=overrides, parameters=None, explicit={})
    return create_verifier(cfg, receipt_source=receipt_source).verify(tx_reference, expected)

