"""
Purchase / re-download lifecycle.

``purchase`` walks::

    IDLE -> CHECKING_ENTITLEMENT -> RESTORED
                                 -> NEGOTIATING_PAYMENT -> SIGNING -> SUBMITTING
                                    -> SETTLED -> VERIFYING_SETTLEMENT -> VERIFIED | WARN
                                    -> FAILED

Content is handed back at SETTLED; settlement verification finishes in the
background and only updates :attr:`PurchaseOrchestrator.verification_view`
while it is still the most recent run.
"""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .errors import (
    CheckoutError,
    MissingSettlementConfirmation,
    UnexpectedStatus,
)
from .models import (
    DEFAULT_TRANSFER_METHOD,
    X402_VERSION,
    PaymentPayload,
    SettlementExpectation,
    SettlementResult,
    TransferEvent,
)
from .payloads import PaymentPayloadBuilder
from .selection import normalize_transfer_method, select_payment_requirement
from .seller import SellerResolver
from .sessions import CreatorAccess, EntitlementSessionManager
from .settlement import SettlementVerifier
from .signing import SigningCapability
from .storage import EntitlementStore
from .transport import (
    PAYMENT_SIGNATURE_HEADER,
    CheckoutTransport,
    decode_payment_required,
    encode_header,
    read_error,
    read_settlement_confirmation,
)

__all__ = [
    "CheckoutContext",
    "PurchaseOrchestrator",
    "PurchaseOutcome",
    "PurchaseState",
    "VerificationPhase",
    "VerificationView",
]

UNVERIFIABLE_REASON = (
    "Unable to verify settlement right now. You can still inspect the transaction on a block explorer."
)


class PurchaseState(enum.Enum):
    IDLE = "idle"
    CHECKING_ENTITLEMENT = "checking_entitlement"
    RESTORED = "restored"
    NEGOTIATING_PAYMENT = "negotiating_payment"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    SETTLED = "settled"
    VERIFYING_SETTLEMENT = "verifying_settlement"
    VERIFIED = "verified"
    WARN = "warn"
    FAILED = "failed"


class VerificationPhase(enum.Enum):
    HIDDEN = "hidden"
    PENDING = "pending"
    VERIFIED = "verified"
    WARN = "warn"


@dataclass(frozen=True)
class VerificationView:
    phase: VerificationPhase
    sequence: int = 0
    reason: Optional[str] = None
    expected: Optional[SettlementExpectation] = None
    actual: Optional[TransferEvent] = None
    pending_confirmation: bool = False


@dataclass
class CheckoutContext:
    """Everything one orchestration run needs to know about the buyer."""

    wallet: str
    signer: SigningCapability
    expected_seller: Optional[str] = None
    preferred_method: str = DEFAULT_TRANSFER_METHOD
    has_creator_access: CreatorAccess = False


@dataclass
class PurchaseOutcome:
    """
    Result of one run.

    Background verification may still move ``state`` to VERIFIED or WARN;
    use :meth:`snapshot` for a consistent read while it is running.
    """

    asset_id: str
    state: PurchaseState = PurchaseState.IDLE
    history: List[PurchaseState] = field(default_factory=list)
    content: Optional[bytes] = None
    transaction: Optional[str] = None
    receipt: Optional[str] = None
    expectation: Optional[SettlementExpectation] = None
    payment: Optional[PaymentPayload] = None
    sequence: Optional[int] = None
    verification: Optional["Future[SettlementResult]"] = None
    error: Optional[BaseException] = None
    message: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def advance(self, state: PurchaseState) -> None:
        with self._lock:
            logging.debug("%s: %s -> %s", self.asset_id, self.state.value, state.value)
            self.state = state
            self.history.append(state)

    def snapshot(self) -> Tuple[PurchaseState, Tuple[PurchaseState, ...]]:
        with self._lock:
            return self.state, tuple(self.history)

    @property
    def delivered(self) -> bool:
        return self.content is not None

    def raise_for_failure(self) -> None:
        if self.state is PurchaseState.FAILED and self.error is not None:
            raise self.error


class PurchaseOrchestrator:
    """
    Drives a purchase from entitlement check to settled content.

    ``executor`` runs settlement verification; pass a custom one to control
    scheduling. ``on_verification`` is called with each new
    :class:`VerificationView` that is still current.
    """

    def __init__(
        self,
        transport: CheckoutTransport,
        sessions: EntitlementSessionManager,
        verifier: SettlementVerifier,
        store: EntitlementStore,
        *,
        payload_builder: Optional[PaymentPayloadBuilder] = None,
        executor: Optional[Executor] = None,
        on_verification: Optional[Callable[[VerificationView], None]] = None,
        seller_resolver: Optional[SellerResolver] = None,
    ) -> None:
        self.transport = transport
        self.sessions = sessions
        self.verifier = verifier
        self.store = store
        self.payload_builder = payload_builder or PaymentPayloadBuilder()
        self.seller_resolver = seller_resolver
        self._executor = executor
        self._on_verification = on_verification
        self._lock = threading.Lock()
        self._sequence = 0
        self._view = VerificationView(phase=VerificationPhase.HIDDEN)

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="x402-verify")
        return self._executor

    @property
    def verification_view(self) -> VerificationView:
        with self._lock:
            return self._view

    @property
    def sequence(self) -> int:
        with self._lock:
            return self._sequence

    def _publish(self, view: VerificationView, *, only_if_current: bool) -> bool:
        with self._lock:
            if only_if_current and view.sequence != self._sequence:
                logging.debug(
                    "Discarding settlement verification %s; run %s is current",
                    view.sequence,
                    self._sequence,
                )
                return False
            self._view = view
        if self._on_verification is not None:
            self._on_verification(view)
        return True

    def _begin_cycle(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    # Entry points

    def purchase(self, asset_id: str, context: CheckoutContext) -> PurchaseOutcome:
        outcome = PurchaseOutcome(asset_id=asset_id)
        try:
            if self._restore(asset_id, context, outcome):
                return outcome
            self._pay(asset_id, context, outcome)
        except (CheckoutError, ValueError) as exc:
            self._fail(outcome, exc, "Purchase failed")
        return outcome

    def download_owned(self, asset_id: str, context: CheckoutContext) -> PurchaseOutcome:
        outcome = PurchaseOutcome(asset_id=asset_id)
        try:
            if not self._restore(asset_id, context, outcome):
                outcome.advance(PurchaseState.FAILED)
                outcome.message = "No purchase or creator entitlement found for this asset on this wallet."
        except (CheckoutError, ValueError) as exc:
            self._fail(outcome, exc, "Download failed")
        return outcome

    # Steps

    def _fail(self, outcome: PurchaseOutcome, exc: Exception, prefix: str) -> None:
        logging.error("%s for %s: %s", prefix, outcome.asset_id, exc)
        outcome.advance(PurchaseState.FAILED)
        outcome.error = exc
        outcome.message = f"{prefix}: {exc}"

    def _restore(self, asset_id: str, context: CheckoutContext, outcome: PurchaseOutcome) -> bool:
        outcome.advance(PurchaseState.CHECKING_ENTITLEMENT)
        prior = self.sessions.attempt_reacquire(
            asset_id,
            context.wallet,
            context.signer,
            has_creator_access=context.has_creator_access,
        )
        if not prior.ok:
            return False

        self.store.mark_owned(asset_id, context.wallet)
        outcome.content = prior.content
        outcome.transaction = prior.transaction
        outcome.receipt = prior.receipt
        outcome.sequence = self._begin_cycle()
        self._publish(
            VerificationView(phase=VerificationPhase.HIDDEN, sequence=outcome.sequence),
            only_if_current=True,
        )
        outcome.advance(PurchaseState.RESTORED)
        outcome.message = "Entitlement verified. Download restored."
        return True

    def _pay(self, asset_id: str, context: CheckoutContext, outcome: PurchaseOutcome) -> None:
        method = normalize_transfer_method(context.preferred_method)
        url = self.transport.asset_download_url(asset_id)

        outcome.advance(PurchaseState.NEGOTIATING_PAYMENT)
        initial = self.transport.get(
            url,
            {
                "Accept": "application/json",
                "X-WALLET-ADDRESS": context.wallet,
                "X-ASSET-TRANSFER-METHOD": method,
            },
        )
        if initial.status_code != 402:
            raise UnexpectedStatus(
                initial.status_code,
                read_error(initial),
                context=f"Expected 402 payment required (got {initial.status_code})",
            )
        try:
            challenge = decode_payment_required(initial)
        except ValueError as exc:
            raise UnexpectedStatus(402, str(exc)) from exc
        if challenge.x402_version != X402_VERSION:
            raise UnexpectedStatus(402, f"Unsupported x402 version {challenge.x402_version}")

        expected_seller = context.expected_seller
        if not expected_seller and self.seller_resolver is not None:
            expected_seller = self.seller_resolver.resolve(asset_id)
        selected = select_payment_requirement(
            challenge.accepts,
            expected_seller=expected_seller,
            preferred_method=method,
        )

        outcome.advance(PurchaseState.SIGNING)
        payment = self.payload_builder.build(
            selected,
            context.wallet,
            context.signer,
            resource=challenge.resource,
        )
        outcome.payment = payment

        outcome.advance(PurchaseState.SUBMITTING)
        paid = self.transport.get(
            url,
            {
                PAYMENT_SIGNATURE_HEADER: encode_header(payment.to_dict()),
                "X-WALLET-ADDRESS": context.wallet,
                "X-ASSET-TRANSFER-METHOD": method,
                "Accept": "text/markdown",
            },
        )
        if not paid.ok:
            raise UnexpectedStatus(paid.status_code, read_error(paid), context="Payment failed")
        confirmation = read_settlement_confirmation(paid)
        if confirmation is None or not confirmation.success:
            raise MissingSettlementConfirmation()

        rotated = paid.headers.get("X-PURCHASE-RECEIPT")
        if rotated:
            self.store.store_receipt(asset_id, context.wallet, rotated)
        self.store.mark_owned(asset_id, context.wallet)

        outcome.content = paid.content
        outcome.transaction = confirmation.transaction
        outcome.receipt = rotated
        outcome.expectation = SettlementExpectation.from_payload(payment, context.wallet)
        outcome.sequence = self._begin_cycle()
        outcome.advance(PurchaseState.SETTLED)
        outcome.message = "Asset acquired successfully."
        logging.info("Purchased %s (transaction %s)", asset_id, confirmation.transaction or "n/a")

        if not outcome.transaction:
            self._publish(
                VerificationView(phase=VerificationPhase.HIDDEN, sequence=outcome.sequence),
                only_if_current=True,
            )
            return

        self._publish(
            VerificationView(
                phase=VerificationPhase.PENDING,
                sequence=outcome.sequence,
                expected=outcome.expectation,
            ),
            only_if_current=True,
        )
        outcome.advance(PurchaseState.VERIFYING_SETTLEMENT)
        outcome.verification = self.executor.submit(
            self._verify_settlement,
            outcome,
            outcome.sequence,
            outcome.transaction,
            outcome.expectation,
        )

    def _verify_settlement(
        self,
        outcome: PurchaseOutcome,
        sequence: int,
        tx_reference: str,
        expectation: SettlementExpectation,
    ) -> SettlementResult:
        try:
            result = self.verifier.verify(tx_reference, expectation)
        except Exception as exc:  # noqa: BLE001
            logging.warning("Settlement verification for %s failed: %s", tx_reference, exc)
            result = SettlementResult(
                verified=False,
                expected=expectation,
                reason=UNVERIFIABLE_REASON,
            )

        if result.verified:
            view = VerificationView(
                phase=VerificationPhase.VERIFIED,
                sequence=sequence,
                expected=result.expected,
                actual=result.actual,
            )
        else:
            view = VerificationView(
                phase=VerificationPhase.WARN,
                sequence=sequence,
                reason=result.reason,
                expected=result.expected,
                actual=result.actual,
                pending_confirmation=result.pending,
            )
        if self._publish(view, only_if_current=True):
            outcome.advance(PurchaseState.VERIFIED if result.verified else PurchaseState.WARN)
        return result

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
