"""
Re-access to already-owned assets without paying twice.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Union

import requests

from .challenge import build_scoped_message
from .errors import SigningCapabilityError, SigningError, UnexpectedStatus
from .models import ReacquireResult, RedownloadSession
from .signing import SigningCapability
from .storage import EntitlementStore
from .transport import CheckoutTransport, read_error, read_settlement_confirmation

__all__ = ["AUTH_REQUIRED_STATUSES", "DEFAULT_SESSION_TTL_MS", "EntitlementSessionManager"]

AUTH_REQUIRED_STATUSES = frozenset({401, 402})
DEFAULT_SESSION_TTL_MS = 10 * 60 * 1000

RECEIPT_HEADER = "X-PURCHASE-RECEIPT"
SESSION_HEADER = "X-REDOWNLOAD-SESSION"
WALLET_HEADER = "X-WALLET-ADDRESS"

CreatorAccess = Union[bool, Callable[[str], bool]]


def _now_ms() -> int:
    return int(time.time() * 1000)


class EntitlementSessionManager:
    """
    Two-tier re-access: a passive retry with stored proof, then one signed
    session exchange when the server asks for authentication.
    """

    def __init__(
        self,
        transport: CheckoutTransport,
        store: EntitlementStore,
        *,
        challenge_domain: str,
        challenge_uri: str,
        chain_id: int,
        clock_ms: Callable[[], int] = _now_ms,
        session_ttl_ms: int = DEFAULT_SESSION_TTL_MS,
    ) -> None:
        self.transport = transport
        self.store = store
        self.challenge_domain = challenge_domain
        self.challenge_uri = challenge_uri
        self.chain_id = chain_id
        self._clock_ms = clock_ms
        self.session_ttl_ms = session_ttl_ms

    def ensure_session(self, wallet: str, signer: SigningCapability) -> RedownloadSession:
        existing = self.store.get_session(wallet)
        if existing is not None:
            return existing

        challenge = build_scoped_message(
            domain=self.challenge_domain,
            uri=self.challenge_uri,
            chain_id=self.chain_id,
            wallet=wallet,
            scope="session",
            action="session",
            timestamp_ms=self._clock_ms(),
        )
        try:
            signature = signer.sign_message(challenge.text)
        except SigningError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise SigningCapabilityError(str(exc) or exc.__class__.__name__) from exc

        logging.info("Exchanging signed wallet challenge for a redownload session")
        response = self.transport.get(
            self.transport.session_url(),
            {
                WALLET_HEADER: wallet,
                "X-AUTH-SIGNATURE": signature,
                "X-AUTH-TIMESTAMP": str(challenge.timestamp),
                "Accept": "application/json",
            },
        )
        if not response.ok:
            raise UnexpectedStatus(
                response.status_code,
                read_error(response),
                context="Session authentication failed",
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        token = response.headers.get(SESSION_HEADER) or body.get("token")
        if not token:
            raise UnexpectedStatus(response.status_code, "Session response did not include a token")
        try:
            expires_at_ms = int(body["expires_at_ms"])
        except (KeyError, TypeError, ValueError):
            expires_at_ms = self._clock_ms() + self.session_ttl_ms

        session = RedownloadSession(token=str(token), expires_at_ms=expires_at_ms)
        self.store.store_session(wallet, session)
        return session

    def _download_headers(
        self,
        wallet: str,
        receipt: Optional[str],
        session: Optional[RedownloadSession] = None,
    ) -> Dict[str, str]:
        headers = {WALLET_HEADER: wallet, "Accept": "text/markdown"}
        if receipt:
            headers[RECEIPT_HEADER] = receipt
        if session is None:
            # Looked up per request against the wallet being served.
            session = self.store.get_session(wallet)
        if session is not None:
            headers[SESSION_HEADER] = session.token
        return headers

    def _deliver(self, asset_id: str, wallet: str, response: requests.Response) -> ReacquireResult:
        confirmation = read_settlement_confirmation(response)
        rotated = response.headers.get(RECEIPT_HEADER)
        if rotated:
            self.store.store_receipt(asset_id, wallet, rotated)
        return ReacquireResult(
            ok=True,
            content=response.content,
            transaction=confirmation.transaction if confirmation else None,
            receipt=rotated or self.store.get_receipt(asset_id, wallet),
        )

    def attempt_reacquire(
        self,
        asset_id: str,
        wallet: str,
        signer: SigningCapability,
        *,
        has_creator_access: CreatorAccess = False,
    ) -> ReacquireResult:
        if not wallet or signer is None:
            return ReacquireResult(ok=False, requires_payment=True)

        receipt = self.store.get_receipt(asset_id, wallet)
        created = has_creator_access(asset_id) if callable(has_creator_access) else bool(has_creator_access)
        if not receipt and not created:
            return ReacquireResult(ok=False, requires_payment=True)

        url = self.transport.asset_download_url(asset_id)
        passive_headers = self._download_headers(wallet, receipt)
        passive = self.transport.get(url, passive_headers)
        if passive.ok:
            logging.info("Restored %s from stored entitlement", asset_id)
            return self._deliver(asset_id, wallet, passive)
        if passive.status_code not in AUTH_REQUIRED_STATUSES:
            raise UnexpectedStatus(passive.status_code, read_error(passive), context="Re-download failed")

        logging.info(
            "Passive re-download of %s returned %s; requesting a wallet session",
            asset_id,
            passive.status_code,
        )
        if SESSION_HEADER in passive_headers:
            # The server no longer honours the cached token.
            self.store.clear_session(wallet)
        # Attached as issued; the server judges its expiry, not the local clock.
        fresh = self.ensure_session(wallet, signer)

        signed = self.transport.get(url, self._download_headers(wallet, receipt, fresh))
        if signed.ok:
            logging.info("Restored %s after wallet re-authentication", asset_id)
            return self._deliver(asset_id, wallet, signed)
        if signed.status_code in AUTH_REQUIRED_STATUSES:
            return ReacquireResult(ok=False, requires_payment=True)
        raise UnexpectedStatus(signed.status_code, read_error(signed), context="Re-download failed")

    def collect_stored_proofs(self, wallet: str) -> List[Dict[str, str]]:
        return self.store.collect_stored_proofs(wallet)
