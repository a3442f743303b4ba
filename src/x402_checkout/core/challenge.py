"""
Sign-in-with-Ethereum style challenge messages.

The verifying server rebuilds the same text from the request headers, so the
field set and ordering here must not change.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import ChallengeMessage

__all__ = [
    "CHALLENGE_TTL",
    "build_asset_action_message",
    "build_scoped_message",
    "challenge_nonce",
]

CHALLENGE_TTL = timedelta(minutes=5)
NONCE_LENGTH = 16
STATEMENT = "Authenticate wallet ownership for PULL.md. No token transfer or approval."


def challenge_nonce(seed: str) -> str:
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:NONCE_LENGTH]


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _render(
    *,
    domain: str,
    uri: str,
    chain_id: Optional[int],
    wallet: str,
    nonce: str,
    timestamp_ms: int,
    request_id: str,
    resources: list[str],
) -> str:
    issued_at = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    lines = [
        f"{domain or ''} wants you to sign in with your Ethereum account:",
        str(wallet or "").lower(),
        "",
        STATEMENT,
        "",
        f"URI: {uri or ''}",
        "Version: 1",
        f"Chain ID: {chain_id if chain_id else ''}",
        f"Nonce: {nonce}",
        f"Issued At: {_iso(issued_at)}",
        f"Expiration Time: {_iso(issued_at + CHALLENGE_TTL)}",
        f"Request ID: {request_id}",
        "Resources:",
    ]
    lines.extend(f"- {urn}" for urn in resources)
    return "\n".join(lines)


def build_scoped_message(
    *,
    domain: str,
    uri: str,
    chain_id: Optional[int],
    wallet: str,
    scope: str,
    action: str,
    timestamp_ms: int,
) -> ChallengeMessage:
    """Build a challenge scoped to an action over a named scope (e.g. ``session``)."""
    ts = int(timestamp_ms)
    scope = str(scope or "")
    action = str(action or "")
    nonce = challenge_nonce(f"{scope}|{action}|{ts}")
    text = _render(
        domain=domain,
        uri=uri,
        chain_id=chain_id,
        wallet=wallet,
        nonce=nonce,
        timestamp_ms=ts,
        request_id=f"{action or scope}:{scope}",
        resources=[f"urn:pullmd:action:{action}", f"urn:pullmd:scope:{scope}"],
    )
    return ChallengeMessage(text=text, timestamp=ts, nonce=nonce)


def build_asset_action_message(
    *,
    domain: str,
    uri: str,
    chain_id: Optional[int],
    wallet: str,
    asset_id: Optional[str],
    action: str,
    timestamp_ms: int,
) -> ChallengeMessage:
    """Build a challenge bound to a single asset (``*`` when no asset is given)."""
    ts = int(timestamp_ms)
    asset = str(asset_id or "*")
    action = str(action or "")
    nonce = challenge_nonce(f"{asset}|{action}|{ts}")
    text = _render(
        domain=domain,
        uri=uri,
        chain_id=chain_id,
        wallet=wallet,
        nonce=nonce,
        timestamp_ms=ts,
        request_id=f"{action or 'auth'}:{asset}",
        resources=[f"urn:pullmd:action:{action}", f"urn:pullmd:asset:{asset}"],
    )
    return ChallengeMessage(text=text, timestamp=ts, nonce=nonce)
