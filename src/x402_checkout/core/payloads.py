"""
Helpers for constructing signed x402 payment payloads.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable, Dict, Mapping, Optional

from hexbytes import HexBytes

from .errors import SigningCapabilityError, SigningError
from .models import PaymentPayload, PaymentRequirement, normalize_address
from .signing import SigningCapability

__all__ = [
    "DEFAULT_PERMIT2_PROXY_ADDRESS",
    "PERMIT2_ADDRESS",
    "PaymentPayloadBuilder",
    "build_eip3009_typed_data",
    "build_permit2_typed_data",
    "chain_id_from_network",
]

# Canonical Permit2 deployment, identical on every EVM chain.
PERMIT2_ADDRESS = "0x000000000022D473030F116dDEE9F6B43aC78BA3"
DEFAULT_PERMIT2_PROXY_ADDRESS = "0xB6FD384A0626BfeF85f3dBaf5223Dd964684B09E"
VALID_AFTER_BACKDATE_SECONDS = 600


def chain_id_from_network(network: str) -> Optional[int]:
    """Return the numeric chain id of a CAIP-2 ``eip155:<id>`` network."""
    namespace, _, reference = str(network or "").partition(":")
    if namespace != "eip155" or not reference.isdigit():
        return None
    return int(reference)


def build_eip3009_typed_data(
    requirement: PaymentRequirement,
    *,
    payer: str,
    chain_id: int,
    valid_after: int,
    valid_before: int,
    nonce: bytes,
) -> Dict[str, Any]:
    """
    Construct the ERC-3009 TransferWithAuthorization typed data.
    """
    extra = requirement.extra or {}
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "TransferWithAuthorization": [
                {"name": "from", "type": "address"},
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "validAfter", "type": "uint256"},
                {"name": "validBefore", "type": "uint256"},
                {"name": "nonce", "type": "bytes32"},
            ],
        },
        "primaryType": "TransferWithAuthorization",
        "domain": {
            "name": str(extra.get("name") or "USD Coin"),
            "version": str(extra.get("version") or "2"),
            "chainId": chain_id,
            "verifyingContract": normalize_address(requirement.asset),
        },
        "message": {
            "from": payer,
            "to": normalize_address(requirement.pay_to),
            "value": requirement.amount,
            "validAfter": valid_after,
            "validBefore": valid_before,
            "nonce": HexBytes(nonce),
        },
    }


def build_permit2_typed_data(
    requirement: PaymentRequirement,
    *,
    spender: str,
    chain_id: int,
    nonce: int,
    deadline: int,
    valid_after: int,
) -> Dict[str, Any]:
    """
    Construct the Permit2 PermitWitnessTransferFrom typed data.

    The witness binds the recipient so the proxy cannot redirect funds.
    """
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "PermitWitnessTransferFrom": [
                {"name": "permitted", "type": "TokenPermissions"},
                {"name": "spender", "type": "address"},
                {"name": "nonce", "type": "uint256"},
                {"name": "deadline", "type": "uint256"},
                {"name": "witness", "type": "Witness"},
            ],
            "TokenPermissions": [
                {"name": "token", "type": "address"},
                {"name": "amount", "type": "uint256"},
            ],
            "Witness": [
                {"name": "to", "type": "address"},
                {"name": "validAfter", "type": "uint256"},
                {"name": "extra", "type": "bytes"},
            ],
        },
        "primaryType": "PermitWitnessTransferFrom",
        "domain": {
            "name": "Permit2",
            "chainId": chain_id,
            "verifyingContract": PERMIT2_ADDRESS,
        },
        "message": {
            "permitted": {
                "token": normalize_address(requirement.asset),
                "amount": requirement.amount,
            },
            "spender": spender,
            "nonce": nonce,
            "deadline": deadline,
            "witness": {
                "to": normalize_address(requirement.pay_to),
                "validAfter": valid_after,
                "extra": b"",
            },
        },
    }


def _sign(signer: SigningCapability, typed_data: Dict[str, Any]) -> str:
    try:
        return signer.sign_typed_data(typed_data)
    except SigningError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise SigningCapabilityError(str(exc) or exc.__class__.__name__) from exc


class PaymentPayloadBuilder:
    """
    Turns a selected requirement into a signed :class:`PaymentPayload`.

    Amount and recipient are copied from the requirement as-is; the builder
    never adjusts them.
    """

    def __init__(
        self,
        *,
        chain_id: Optional[int] = None,
        permit2_spender: str = DEFAULT_PERMIT2_PROXY_ADDRESS,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        self.chain_id = chain_id
        self.permit2_spender = permit2_spender
        self._clock = clock
        self._nonce_factory = nonce_factory

    def _chain_id(self, requirement: PaymentRequirement) -> int:
        chain_id = chain_id_from_network(requirement.network) or self.chain_id
        if chain_id is None:
            raise ValueError(f"Cannot derive a chain id from network {requirement.network!r}")
        return chain_id

    def build(
        self,
        selected: PaymentRequirement,
        wallet: str,
        signer: SigningCapability,
        *,
        resource: Optional[Mapping[str, Any]] = None,
    ) -> PaymentPayload:
        payer = normalize_address(wallet)
        if payer is None:
            raise ValueError(f"{wallet!r} is not a valid EVM address")

        if selected.transfer_method == "permit2":
            body = self._build_permit2(selected, payer, signer)
        else:
            body = self._build_eip3009(selected, payer, signer)

        logging.info(
            "Signed %s authorization for %s units of %s to %s",
            selected.transfer_method,
            selected.amount,
            selected.asset,
            selected.pay_to,
        )
        return PaymentPayload(accepted=selected, payload=body, resource=resource)

    def _build_eip3009(
        self,
        selected: PaymentRequirement,
        payer: str,
        signer: SigningCapability,
    ) -> Dict[str, Any]:
        now = int(self._clock())
        nonce_bytes = self._nonce_factory(32)
        valid_after = now - VALID_AFTER_BACKDATE_SECONDS
        valid_before = now + selected.max_timeout_seconds
        typed_data = build_eip3009_typed_data(
            selected,
            payer=payer,
            chain_id=self._chain_id(selected),
            valid_after=valid_after,
            valid_before=valid_before,
            nonce=nonce_bytes,
        )
        signature = _sign(signer, typed_data)
        return {
            "signature": signature,
            "authorization": {
                "from": payer,
                "to": selected.pay_to,
                "value": str(selected.amount),
                "validAfter": str(valid_after),
                "validBefore": str(valid_before),
                "nonce": "0x" + bytes(nonce_bytes).hex(),
            },
        }

    def _build_permit2(
        self,
        selected: PaymentRequirement,
        payer: str,
        signer: SigningCapability,
    ) -> Dict[str, Any]:
        now = int(self._clock())
        nonce = int.from_bytes(self._nonce_factory(32), "big")
        deadline = now + selected.max_timeout_seconds
        valid_after = now - VALID_AFTER_BACKDATE_SECONDS
        spender = normalize_address((selected.extra or {}).get("spender")) or self.permit2_spender
        typed_data = build_permit2_typed_data(
            selected,
            spender=spender,
            chain_id=self._chain_id(selected),
            nonce=nonce,
            deadline=deadline,
            valid_after=valid_after,
        )
        signature = _sign(signer, typed_data)
        return {
            "signature": signature,
            "permit2Authorization": {
                "from": payer,
                "permitted": {"token": selected.asset, "amount": str(selected.amount)},
                "spender": spender,
                "nonce": str(nonce),
                "deadline": str(deadline),
                "witness": {
                    "to": selected.pay_to,
                    "validAfter": str(valid_after),
                    "extra": "0x",
                },
            },
        }
