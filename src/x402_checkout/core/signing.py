"""
Signing capabilities used to authorise payments and wallet challenges.
"""

from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data

__all__ = ["LocalAccountSigner", "SigningCapability"]


@runtime_checkable
class SigningCapability(Protocol):
    """
    Anything able to sign on behalf of a wallet.

    Implementations raise :class:`~x402_checkout.core.errors.SigningRejected`
    when the wallet owner declines a prompt.
    """

    @property
    def address(self) -> str: ...

    def sign_typed_data(self, typed_data: Dict[str, Any]) -> str: ...

    def sign_message(self, text: str) -> str: ...


def _hex_signature(signature: bytes) -> str:
    return "0x" + bytes(signature).hex()


class LocalAccountSigner:
    """
    Signs with a private key held in-process.
    """

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        signable = encode_typed_data(full_message=typed_data)
        return _hex_signature(self._account.sign_message(signable).signature)

    def sign_message(self, text: str) -> str:
        signable = encode_defunct(text=text)
        return _hex_signature(self._account.sign_message(signable).signature)
