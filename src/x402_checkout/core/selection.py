"""
Choosing one payment requirement out of a 402 challenge.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .errors import EmptyOffer, RecipientMismatch, UnsupportedTransferMethod
from .models import DEFAULT_TRANSFER_METHOD, PaymentRequirement, normalize_address

__all__ = ["SUPPORTED_TRANSFER_METHODS", "normalize_transfer_method", "select_payment_requirement"]

SUPPORTED_TRANSFER_METHODS = ("eip3009", "permit2")


def normalize_transfer_method(method: Optional[str]) -> str:
    value = str(method or DEFAULT_TRANSFER_METHOD).strip().lower()
    return "permit2" if value == "permit2" else DEFAULT_TRANSFER_METHOD


def select_payment_requirement(
    accepts: Sequence[PaymentRequirement],
    expected_seller: Optional[str] = None,
    preferred_method: Optional[str] = DEFAULT_TRANSFER_METHOD,
) -> PaymentRequirement:
    """
    Pick the offer to sign.

    When ``expected_seller`` is given, at least one offer must pay that
    address; otherwise :class:`RecipientMismatch` is raised and nothing may be
    signed. Offers are assumed to be ordered by server preference, so the first
    one using the preferred transfer method wins.
    """
    options = list(accepts or [])
    if not options:
        raise EmptyOffer()

    expected = normalize_address(expected_seller)
    seller_matches = [
        option for option in options if expected and normalize_address(option.pay_to) == expected
    ]
    if expected and not seller_matches:
        logging.warning(
            "Refusing payment offers: none pay the expected seller %s (offered: %s)",
            expected,
            ", ".join(sorted({option.pay_to for option in options})),
        )
        raise RecipientMismatch(expected)

    target = normalize_transfer_method(preferred_method)
    candidates = seller_matches or options
    for option in candidates:
        if option.transfer_method == target:
            return option

    raise UnsupportedTransferMethod(target, (option.transfer_method for option in candidates))
