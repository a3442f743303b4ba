"""
Minimal script that uses the public API to buy one asset.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, Tuple

from x402_checkout import ConfigError, PurchaseState, load_checkout_config, purchase_asset


def _override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    return key.strip(), val


def _build_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    return {key: value for key, value in pairs if key}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Buy an x402-priced asset using the SDK API")
    parser.add_argument("asset_id", help="Identifier of the asset to buy")
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing X402_* settings",
    )
    parser.add_argument(
        "--set",
        action="append",
        type=_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument(
        "--api-base",
        help="Override the marketplace API base URL (default: http://localhost:3000/api)",
    )
    parser.add_argument(
        "--expected-seller",
        help="Refuse to pay any offer whose recipient is not this address",
    )
    parser.add_argument(
        "--permit2",
        action="store_true",
        help="Pay through Permit2 instead of an EIP-3009 authorization",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    try:
        config = load_checkout_config(
            env_file=args.env_file,
            overrides=_build_overrides(args.set or ()),
            api_base=args.api_base,
        )
    except (ConfigError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    outcome = purchase_asset(
        args.asset_id,
        config=config,
        expected_seller=args.expected_seller,
        preferred_method="permit2" if args.permit2 else None,
    )
    if outcome.state is PurchaseState.FAILED:
        logging.error("%s", outcome.message)
        return 1

    logging.info("%s (%d bytes)", outcome.message, len(outcome.content or b""))
    if outcome.verification is not None:
        result = outcome.verification.result()
        logging.info("Settlement verified: %s", result.verified if result.verified else result.reason)
    return 0


if __name__ == "__main__":
    sys.exit(main())
