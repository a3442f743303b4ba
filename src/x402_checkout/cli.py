"""
Command-line interface for exercising the x402 checkout flows.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, Optional, Sequence, Tuple

import requests

from .api import build_context, create_orchestrator, create_verifier
from .core.config import CheckoutConfig, ConfigError, load_checkout_config
from .core.errors import CheckoutError
from .core.models import SettlementExpectation, SettlementResult, parse_amount
from .core.orchestrator import PurchaseOutcome, PurchaseState
from .core.settlement import format_micro_usdc
from .core.storage import EntitlementStore


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def _env_override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _collect_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, value in pairs:
        overrides[key] = value
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="x402-checkout",
        description="Buy, re-download and verify x402-priced assets",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing X402_* settings (default: .env)",
    )
    parser.add_argument(
        "--set",
        action="append",
        type=_env_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    purchase = commands.add_parser("purchase", help="Buy an asset, restoring it if already owned")
    purchase.add_argument("asset_id")
    purchase.add_argument("--expected-seller", default=None, help="Only pay offers to this address")
    purchase.add_argument(
        "--method",
        choices=("eip3009", "permit2"),
        default=None,
        help="Preferred transfer method (default: X402_TRANSFER_METHOD)",
    )
    purchase.add_argument("--output", "-o", default=None, help="Write the delivered content to this file")
    purchase.add_argument(
        "--wait",
        action="store_true",
        help=(
            "Report the on-chain settlement check. Without it the check still runs "
            "in the background and the process exits once it finishes"
        ),
    )

    redownload = commands.add_parser("redownload", help="Re-download an asset you already own")
    redownload.add_argument("asset_id")
    redownload.add_argument("--output", "-o", default=None, help="Write the delivered content to this file")
    redownload.add_argument(
        "--creator",
        action="store_true",
        help="Attempt access as the asset's creator even without a stored receipt",
    )

    verify = commands.add_parser("verify", help="Check a settlement transaction on chain")
    verify.add_argument("tx_hash")
    verify.add_argument("--token", required=True, help="ERC-20 contract that should have moved")
    verify.add_argument("--pay-to", required=True, help="Expected recipient")
    verify.add_argument("--payer", default=None, help="Expected sender (default: configured wallet)")
    verify.add_argument("--amount", default=None, help="Minimum amount in the token's smallest unit")

    commands.add_parser("owned", help="List stored purchase receipts for the configured wallet")
    return parser


def _write_content(outcome: PurchaseOutcome, output: Optional[str]) -> None:
    if outcome.content is None:
        return
    if output:
        with open(output, "wb") as handle:
            handle.write(outcome.content)
        logging.info("Wrote %d bytes to %s", len(outcome.content), output)
    else:
        sys.stdout.buffer.write(outcome.content)
        sys.stdout.flush()


def _log_verification(result: SettlementResult) -> None:
    expected = result.expected
    if result.verified and result.actual is not None:
        logging.info(
            "Settlement verified: %s from %s to %s",
            format_micro_usdc(result.actual.amount),
            result.actual.sender,
            result.actual.recipient,
        )
        return
    logging.warning(
        "Settlement not verified: %s (expected %s to %s)",
        result.reason,
        format_micro_usdc(expected.amount),
        expected.pay_to,
    )


def _run_purchase(config: CheckoutConfig, args: argparse.Namespace) -> int:
    orchestrator = create_orchestrator(config=config, session=requests.Session())
    try:
        context = build_context(
            config,
            expected_seller=args.expected_seller,
            preferred_method=args.method,
        )
        outcome = orchestrator.purchase(args.asset_id, context)
        if outcome.state is PurchaseState.FAILED:
            logging.error("%s", outcome.message)
            return 1

        logging.info("%s", outcome.message)
        _write_content(outcome, args.output)
        if outcome.transaction:
            logging.info("Settlement transaction: %s", outcome.transaction)
        if outcome.verification is not None:
            if args.wait:
                _log_verification(outcome.verification.result())
            elif not outcome.verification.done():
                logging.info("Settlement verification continues in the background; exit waits for it to finish")
        return 0
    finally:
        orchestrator.shutdown(wait=args.wait)


def _run_redownload(config: CheckoutConfig, args: argparse.Namespace) -> int:
    orchestrator = create_orchestrator(config=config, session=requests.Session())
    try:
        context = build_context(config, has_creator_access=args.creator)
        outcome = orchestrator.download_owned(args.asset_id, context)
        if outcome.state is PurchaseState.FAILED:
            logging.error("%s", outcome.message)
            return 1
        logging.info("%s", outcome.message)
        _write_content(outcome, args.output)
        return 0
    finally:
        orchestrator.shutdown(wait=False)


def _run_verify(config: CheckoutConfig, args: argparse.Namespace) -> int:
    amount = None
    if args.amount is not None:
        amount = parse_amount(args.amount)
        if amount is None:
            logging.error("--amount must be an integer amount in the token's smallest unit")
            return 1
    expected = SettlementExpectation(
        token=args.token,
        pay_to=args.pay_to,
        payer=args.payer or config.payer_address,
        amount=amount,
        network=config.network,
    )
    result = create_verifier(config).verify(args.tx_hash, expected)
    _log_verification(result)
    return 0 if result.verified else 1


def _run_owned(config: CheckoutConfig) -> int:
    wallet = config.require_wallet()
    proofs = EntitlementStore(config.store_path).collect_stored_proofs(wallet)
    if not proofs:
        logging.info("No stored receipts for %s", wallet)
        return 0
    for proof in proofs:
        print(proof["asset_id"])
    return 0


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    overrides = _collect_overrides(args.set or ())

    try:
        config = load_checkout_config(env_file=args.env_file, overrides=overrides)
    except (ConfigError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    try:
        if args.command == "purchase":
            return _run_purchase(config, args)
        if args.command == "redownload":
            return _run_redownload(config, args)
        if args.command == "verify":
            return _run_verify(config, args)
        return _run_owned(config)
    except ConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1
    except CheckoutError as exc:
        logging.error("%s", exc)
        return 1
    except Exception as exc:  # noqa: BLE001
        logging.error("%s failed: %s", args.command, exc)
        return 1


def main() -> None:
    raise SystemExit(run_cli())
