"""
Configuration objects and helpers for the checkout client.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

from eth_account import Account
from eth_utils import is_hex_address, to_checksum_address

from .environment import build_environment
from .payloads import DEFAULT_PERMIT2_PROXY_ADDRESS
from .selection import SUPPORTED_TRANSFER_METHODS
from .settlement import BASE_MAINNET_NETWORK, DEFAULT_RPC_URL
from .signing import LocalAccountSigner
from .transport import DEFAULT_TIMEOUT_SECONDS

__all__ = [
    "CheckoutConfig",
    "CheckoutParameters",
    "ConfigError",
    "DEFAULT_STORE_PATH",
    "load_checkout_config",
]

DEFAULT_API_BASE = "http://localhost:3000/api"
DEFAULT_STORE_PATH = "~/.x402-checkout/entitlements.json"
_MEMORY_STORE_VALUES = {"none", "memory", ":memory:"}

_PARAMETER_TO_ENV_KEY = {
    "api_base": "X402_API_BASE",
    "rpc_url": "X402_RPC_URL",
    "network": "X402_NETWORK",
    "chain_id": "X402_CHAIN_ID",
    "payer_private_key": "X402_PAYER_PRIVATE_KEY",
    "payer_address": "X402_PAYER_ADDRESS",
    "expected_seller": "X402_EXPECTED_SELLER",
    "transfer_method": "X402_TRANSFER_METHOD",
    "request_timeout_seconds": "X402_REQUEST_TIMEOUT_SECONDS",
    "siwe_domain": "X402_SIWE_DOMAIN",
    "siwe_uri": "X402_SIWE_URI",
    "session_ttl_seconds": "X402_SESSION_TTL_SECONDS",
    "store_path": "X402_STORE_PATH",
    "permit2_proxy_address": "X402_PERMIT2_PROXY_ADDRESS",
}


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class CheckoutParameters:
    """
    Explicit parameter bundle for constructing :class:`CheckoutConfig`.

    Callers can either instantiate this helper or pass the individual keyword
    arguments directly to :func:`load_checkout_config`.
    """

    api_base: Optional[str] = None
    rpc_url: Optional[str] = None
    network: Optional[str] = None
    chain_id: Optional[int | str] = None
    payer_private_key: Optional[str] = None
    payer_address: Optional[str] = None
    expected_seller: Optional[str] = None
    transfer_method: Optional[str] = None
    request_timeout_seconds: Optional[float | int | str] = None
    siwe_domain: Optional[str] = None
    siwe_uri: Optional[str] = None
    session_ttl_seconds: Optional[int | str] = None
    store_path: Optional[str] = None
    permit2_proxy_address: Optional[str] = None

    def as_overrides(self) -> Dict[str, str]:
        overrides: Dict[str, str] = {}
        for field_name, env_key in _PARAMETER_TO_ENV_KEY.items():
            value = getattr(self, field_name)
            if value is None:
                continue
            overrides[env_key] = _stringify(value)
        return overrides


def _collect_parameter_overrides(
    parameters: Optional[CheckoutParameters],
    explicit: Mapping[str, Any],
) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    if parameters is not None:
        overrides.update(parameters.as_overrides())

    for key, value in explicit.items():
        if value is None:
            continue
        try:
            env_key = _PARAMETER_TO_ENV_KEY[key]
        except KeyError as exc:
            raise TypeError(f"Unknown checkout parameter '{key}'") from exc
        overrides[env_key] = _stringify(value)
    return overrides


class ConfigError(Exception):
    """Raised when the supplied configuration is invalid."""


def _normalize_private_key(raw_key: str) -> str:
    key = raw_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    if len(key) != 66:
        raise ConfigError("X402_PAYER_PRIVATE_KEY must be 32 bytes (64 hex chars)")
    return key


def _normalize_address(raw_address: str, field_name: str) -> str:
    value = raw_address.strip()
    if not value.startswith("0x"):
        value = "0x" + value
    if not is_hex_address(value):
        raise ConfigError(f"{field_name} is not a valid EVM address")
    return to_checksum_address(value)


def _parse_int(raw: str, field_name: str, *, minimum: int = 0) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer, got '{raw}'") from exc
    if value < minimum:
        raise ConfigError(f"{field_name} must be at least {minimum}")
    return value


def _parse_timeout(raw: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"X402_REQUEST_TIMEOUT_SECONDS must be a number, got '{raw}'") from exc
    if value <= 0:
        raise ConfigError("X402_REQUEST_TIMEOUT_SECONDS must be greater than zero")
    return value


def _parse_url(raw: str, field_name: str) -> str:
    value = raw.strip().rstrip("/")
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigError(f"{field_name} must be an absolute http(s) URL, got '{raw}'")
    return value


@dataclass(frozen=True)
class CheckoutConfig:
    api_base: str = DEFAULT_API_BASE
    rpc_url: str = DEFAULT_RPC_URL
    network: str = BASE_MAINNET_NETWORK
    chain_id: int = 8453
    payer_private_key: Optional[str] = None
    payer_address: Optional[str] = None
    expected_seller: Optional[str] = None
    transfer_method: str = "eip3009"
    request_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    siwe_domain: str = "localhost:3000"
    siwe_uri: str = "http://localhost:3000"
    session_ttl_seconds: int = 600
    store_path: Optional[Path] = None
    permit2_proxy_address: str = DEFAULT_PERMIT2_PROXY_ADDRESS

    @property
    def session_ttl_ms(self) -> int:
        return self.session_ttl_seconds * 1000

    def signer(self) -> LocalAccountSigner:
        """Return a local signer for the configured payer key."""
        if not self.payer_private_key:
            raise ConfigError("X402_PAYER_PRIVATE_KEY must be provided to sign payments")
        return LocalAccountSigner(self.payer_private_key)

    def require_wallet(self) -> str:
        if not self.payer_address:
            raise ConfigError("Set X402_PAYER_PRIVATE_KEY or X402_PAYER_ADDRESS to select a wallet")
        return self.payer_address

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "CheckoutConfig":
        def get(key: str) -> Optional[str]:
            value = values.get(key)
            if value is None or not str(value).strip():
                return None
            return str(value).strip()

        api_base = _parse_url(get("X402_API_BASE") or DEFAULT_API_BASE, "X402_API_BASE")
        api_parts = urlsplit(api_base)
        rpc_url = _parse_url(get("X402_RPC_URL") or DEFAULT_RPC_URL, "X402_RPC_URL")

        network = get("X402_NETWORK") or BASE_MAINNET_NETWORK
        chain_id = _parse_int(get("X402_CHAIN_ID") or "8453", "X402_CHAIN_ID", minimum=1)

        private_key = get("X402_PAYER_PRIVATE_KEY")
        payer_address = get("X402_PAYER_ADDRESS")
        if private_key is not None:
            private_key = _normalize_private_key(private_key)
            try:
                derived = Account.from_key(private_key).address
            except ValueError as exc:
                raise ConfigError("X402_PAYER_PRIVATE_KEY is not a valid secp256k1 key") from exc
            payer_address = payer_address or derived
        if payer_address is not None:
            payer_address = _normalize_address(payer_address, "X402_PAYER_ADDRESS")

        expected_seller = get("X402_EXPECTED_SELLER")
        if expected_seller is not None:
            expected_seller = _normalize_address(expected_seller, "X402_EXPECTED_SELLER")

        transfer_method = (get("X402_TRANSFER_METHOD") or "eip3009").lower()
        if transfer_method not in SUPPORTED_TRANSFER_METHODS:
            raise ConfigError(
                "X402_TRANSFER_METHOD must be one of "
                f"{', '.join(SUPPORTED_TRANSFER_METHODS)}, got '{transfer_method}'"
            )

        timeout = _parse_timeout(get("X402_REQUEST_TIMEOUT_SECONDS") or str(DEFAULT_TIMEOUT_SECONDS))
        session_ttl = _parse_int(
            get("X402_SESSION_TTL_SECONDS") or "600",
            "X402_SESSION_TTL_SECONDS",
            minimum=1,
        )

        store_raw = get("X402_STORE_PATH") or DEFAULT_STORE_PATH
        store_path = None if store_raw.lower() in _MEMORY_STORE_VALUES else Path(store_raw).expanduser()

        permit2_proxy = _normalize_address(
            get("X402_PERMIT2_PROXY_ADDRESS") or DEFAULT_PERMIT2_PROXY_ADDRESS,
            "X402_PERMIT2_PROXY_ADDRESS",
        )

        return cls(
            api_base=api_base,
            rpc_url=rpc_url,
            network=network,
            chain_id=chain_id,
            payer_private_key=private_key,
            payer_address=payer_address,
            expected_seller=expected_seller,
            transfer_method=transfer_method,
            request_timeout_seconds=timeout,
            siwe_domain=get("X402_SIWE_DOMAIN") or api_parts.netloc,
            siwe_uri=get("X402_SIWE_URI") or f"{api_parts.scheme}://{api_parts.netloc}",
            session_ttl_seconds=session_ttl,
            store_path=store_path,
            permit2_proxy_address=permit2_proxy,
        )

    @classmethod
    def from_env(
        cls,
        *,
        env_file: Optional[str] = ".env",
        overrides: Optional[Mapping[str, str]] = None,
        base: Optional[Mapping[str, str]] = None,
        parameters: Optional[CheckoutParameters] = None,
        **explicit: Any,
    ) -> "CheckoutConfig":
        parameter_overrides = _collect_parameter_overrides(parameters, explicit)
        merged_overrides = dict(overrides or {})
        merged_overrides.update(parameter_overrides)

        environment = build_environment(
            env_file=env_file,
            base=base,
            overrides=merged_overrides,
        )
        return cls.from_mapping(environment.variables)


def load_checkout_config(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[CheckoutParameters] = None,
    **explicit: Any,
) -> CheckoutConfig:
    """
    Convenience wrapper that mirrors :meth:`CheckoutConfig.from_env`.

    Keyword arguments use the :class:`CheckoutParameters` field names, e.g.
    ``load_checkout_config(api_base="https://example.com/api")``.
    """
    return CheckoutConfig.from_env(
        env_file=env_file,
        overrides=overrides,
        base=base,
        parameters=parameters,
        **explicit,
    )
