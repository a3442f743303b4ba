"""
Durable storage for entitlement receipts and redownload sessions.

Receipts are keyed by (wallet, asset id) and never expire. Sessions are keyed
by wallet and dropped once expired. Wallet keys are always lower-cased so a
checksummed and a lower-case address share the same entry.
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .models import RedownloadSession

__all__ = ["EntitlementStore"]


def _wallet_key(wallet: Optional[str]) -> str:
    return str(wallet or "").strip().lower()


def _asset_key(asset_id: Optional[str]) -> str:
    return str(asset_id or "").strip()


def _now_ms() -> int:
    return int(time.time() * 1000)


class EntitlementStore:
    """
    Process-wide receipt and session table, optionally mirrored to a JSON file.

    Every write reloads the file first and only touches the key being written,
    so concurrent writers for different wallets do not clobber each other.
    """

    def __init__(
        self,
        path: Optional[str | os.PathLike[str]] = None,
        *,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.path = Path(path).expanduser() if path is not None else None
        self._clock_ms = clock_ms
        self._data: Dict[str, Dict[str, Any]] = {"receipts": {}, "sessions": {}, "owned": {}}
        self._reload()

    def _reload(self) -> None:
        if self.path is None:
            return
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        try:
            loaded = json.loads(raw)
        except json.JSONDecodeError:
            logging.warning("Ignoring unreadable entitlement store at %s", self.path)
            return
        if not isinstance(loaded, dict):
            return
        for section in self._data:
            value = loaded.get(section)
            if isinstance(value, dict):
                self._data[section] = value

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def _write(self, section: str, wallet: str, update: Callable[[Dict[str, Any]], None]) -> None:
        self._reload()
        bucket = dict(self._data[section].get(wallet) or {})
        update(bucket)
        if bucket:
            self._data[section][wallet] = bucket
        else:
            self._data[section].pop(wallet, None)
        self._flush()

    # Receipts

    def get_receipt(self, asset_id: str, wallet: str) -> Optional[str]:
        wallet_key, asset_key = _wallet_key(wallet), _asset_key(asset_id)
        if not wallet_key or not asset_key:
            return None
        receipt = (self._data["receipts"].get(wallet_key) or {}).get(asset_key)
        return str(receipt) if receipt else None

    def store_receipt(self, asset_id: str, wallet: str, receipt: str) -> bool:
        wallet_key, asset_key = _wallet_key(wallet), _asset_key(asset_id)
        if not wallet_key or not asset_key or not receipt:
            return False

        def update(bucket: Dict[str, Any]) -> None:
            bucket[asset_key] = str(receipt)

        self._write("receipts", wallet_key, update)
        return True

    def collect_stored_proofs(self, wallet: str) -> List[Dict[str, str]]:
        wallet_key = _wallet_key(wallet)
        receipts = self._data["receipts"].get(wallet_key) or {}
        return [
            {"asset_id": asset_id, "receipt": str(receipt)}
            for asset_id, receipt in sorted(receipts.items())
            if receipt
        ]

    # Ownership marks

    def mark_owned(self, asset_id: str, wallet: str) -> None:
        wallet_key, asset_key = _wallet_key(wallet), _asset_key(asset_id)
        if not wallet_key or not asset_key:
            return

        def update(bucket: Dict[str, Any]) -> None:
            bucket[asset_key] = True

        self._write("owned", wallet_key, update)

    def is_owned(self, asset_id: str, wallet: str) -> bool:
        owned = self._data["owned"].get(_wallet_key(wallet)) or {}
        return bool(owned.get(_asset_key(asset_id)))

    # Sessions

    def get_session(self, wallet: str) -> Optional[RedownloadSession]:
        raw = self._data["sessions"].get(_wallet_key(wallet))
        if not isinstance(raw, dict):
            return None
        token = str(raw.get("token") or "")
        try:
            expires_at_ms = int(raw.get("expiresAtMs") or 0)
        except (TypeError, ValueError):
            return None
        session = RedownloadSession(token=token, expires_at_ms=expires_at_ms)
        if not token or session.is_expired(self._clock_ms()):
            return None
        return session

    def store_session(self, wallet: str, session: RedownloadSession) -> None:
        wallet_key = _wallet_key(wallet)
        if not wallet_key:
            return
        self._reload()
        self._data["sessions"][wallet_key] = {
            "token": session.token,
            "expiresAtMs": int(session.expires_at_ms),
        }
        self._flush()

    def clear_session(self, wallet: str) -> None:
        self._reload()
        self._data["sessions"].pop(_wallet_key(wallet), None)
        self._flush()
