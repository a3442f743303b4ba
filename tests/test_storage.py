import json

from conftest import BUYER, NOW_MS, OTHER

from x402_checkout.core.models import RedownloadSession
from x402_checkout.core.storage import EntitlementStore


def test_receipts_are_keyed_by_lowercase_wallet():
    store = EntitlementStore()
    checksummed = "0xAbCdEf0123456789abcdef0123456789ABCDEF01"
    assert store.store_receipt("asset-1", checksummed, "r1")

    assert store.get_receipt("asset-1", checksummed.lower()) == "r1"
    assert store.get_receipt("asset-1", OTHER) is None
    assert store.collect_stored_proofs(checksummed) == [{"asset_id": "asset-1", "receipt": "r1"}]


def test_blank_receipts_are_not_stored():
    store = EntitlementStore()
    assert not store.store_receipt("asset-1", BUYER, "")
    assert not store.store_receipt("", BUYER, "r1")
    assert store.collect_stored_proofs(BUYER) == []


def test_sessions_expire(clock_ms):
    store = EntitlementStore(clock_ms=clock_ms)
    store.store_session(BUYER, RedownloadSession(token="t1", expires_at_ms=NOW_MS + 1000))
    assert store.get_session(BUYER) == RedownloadSession("t1", NOW_MS + 1000)
    assert store.get_session(OTHER) is None

    clock_ms.state["now"] = NOW_MS + 1000
    assert store.get_session(BUYER) is None


def test_clear_session_only_touches_one_wallet(clock_ms):
    store = EntitlementStore(clock_ms=clock_ms)
    store.store_session(BUYER, RedownloadSession("t1", NOW_MS + 5000))
    store.store_session(OTHER, RedownloadSession("t2", NOW_MS + 5000))
    store.clear_session(BUYER)

    assert store.get_session(BUYER) is None
    assert store.get_session(OTHER).token == "t2"


def test_file_store_round_trips_and_merges(tmp_path):
    path = tmp_path / "nested" / "entitlements.json"
    first = EntitlementStore(path)
    second = EntitlementStore(path)

    first.store_receipt("asset-1", BUYER, "r1")
    second.store_receipt("asset-2", OTHER, "r2")
    second.mark_owned("asset-2", OTHER)

    reloaded = EntitlementStore(path)
    assert reloaded.get_receipt("asset-1", BUYER) == "r1"
    assert reloaded.get_receipt("asset-2", OTHER) == "r2"
    assert reloaded.is_owned("asset-2", OTHER)
    assert not reloaded.is_owned("asset-1", BUYER)

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert set(stored) == {"receipts", "sessions", "owned"}


def test_unreadable_file_is_ignored(tmp_path):
    path = tmp_path / "entitlements.json"
    path.write_text("{not json", encoding="utf-8")
    store = EntitlementStore(path)
    assert store.get_receipt("asset-1", BUYER) is None
    store.store_receipt("asset-1", BUYER, "r1")
    assert EntitlementStore(path).get_receipt("asset-1", BUYER) == "r1"
