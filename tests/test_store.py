"""Unit tests for the in-process store, image storage and cache."""

from dataclasses import replace

import pytest

from qrgen.cache import LRUCache
from qrgen.errors import ShortCodeConflict
from qrgen.models import ImageFormat
from qrgen.store import CachedImageStorage, QRRecord, ShortCodeStore


def _record(rid="r1", **kw):
    kw.setdefault("mode", "dynamic")
    return QRRecord(id=rid, actor_id="u1", type="url", data={"url": "example.com"}, **kw)


def test_insert_binds_code_to_record():
    store = ShortCodeStore()
    stored = store.insert_short_code("abcd1234", _record())
    assert stored.short_code == "abcd1234"
    assert store.exists_short_code("abcd1234")
    assert store.resolve("abcd1234") == stored


def test_duplicate_insert_conflicts():
    store = ShortCodeStore()
    store.insert_short_code("abcd1234", _record("r1"))
    with pytest.raises(ShortCodeConflict):
        store.insert_short_code("abcd1234", _record("r2"))
    assert store.resolve("abcd1234").id == "r1"


def test_resolve_unknown_code():
    assert ShortCodeStore().resolve("nope") is None


def test_release_frees_the_code(tmp_path):
    path = tmp_path / "codes.json"
    store = ShortCodeStore(str(path))
    store.insert_short_code("abcd1234", _record())
    assert store.release("abcd1234") is True
    assert store.resolve("abcd1234") is None
    assert store.stats() == {"total_records": 0, "short_codes": 0}
    assert ShortCodeStore(str(path)).resolve("abcd1234") is None
    assert store.release("abcd1234") is False
    store.insert_short_code("abcd1234", _record("r2"))
    assert store.resolve("abcd1234").id == "r2"


def test_save_and_get():
    store = ShortCodeStore()
    record = _record(mode="static")
    store.save(record)
    store.save(replace(record, image_url="https://qr.example.com/api/qr/image/r1.png"))
    assert store.get("r1").image_url.endswith("r1.png")
    assert store.get("missing") is None


def test_json_persistence(tmp_path):
    path = tmp_path / "codes.json"
    store = ShortCodeStore(str(path))
    store.insert_short_code("abcd1234", _record(tags=["promo"]))
    reloaded = ShortCodeStore(str(path))
    assert reloaded.resolve("abcd1234").tags == ["promo"]
    assert reloaded.stats() == {"total_records": 1, "short_codes": 1}


def test_lru_evicts_least_recently_used():
    cache = LRUCache(max_entries=2)
    cache.put("a", b"1")
    cache.put("b", b"2")
    assert cache.get("a") == b"1"
    cache.put("c", b"3")
    assert "b" not in cache
    assert cache.get("a") == b"1"
    assert len(cache) == 2


def test_lru_evict():
    cache = LRUCache()
    cache.put("a", b"1")
    assert cache.evict("a")
    assert not cache.evict("a")
    assert cache.get("a") is None


def test_lru_rejects_zero_capacity():
    with pytest.raises(ValueError):
        LRUCache(0)


def test_image_storage_url_convention():
    storage = CachedImageStorage(LRUCache(), "https://qr.example.com/")
    url = storage.put("abc", ImageFormat.SVG, b"<svg/>")
    assert url == "https://qr.example.com/api/qr/image/abc.svg"
    assert storage.get("abc") == b"<svg/>"
