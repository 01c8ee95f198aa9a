from mentacare.cache import MISS, TTLCache


def test_fresh_entry_is_returned(cache):
    cache.set("patients_list:pageSize=10", {"patients": []}, ttl=300)
    assert cache.get("patients_list:pageSize=10") == {"patients": []}


def test_absent_key_is_miss(cache):
    assert cache.get("nope") is MISS


def test_entry_expires_once_ttl_has_elapsed(cache, clock):
    cache.set("k", "v", ttl=300)
    clock.advance(299.9)
    assert cache.get("k") == "v"
    clock.advance(0.1)
    assert cache.get("k") is MISS
    assert "k" not in cache


def test_falsy_payloads_are_hits(cache):
    cache.set("zero", 0, ttl=60)
    cache.set("empty", [], ttl=60)
    assert cache.get("zero") == 0
    assert cache.get("empty") == []


def test_invalidate_removes_only_matching_keys(cache):
    cache.set("patients_list:a", 1, ttl=60)
    cache.set("patient_abc", 2, ttl=60)
    cache.set("therapists_summary", 3, ttl=60)

    removed = cache.invalidate("patient")

    assert removed == 2
    assert cache.get("therapists_summary") == 3
    assert cache.get("patient_abc") is MISS


def test_invalidate_without_matches_is_noop(cache):
    cache.set("therapist_1", 1, ttl=60)
    assert cache.invalidate("session") == 0
    assert len(cache) == 1


def test_clear_drops_everything(cache):
    cache.set("a", 1, ttl=60)
    cache.set("b", 2, ttl=60)
    cache.clear()
    assert len(cache) == 0


def test_capacity_evicts_least_recently_used(clock):
    cache = TTLCache(max_entries=2, clock=clock)
    cache.set("a", 1, ttl=60)
    cache.set("b", 2, ttl=60)
    cache.get("a")
    cache.set("c", 3, ttl=60)

    assert cache.get("b") is MISS
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_get_or_fetch_calls_loader_once_per_ttl(cache, clock):
    calls = []

    def load():
        calls.append(1)
        return {"total": len(calls)}

    assert cache.get_or_fetch("patients_summary", load, ttl=600) == {"total": 1}
    assert cache.get_or_fetch("patients_summary", load, ttl=600) == {"total": 1}
    clock.advance(600)
    assert cache.get_or_fetch("patients_summary", load, ttl=600) == {"total": 2}
    assert len(calls) == 2
