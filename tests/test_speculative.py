import pytest

from taskledger.client.speculative import SpeculativeCache


def test_rollback_restores_exact_snapshot():
    cache = SpeculativeCache({"t1": {"status": "New", "tags": ["urgent"]}})

    cache.apply("op1", "t1", lambda t: {**t, "status": "Deferred"})
    assert cache.get("t1")["status"] == "Deferred"
    assert cache.pending == ["op1"]

    cache.rollback("op1")
    assert cache.get("t1") == {"status": "New", "tags": ["urgent"]}
    assert cache.pending == []


def test_update_cannot_mutate_the_snapshot():
    cache = SpeculativeCache({"t1": {"tags": ["a"]}})

    def add_tag(t):
        t["tags"].append("b")
        return t

    cache.apply("op", "t1", add_tag)
    cache.rollback("op")
    assert cache.get("t1") == {"tags": ["a"]}


def test_rollback_of_new_key_removes_it():
    cache = SpeculativeCache()
    cache.apply("op", "t9", lambda _: {"status": "New"})
    cache.rollback("op")
    assert cache.get("t9") is None


def test_commit_keeps_value_or_takes_server_copy():
    cache = SpeculativeCache({"t1": {"status": "New"}})
    cache.apply("op", "t1", lambda t: {**t, "status": "Deferred"})
    cache.commit("op", {"status": "Deferred", "updated_at": "x"})
    assert cache.get("t1") == {"status": "Deferred", "updated_at": "x"}
    assert cache.pending == []


def test_same_operation_twice_is_refused():
    cache = SpeculativeCache({"t1": {}})
    cache.apply("op", "t1", dict)
    with pytest.raises(ValueError):
        cache.apply("op", "t1", dict)


def test_speculate_context_rolls_back_on_error():
    cache = SpeculativeCache({"t1": {"status": "New"}})

    with pytest.raises(RuntimeError):
        with cache.speculate("op", "t1", lambda t: {**t, "status": "Deferred"}) as value:
            assert value["status"] == "Deferred"
            raise RuntimeError("server said no")

    assert cache.get("t1") == {"status": "New"}

    with cache.speculate("op", "t1", lambda t: {**t, "status": "Deferred"}):
        pass
    assert cache.get("t1") == {"status": "Deferred"}
