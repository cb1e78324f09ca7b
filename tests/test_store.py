"""Tests for the customer record store and its typed filters."""

from datetime import datetime

import pytest

from app.registry.db import build_engine, create_tables, make_sessionmaker
from app.registry.modules.customers.store import (
    AnyOf,
    CustomerStore,
    Eq,
    ILike,
    In,
    NewCustomer,
    Range,
    StoreError,
    birth_day_pattern,
    birth_month_pattern,
)
from sheets import national_ids


@pytest.fixture()
def store(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path/'store.db'}")
    create_tables(engine)
    s = make_sessionmaker(engine)()
    try:
        yield CustomerStore(s)
    finally:
        s.close()
        engine.dispose()


def _new(name, nid, *, phone="11999999999", phone2=None, birth="1990-01-15"):
    return NewCustomer(
        full_name=name,
        national_id=nid,
        age=30,
        phone_primary=phone,
        phone_secondary=phone2,
        birth_date=birth,
    )


def _seed(store):
    ids = national_ids(4)
    store.insert(
        [
            _new("Carla", ids[0], phone="11911110000", birth="1985-03-02"),
            _new("Ana", ids[1], phone="21922220000", phone2="2133334444", birth="1990-03-20"),
            _new("Bruno", ids[2], phone="31933330000", birth="1979-12-03"),
            _new("Davi", ids[3], phone="41944440000", birth="2001-03-02"),
        ]
    )
    return ids


def test_insert_assigns_id_and_created_at(store):
    (c,) = store.insert([_new("Ana", national_ids(1)[0])])
    assert c.id and len(c.id) == 32
    assert isinstance(c.created_at, datetime)
    assert store.get(c.id).full_name == "Ana"


def test_insert_empty_is_noop(store):
    assert store.insert([]) == []
    assert store.count() == 0


def test_duplicate_national_id_fails_whole_batch(store):
    ids = national_ids(3)
    store.insert([_new("Ana", ids[0])])
    with pytest.raises(StoreError) as exc:
        store.insert([_new("Bia", ids[1]), _new("Ana again", ids[0]), _new("Caio", ids[2])])
    assert "already registered" in str(exc.value)
    # all or nothing; the session stays usable after the rollback
    assert store.count() == 1
    store.insert([_new("Bia", ids[1])])
    assert store.count() == 2


def test_select_orders_by_name_by_default(store):
    _seed(store)
    names = [c.full_name for c in store.select()]
    assert names == ["Ana", "Bruno", "Carla", "Davi"]
    assert [c.full_name for c in store.select(order_by=("birth_date",))] == ["Bruno", "Carla", "Ana", "Davi"]
    assert len(store.select(limit=2)) == 2


def test_eq_and_in(store):
    ids = _seed(store)
    assert [c.full_name for c in store.select(Eq("national_id", ids[2]))] == ["Bruno"]
    rows = store.select(In("national_id", [ids[0], ids[3], "00000000000"]))
    assert sorted(c.full_name for c in rows) == ["Carla", "Davi"]
    assert store.select(In("national_id", [])) == []


def test_any_of_matches_either_phone_column(store):
    _seed(store)
    rows = store.select(AnyOf(Eq("phone_primary", "2133334444"), Eq("phone_secondary", "2133334444")))
    assert [c.full_name for c in rows] == ["Ana"]
    rows = store.select(AnyOf(In("phone_primary", ["11911110000"]), In("phone_secondary", ["2133334444"])))
    assert sorted(c.full_name for c in rows) == ["Ana", "Carla"]


def test_ilike_birth_patterns(store):
    _seed(store)
    march = store.select(ILike("birth_date", birth_month_pattern(3)))
    assert sorted(c.full_name for c in march) == ["Ana", "Carla", "Davi"]
    # "-03-" must not match the day part of 1979-12-03
    assert "Bruno" not in {c.full_name for c in march}
    assert store.count(ILike("birth_date", birth_day_pattern(3, 2))) == 2
    assert store.count(ILike("full_name", "ANA")) == 1


def test_range_is_half_open(store):
    _seed(store)
    assert store.count(Range("birth_date", gte="1985-03-02")) == 3
    assert store.count(Range("birth_date", lt="1985-03-02")) == 1
    assert store.count(Range("birth_date", gte="1985-03-02", lt="2001-03-02")) == 2
    with pytest.raises(ValueError):
        Range("birth_date").compile()


def test_unknown_field_rejected(store):
    with pytest.raises(ValueError):
        store.select(Eq("password", "x"))


def test_delete(store):
    (c,) = store.insert([_new("Ana", national_ids(1)[0])])
    assert store.delete(c.id) is True
    assert store.get(c.id) is None
    assert store.delete(c.id) is False


def test_month_pattern_bounds():
    assert birth_month_pattern(1) == "%-01-%"
    assert birth_day_pattern(12, 5) == "%-12-05"
    with pytest.raises(ValueError):
        birth_month_pattern(13)
    with pytest.raises(ValueError):
        birth_day_pattern(2, 0)
