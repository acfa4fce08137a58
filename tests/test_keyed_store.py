import pytest

from lib.keyed_store import InMemoryKeyedStore, KeyedStore


def test_set_get_delete():
    store = InMemoryKeyedStore()
    store.set('a', 1)
    assert store.get('a') == 1
    assert 'a' in store
    assert store.delete('a') is True
    assert store.delete('a') is False
    assert store.get('a') is None


def test_ttl_expiry(fake_clock):
    store = InMemoryKeyedStore(clock=fake_clock)
    store.set('short', 'x', ttl=10)
    store.set('forever', 'y')

    fake_clock.advance(10)

    assert store.get('short') is None
    assert store.get('forever') == 'y'
    assert store.keys() == ['forever']


def test_default_ttl(fake_clock):
    store = InMemoryKeyedStore(default_ttl=5, clock=fake_clock)
    store.set('k', 'v')
    fake_clock.advance(4)
    assert store.get('k') == 'v'
    fake_clock.advance(1)
    assert store.get('k') is None


def test_expire_resets_deadline(fake_clock):
    store = InMemoryKeyedStore(clock=fake_clock)
    store.set('k', 'v', ttl=10)
    fake_clock.advance(8)
    assert store.expire('k', 10) is True
    fake_clock.advance(8)
    assert store.get('k') == 'v'
    assert store.expire('missing', 10) is False


def test_set_purges_expired_entries(fake_clock):
    store = InMemoryKeyedStore(clock=fake_clock)
    store.set('old', 1, ttl=1)
    fake_clock.advance(2)
    store.set('new', 2)
    assert len(store) == 1


def test_partial_backend_cannot_be_instantiated():
    class GetOnly(KeyedStore):
        def get(self, key):
            return None

    with pytest.raises(TypeError):
        GetOnly()
