from ipaddress import IPv4Address, IPv4Network
import threading

import mock
import pytest

from ipamlib.allocator import IPAllocator, candidates, is_reserved
from ipamlib.exceptions import (
    PoolExhausted, ParseError, BackendUnavailable, InvalidLease)
from ipamlib.store import LEASES_KEY


@pytest.fixture
def allocator(store):
    return IPAllocator(store)


def ip(s):
    return IPv4Address(s)


class TestCandidates(object):

    def test_end_exclusive(self):
        assert list(candidates(ip('10.0.0.1'), ip('10.0.0.4'))) == [
            ip('10.0.0.1'), ip('10.0.0.2'), ip('10.0.0.3')]

    def test_carry(self):
        assert list(candidates(ip('10.0.0.254'), ip('10.0.1.1'))) == [
            ip('10.0.0.254'), ip('10.0.0.255'), ip('10.0.1.0')]

    def test_empty(self):
        assert list(candidates(ip('10.0.0.5'), ip('10.0.0.5'))) == []

    def test_no_wraparound(self):
        """Runs to the top of the address space, not past it."""
        assert list(candidates(ip('255.255.255.253'), ip('0.0.0.1'))) == [
            ip('255.255.255.253'), ip('255.255.255.254'), ip('255.255.255.255')]

    def test_reserved(self):
        assert is_reserved(ip('10.0.0.0'))
        assert is_reserved(ip('10.0.0.1'))
        assert is_reserved(ip('10.0.0.255'))
        assert not is_reserved(ip('10.0.0.2'))
        assert not is_reserved(ip('10.0.1.254'))


class TestAllocate(object):

    def test_first_fit(self, allocator, local):
        """The first address of the range, skipping .0 and .1."""
        address, subnet = allocator.get_or_allocate('a', '10.100.0.0/24')
        assert address == ip('10.100.0.2')
        assert subnet == IPv4Network('10.100.0.0/24')
        assert local.data[LEASES_KEY] == {'a': '10.100.0.2'}

    def test_explicit_range(self, allocator):
        address, subnet = allocator.get_or_allocate(
            'a', '10.100.0.100-10.100.0.200/24')
        assert address == ip('10.100.0.100')
        assert subnet == IPv4Network('10.100.0.0/24')

    def test_skips_leased(self, allocator, local):
        local.data[LEASES_KEY] = {'b': '10.100.0.2', 'c': '10.100.0.3'}
        address, _ = allocator.get_or_allocate('a', '10.100.0.1/24')
        assert address == ip('10.100.0.4')

    def test_distinct(self, allocator):
        a, _ = allocator.get_or_allocate('a', '10.100.0.1/24')
        b, _ = allocator.get_or_allocate('b', '10.100.0.1/24')
        assert a != b

    def test_idempotent(self, allocator, local):
        """A second call returns the same address, and writes nothing."""
        first, _ = allocator.get_or_allocate('a', '10.100.0.1/24')
        writes = local.count('claim')
        second, subnet = allocator.get_or_allocate('a', '10.100.0.1/24')
        assert first == second
        assert subnet == IPv4Network('10.100.0.0/24')
        assert local.count('claim') == writes
        assert local.data[LEASES_KEY] == {'a': str(first)}

    def test_skips_reserved_across_octets(self, allocator, local):
        """.255, .0 and .1 are skipped when the range spans octets."""
        local.data[LEASES_KEY] = {'b': '10.100.0.254'}
        address, _ = allocator.get_or_allocate('a', '10.100.0.254-10.100.1.10/16')
        assert address == ip('10.100.1.2')

    def test_exhausted(self, allocator, local):
        """A /30 whose only usable address is leased already."""
        local.data[LEASES_KEY] = {'b': '10.0.0.2'}
        with pytest.raises(PoolExhausted) as excinfo:
            allocator.get_or_allocate('a', '10.0.0.2-10.0.0.3/30')
        assert str(excinfo.value) == 'no available IPs'
        assert local.data[LEASES_KEY] == {'b': '10.0.0.2'}

    def test_exhausted_only_reserved(self, allocator):
        with pytest.raises(PoolExhausted):
            allocator.get_or_allocate('a', '10.0.0.255-10.0.1.2/16')

    def test_parse_error(self, allocator, local):
        with pytest.raises(ParseError):
            allocator.get_or_allocate('a', '1.2.3.4-254/24')
        assert local.commands == []

    def test_backend_down(self, allocator, local):
        local.down = True
        with pytest.raises(BackendUnavailable):
            allocator.get_or_allocate('a', '10.100.0.1/24')

    def test_id_holds_garbage(self, allocator, local):
        local.data[LEASES_KEY] = {'a': 'garbage'}
        with pytest.raises(InvalidLease):
            allocator.get_or_allocate('a', '10.100.0.1/24')
        assert local.data[LEASES_KEY] == {'a': 'garbage'}

    def test_lost_race(self, allocator, store, local):
        """An address taken after the snapshot was read is skipped."""
        real_read_all = store.read_all

        def read_all():
            leases = real_read_all()
            local.data.setdefault(LEASES_KEY, {})['b'] = '10.100.0.2'
            return leases

        with mock.patch.object(store, 'read_all', read_all):
            address, _ = allocator.get_or_allocate('a', '10.100.0.1/24')
        assert address == ip('10.100.0.3')
        assert local.data[LEASES_KEY] == {'a': '10.100.0.3', 'b': '10.100.0.2'}

    def test_concurrent_same_id(self, allocator, store, local):
        """If the id got an address after the snapshot, that one is
        returned and no second lease is created."""
        real_read_all = store.read_all

        def read_all():
            leases = real_read_all()
            local.data.setdefault(LEASES_KEY, {})['a'] = '10.100.0.9'
            return leases

        with mock.patch.object(store, 'read_all', read_all):
            address, _ = allocator.get_or_allocate('a', '10.100.0.1/24')
        assert address == ip('10.100.0.9')
        assert local.data[LEASES_KEY] == {'a': '10.100.0.9'}

    def test_concurrent_distinct(self, allocator, store, local):
        """N callers that all read the same empty table still get
        N different addresses."""
        count = 8
        barrier = threading.Barrier(count)
        real_read_all = store.read_all

        def read_all():
            leases = real_read_all()
            barrier.wait(timeout=5)
            return leases

        results = {}
        errors = []

        def worker(id):
            try:
                results[id] = allocator.get_or_allocate(id, '10.100.0.1/24')[0]
            except Exception as e:
                errors.append(e)

        with mock.patch.object(store, 'read_all', read_all):
            threads = [threading.Thread(target=worker, args=('c%d' % i,))
                       for i in range(count)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(10)

        assert errors == []
        assert len(results) == count
        assert len(set(results.values())) == count
        assert sorted(results.values()) == [
            ip('10.100.0.%d' % i) for i in range(2, 2 + count)]
        assert len(local.data[LEASES_KEY]) == count

    def test_writes_go_to_master(self, allocator, store, servers, local):
        store.use_master('10.0.0.9:9300')
        allocator.get_or_allocate('a', '10.100.0.1/24')
        assert LEASES_KEY not in local.data
        assert servers['10.0.0.9:9300'].data[LEASES_KEY] == {'a': '10.100.0.2'}


class TestRelease(object):

    def test_release(self, allocator, local):
        address, _ = allocator.get_or_allocate('a', '10.100.0.1/24')
        assert allocator.release('a') == address
        assert local.data[LEASES_KEY] == {}
        assert allocator.lookup('a') is None

    def test_release_unknown(self, allocator, local):
        """Releasing what was never allocated is a no-op."""
        assert allocator.release('nope') is None
        assert local.count('hdel') == 0

    def test_release_garbage(self, allocator, local):
        """An entry that is not an address can still be released."""
        local.data[LEASES_KEY] = {'a': 'garbage', 'b': '10.100.0.2'}
        assert allocator.release('a') is None
        assert local.data[LEASES_KEY] == {'b': '10.100.0.2'}

    def test_release_twice(self, allocator):
        allocator.get_or_allocate('a', '10.100.0.1/24')
        allocator.release('a')
        assert allocator.release('a') is None

    def test_reallocate(self, allocator):
        """A released address is the next first-fit candidate."""
        allocator.get_or_allocate('a', '10.100.0.1/24')
        b, _ = allocator.get_or_allocate('b', '10.100.0.1/24')
        allocator.get_or_allocate('c', '10.100.0.1/24')

        allocator.release('b')
        d, _ = allocator.get_or_allocate('d', '10.100.0.1/24')
        assert d == b

    def test_lookup(self, allocator):
        address, _ = allocator.get_or_allocate('a', '10.100.0.1/24')
        assert allocator.lookup('a') == address
