import threading

import mock
import pytest
import redis

from ipamlib.config import Settings
from ipamlib.store import LeaseStore, CLAIM_SCRIPT


class FakeServer(object):
    """Stands in for one store endpoint. Keeps its data in memory, and
    records the commands it receives.

    Set ``down`` to make every command fail as if the connection was
    refused.
    """

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.commands = []
        self.down = False
        self.lock = threading.Lock()

    def disconnect(self):
        pass

    def count(self, name):
        return len([c for c in self.commands if c[0] == name])


class FakeScript(object):

    def __init__(self, client, script):
        assert script == CLAIM_SCRIPT
        self.client = client

    def __call__(self, keys=(), args=(), client=None):
        return self.client.execute('claim', keys[0], *args)


class FakeRedis(object):
    """The part of the ``redis.Redis`` API that the store uses."""

    def __init__(self, server):
        self.server = server

    def execute(self, name, *args):
        server = self.server
        with server.lock:
            if server.down:
                raise redis.exceptions.ConnectionError(
                    'Error 111 connecting. Connection refused.')
            server.commands.append((name,) + args)
            return getattr(self, '_' + name)(server.data, *args)

    def register_script(self, script):
        return FakeScript(self, script)

    def get(self, key):
        return self.execute('get', key)

    def set(self, key, value, ex=None):
        return self.execute('set', key, value, ex)

    def hgetall(self, key):
        return self.execute('hgetall', key)

    def hget(self, key, field):
        return self.execute('hget', key, field)

    def hset(self, key, field, value):
        return self.execute('hset', key, field, value)

    def hdel(self, key, field):
        return self.execute('hdel', key, field)

    def _get(self, data, key):
        return data.get(key)

    def _set(self, data, key, value, ex):
        self.server.ttls[key] = ex
        data[key] = value
        return True

    def _hgetall(self, data, key):
        return dict(data.get(key, {}))

    def _hget(self, data, key, field):
        return data.get(key, {}).get(field)

    def _hset(self, data, key, field, value):
        data.setdefault(key, {})[field] = value
        return 1

    def _hdel(self, data, key, field):
        return 1 if data.get(key, {}).pop(field, None) is not None else 0

    def _claim(self, data, key, id, ip):
        table = data.setdefault(key, {})
        if id in table:
            return table[id]
        if ip in table.values():
            return None
        table[id] = ip
        return ip


class MemoryStore(LeaseStore):
    """A :class:`LeaseStore` whose pools are :class:`FakeServer`
    instances, looked up by address in ``servers``.
    """

    def __init__(self, servers, *a, **kw):
        self.servers = servers
        LeaseStore.__init__(self, *a, **kw)

    def create_pool(self, address):
        return self.servers.setdefault(address, FakeServer())

    def connect(self, pool):
        return FakeRedis(pool)


@pytest.fixture
def servers():
    """All fake store endpoints, by address."""
    return {}


@pytest.fixture
def local(servers):
    """The fake store at the default local address."""
    return servers.setdefault('127.0.0.1:9300', FakeServer())


@pytest.fixture
def store(servers, local):
    store = MemoryStore(servers)
    yield store
    store.close()


@pytest.fixture
def memory_settings(request, servers, local):
    """Make every :class:`Settings` create in-memory stores.
    """
    patcher = mock.patch.object(
        Settings, 'create_store',
        lambda self: MemoryStore(
            servers, self.store,
            leases_key=self.leases_key, master_key=self.master_key))
    patcher.start()
    request.addfinalizer(patcher.stop)
    return servers
