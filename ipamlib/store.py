"""The lease table lives in a Redis-protocol key-value store.

Every host runs a local store instance, which is always reachable and
used for reads (the "slave" side). Writes go to whichever instance is
currently the master; until an elector tells us otherwise that is the
local one as well. See :mod:`ipamlib.election`.

Data layout:

``stellarproject.io/ips``
    A hash of container id -> dotted quad address.

``stellarproject.io/master``
    ``host:port`` of the current master, with a TTL.
"""

import contextlib
import ipaddress
import logging

import redis

from ipamlib.exceptions import IPAMError, BackendUnavailable, InvalidLease


log = logging.getLogger(__name__)


DEFAULT_PORT = 9300
DEFAULT_ADDRESS = '127.0.0.1:%d' % DEFAULT_PORT
LEASES_KEY = 'stellarproject.io/ips'
MASTER_KEY = 'stellarproject.io/master'
POOL_SIZE = 5


# Reserve ARGV[2] for ARGV[1], unless another container holds it already.
# If the container was given an address in the meantime, return that one.
CLAIM_SCRIPT = """
local current = redis.call('HGET', KEYS[1], ARGV[1])
if current then
    return current
end
for _, addr in ipairs(redis.call('HVALS', KEYS[1])) do
    if addr == ARGV[2] then
        return false
    end
end
redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
return ARGV[2]
"""


def split_address(address, default_port=DEFAULT_PORT):
    """Given ``host:port`` or ``host``, return a 2-tuple (host, port)."""
    if ':' in address:
        host, port = address.rsplit(':', 1)
        try:
            return host, int(port)
        except ValueError:
            raise IPAMError('invalid store address: %s' % address)
    return address, default_port


def parse_lease(id, value):
    try:
        return ipaddress.IPv4Address(value)
    except ValueError:
        raise InvalidLease(id, value)


@contextlib.contextmanager
def backend_errors(what):
    """Re-raise client library errors as our own."""
    try:
        yield
    except (redis.exceptions.ConnectionError,
            redis.exceptions.TimeoutError) as e:
        raise BackendUnavailable('%s: %s' % (what, e))
    except redis.exceptions.RedisError as e:
        raise IPAMError('%s: %s' % (what, e))


class LeaseStore(object):
    """Read and write access to the lease table.

    There is no global state here; whoever needs the store constructs
    one and passes it down. The two pools are dialed lazily, so
    creating a store does not touch the network.

    conn()
        A client for the local (slave) endpoint.

    rw_conn()
        A client for the current master endpoint.

    Clients are cheap: each command checks a connection out of the
    pool and returns it when done.
    """

    def __init__(self, address=DEFAULT_ADDRESS, leases_key=LEASES_KEY,
                 master_key=MASTER_KEY, socket_timeout=None):
        self.address = address
        self.master_address = address
        self.leases_key = leases_key
        self.master_key = master_key
        self.socket_timeout = socket_timeout

        self._slave = self.create_pool(address)
        self._master = self._slave

    def create_pool(self, address):
        host, port = split_address(address)
        return redis.ConnectionPool(
            host=host, port=port,
            max_connections=POOL_SIZE,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
            decode_responses=True)

    def connect(self, pool):
        return redis.Redis(connection_pool=pool)

    def conn(self):
        return self.connect(self._slave)

    def rw_conn(self):
        return self.connect(self._master)

    def use_master(self, address):
        """Send all further writes to ``address``.

        Only meant to be called once, at startup.
        """
        if address == self.master_address:
            return
        log.info('Using store master at %s', address)
        self._master = self.create_pool(address)
        self.master_address = address

    def close(self):
        if self._master is not self._slave:
            self._master.disconnect()
        self._slave.disconnect()

    #####
    # Master pointer

    def get_master(self):
        """Return the address in the master pointer, or ``None``."""
        with backend_errors('get master key'):
            return self.conn().get(self.master_key)

    def set_master(self, address, ttl, conn=None):
        with backend_errors('set master key with ttl'):
            (conn or self.conn()).set(self.master_key, address, ex=ttl)

    #####
    # Lease table

    def read_all(self):
        """Return the whole table as a dict of id -> IPv4Address."""
        with backend_errors('read leases'):
            values = self.conn().hgetall(self.leases_key)

        leases = {}
        for id, value in values.items():
            try:
                leases[id] = parse_lease(id, value)
            except InvalidLease as e:
                log.warning('Ignoring %s', e)
        return leases

    def get(self, id):
        """Return the address of ``id``, or ``None``.

        Raises :class:`InvalidLease` if the stored value is not an
        address.
        """
        with backend_errors('read lease'):
            value = self.conn().hget(self.leases_key, id)
        if value is None:
            return None
        return parse_lease(id, value)

    def set(self, id, ip):
        with backend_errors('write lease'):
            self.rw_conn().hset(self.leases_key, id, str(ip))

    def delete(self, id):
        with backend_errors('delete lease'):
            self.rw_conn().hdel(self.leases_key, id)

    def claim(self, id, ip):
        """Atomically reserve ``ip`` for ``id``.

        Returns the address ``id`` now holds: ``ip``, or a different
        one if it got an address concurrently. Returns ``None`` if
        ``ip`` belongs to someone else.
        Raises :class:`InvalidLease` if what ``id`` holds is not an
        address.
        """
        with backend_errors('claim lease'):
            conn = self.rw_conn()
            script = conn.register_script(CLAIM_SCRIPT)
            result = script(keys=[self.leases_key], args=[id, str(ip)])
        if result is None:
            return None
        return parse_lease(id, result)
