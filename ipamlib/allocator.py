"""First-fit address allocation on top of :class:`LeaseStore`."""

import ipaddress
import logging

from ipamlib.exceptions import InvalidLease, PoolExhausted
from ipamlib.subnet import parse_subnet_range


log = logging.getLogger(__name__)


# Network, gateway and broadcast, by convention.
RESERVED_SUFFIXES = frozenset([0, 1, 255])

MAX_ADDRESS = int(ipaddress.IPv4Address('255.255.255.255'))


def candidates(start, end):
    """Yield addresses from ``start`` up to, not including, ``end``.

    If ``end`` is lower than ``start``, this runs to the top of the
    address space and stops there; it does not wrap around.
    """
    value, stop = int(start), int(end)
    while value != stop:
        yield ipaddress.IPv4Address(value)
        if value == MAX_ADDRESS:
            return
        value += 1


def is_reserved(ip):
    return int(ip) & 0xff in RESERVED_SUFFIXES


class IPAllocator(object):
    """Hands out addresses to container ids, and takes them back.

    Both operations may be called concurrently, from threads or from
    other processes sharing the same store.
    """

    def __init__(self, store):
        self.store = store

    def lookup(self, id):
        """Return the address held by ``id``, or ``None``."""
        return self.store.get(id)

    def get_or_allocate(self, id, range_spec):
        """Return ``(ip, subnet)`` for the container ``id``.

        If ``id`` already has an address, that one is returned and
        nothing is written.
        """
        r = parse_subnet_range(range_spec)
        leases = self.store.read_all()
        if id in leases:
            return leases[id], r.subnet
        return self.allocate(id, r, leases), r.subnet

    def allocate(self, id, r, leases):
        """Reserve the lowest free address of range ``r``.

        ``leases`` is a snapshot of the table and only used to skip
        addresses we know to be taken; the decision for each candidate
        is made by the store, atomically.
        """
        taken = set(leases.values())
        for ip in candidates(r.start, r.end):
            if is_reserved(ip) or ip in taken:
                continue

            claimed = self.store.claim(id, ip)
            if claimed is None:
                log.debug('%s was taken concurrently, trying next', ip)
                continue
            if claimed != ip:
                log.info('%s was assigned %s concurrently', id, claimed)
            else:
                log.info('Assigned %s to %s', ip, id)
            return claimed

        raise PoolExhausted()

    def release(self, id):
        """Release the address of ``id``; a no-op if it has none.

        Returns the released address, if any. An entry that does not
        hold a valid address is removed as well, and ``None`` returned.
        """
        try:
            ip = self.store.get(id)
        except InvalidLease as e:
            log.warning('Releasing %s', e)
            self.store.delete(id)
            return None
        if ip is None:
            return None
        self.store.delete(id)
        log.info('Released %s from %s', ip, id)
        return ip
