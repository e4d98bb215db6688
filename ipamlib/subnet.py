"""Parsing of the ``subnet_range`` configuration value.

Two formats are supported::

    10.0.0.0/8
        The whole subnet. The range starts at the given address, and
        ends at the same address with the last octet set to 254. This
        does not depend on the prefix length.

    10.0.0.100-10.0.0.200/24
        An explicit range. The prefix applies to the end address and
        gives the subnet; the start address is taken as-is.

Neither form checks that start and end actually lie within the subnet,
or that start comes before end. That is up to whoever writes the
network config.
"""

import ipaddress
from collections import namedtuple

from ipamlib.exceptions import ParseError


SubnetRange = namedtuple('SubnetRange', ['start', 'end', 'subnet'])


def parse_ip(text):
    try:
        return ipaddress.IPv4Address(text)
    except ValueError:
        raise ParseError('IP address', text)


def parse_cidr(text):
    """Return ``(address, network)`` for an ``addr/prefix`` string.

    Host bits may be set; the network is derived from the prefix.
    """
    # IPv4Interface would also take a bare address as a /32, and a
    # netmask or hostmask in place of the prefix length.
    _, slash, prefix = text.partition('/')
    if not slash or not (prefix.isascii() and prefix.isdigit()):
        raise ParseError('CIDR address', text)
    try:
        iface = ipaddress.IPv4Interface(text)
    except ValueError:
        raise ParseError('CIDR address', text)
    return iface.ip, iface.network


def parse_subnet_range(spec):
    """Parse ``spec`` into a :class:`SubnetRange`, or raise
    :class:`ParseError`.
    """
    parts = spec.split('-')
    if len(parts) == 1:
        ip, subnet = parse_cidr(parts[0])
        end = ipaddress.IPv4Address((int(ip) & ~0xff) | 254)
        return SubnetRange(ip, end, subnet)

    if len(parts) > 2 or '/' not in spec:
        raise ParseError(
            'subnet range', '%s; expect format 10.0.0.100-10.0.0.200/24' % spec)
    start = parse_ip(parts[0])
    end, subnet = parse_cidr(parts[1])
    return SubnetRange(start, end, subnet)
