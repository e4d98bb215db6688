"""Errors raised by the allocator, the lease store and the elector.

Everything derives from :class:`IPAMError`, so callers that only care
about "did it work" can catch a single type. The CNI adapter maps each
class to a protocol error code.
"""


class IPAMError(Exception):
    """Base class for all errors of this package."""


class ConfigError(IPAMError):
    """A required configuration field is missing or invalid.

    Raised before any backend access is attempted.
    """


class DecodeError(ConfigError):
    """The network configuration is not valid JSON."""


class ParseError(IPAMError):
    """Malformed subnet range text.

    ``kind`` names the type of input that failed to parse, like
    ``"CIDR address"``; ``text`` is the offending input.
    """

    def __init__(self, kind, text):
        IPAMError.__init__(self, 'invalid %s: %s' % (kind, text))
        self.kind = kind
        self.text = text


class BackendUnavailable(IPAMError):
    """The key-value backend could not be reached."""


class InvalidLease(IPAMError):
    """The lease table holds something other than an IPv4 address for
    ``id``.
    """

    def __init__(self, id, value):
        IPAMError.__init__(self, 'invalid lease %s -> %r' % (id, value))
        self.id = id
        self.value = value


class PoolExhausted(IPAMError):
    """No eligible address is left in the range."""

    def __init__(self, message='no available IPs'):
        IPAMError.__init__(self, message)


class MasterDiscoveryError(IPAMError):
    """Probing or claiming the master pointer failed at startup.

    This is fatal; the store cannot be used.
    """


class NotImplementedCommand(IPAMError):
    """A CNI verb we do not support."""

    def __init__(self, message='not implemented'):
        IPAMError.__init__(self, message)
