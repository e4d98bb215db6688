"""Configuration.

There are two kinds:

Network configuration
    The JSON document a CNI runtime passes on stdin. We read the
    ``ipam`` section from it; see :func:`load_netconf`.

Settings
    How to reach the store, and how to take part in the election.
    Read from the command line, the environment, and an optional YAML
    file, in that order of precedence; see :class:`Settings`.
"""

import ipaddress
import json
import logging
import os
import sys
from collections import namedtuple

import netifaces
import yaml

from ipamlib import store
from ipamlib.election import MASTER_TTL, REFRESH_INTERVAL
from ipamlib.exceptions import ConfigError, DecodeError


DEFAULT_CONFIG_FILE = '/etc/ipamd.yml'


NetConf = namedtuple('NetConf', ['name', 'cni_version', 'ipam'])
IPAMConfig = namedtuple(
    'IPAMConfig', ['type', 'subnet_range', 'gateway', 'store'])


def load_netconf(data, require_ipam=True):
    """Parse the network configuration.

    With ``require_ipam``, the ``ipam`` section and its
    ``subnet_range`` and ``gateway`` keys must be present. Release does
    not need them, so it can pass ``False``.
    """
    if isinstance(data, bytes):
        data = data.decode('utf-8')
    try:
        conf = json.loads(data) if data.strip() else {}
    except ValueError as e:
        raise DecodeError('failed to decode network config: %s' % e)
    if not isinstance(conf, dict):
        raise DecodeError('network config must be a JSON object')

    name = conf.get('name', '')
    version = conf.get('cniVersion', '')
    ipam = conf.get('ipam')

    if ipam is None:
        if require_ipam:
            raise ConfigError("config missing 'ipam' key")
        return NetConf(name, version, None)
    if not isinstance(ipam, dict):
        raise ConfigError("config key 'ipam' must be an object")

    if not ipam.get('subnet_range') and require_ipam:
        raise ConfigError("IPAM config missing 'subnet_range' key")

    gateway = ipam.get('gateway')
    if not gateway:
        if require_ipam:
            raise ConfigError("IPAM config missing 'gateway' key")
    else:
        try:
            gateway = ipaddress.IPv4Address(gateway)
        except ValueError:
            raise ConfigError('IPAM config has invalid gateway: %s' % gateway)

    return NetConf(name, version, IPAMConfig(
        type=ipam.get('type', ''),
        subnet_range=ipam.get('subnet_range'),
        gateway=gateway or None,
        store=ipam.get('store')))


def log_level(name):
    """Validate a level name, return it upper-cased."""
    name = str(name).upper()
    if not isinstance(logging.getLevelName(name), int):
        raise ValueError(name)
    return name


class Settings(object):
    """Process settings.

    store
        ``host:port`` of the local store.

    advertise
        ``host:port`` to publish in the master pointer. Only the
        daemon makes use of this.

    interface
        If ``advertise`` is not given, the host ip is taken from this
        network interface (or the ``HOST_IP`` environment variable).

    leases_key, master_key
        Key names in the store.

    master_ttl, refresh_interval
        Seconds the master pointer lives, and how often it is renewed.

    socket_timeout
        Seconds before a store command gives up; no timeout if unset.

    log_level
        Name of a :mod:`logging` level.
    """

    defaults = {
        'store': store.DEFAULT_ADDRESS,
        'advertise': None,
        'interface': 'eth0',
        'leases_key': store.LEASES_KEY,
        'master_key': store.MASTER_KEY,
        'master_ttl': MASTER_TTL,
        'refresh_interval': REFRESH_INTERVAL,
        'socket_timeout': None,
        'log_level': 'WARNING',
    }

    converters = {
        'master_ttl': int,
        'refresh_interval': float,
        'socket_timeout': float,
        'log_level': log_level,
    }

    def __init__(self, **values):
        unknown = set(values) - set(self.defaults)
        if unknown:
            raise ConfigError('unknown settings: %s' % ', '.join(sorted(unknown)))

        data = dict(self.defaults)
        data.update(values)
        for key, convert in self.converters.items():
            if data[key] is None:
                continue
            try:
                data[key] = convert(data[key])
            except (TypeError, ValueError):
                raise ConfigError('invalid value for %s: %r' % (key, data[key]))
        self.__dict__.update(data)

    @classmethod
    def load(cls, filename=None, environ=None, **overrides):
        """Merge defaults, the settings file, the environment and
        ``overrides`` (in ascending precedence). Overrides that are
        ``None`` are ignored, so click options can be passed through.
        """
        if environ is None:
            environ = os.environ

        values = cls.read_file(
            filename or environ.get('IPAM_CONFIG'),
            required=bool(filename or environ.get('IPAM_CONFIG')))
        for key in cls.defaults:
            envvar = 'IPAM_%s' % key.upper()
            if environ.get(envvar):
                values[key] = environ[envvar]
        values.update((k, v) for k, v in overrides.items() if v is not None)
        return cls(**values)

    @classmethod
    def read_file(cls, filename, required=False):
        if not filename:
            filename = DEFAULT_CONFIG_FILE
        if not os.path.exists(filename):
            if required:
                raise ConfigError('settings file not found: %s' % filename)
            return {}

        try:
            with open(filename, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError('cannot parse %s: %s' % (filename, e))

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError('%s must contain a mapping' % filename)
        return data

    def get_host_ip(self, environ=None):
        """Get IP from local interface."""
        if environ is None:
            environ = os.environ
        lan_ip = environ.get('HOST_IP')
        if lan_ip:
            return lan_ip

        try:
            return netifaces.ifaddresses(self.interface)[netifaces.AF_INET][0]['addr']
        except (ValueError, KeyError, IndexError):
            raise ConfigError(
                'Cannot determine host ip from %s, set HOST_IP environment '
                'variable' % self.interface)

    def get_advertise_address(self, environ=None):
        """What the daemon should publish as the master address."""
        if self.advertise:
            return self.advertise
        _, port = store.split_address(self.store)
        return '%s:%s' % (self.get_host_ip(environ), port)

    def create_store(self):
        return store.LeaseStore(
            self.store,
            leases_key=self.leases_key,
            master_key=self.master_key,
            socket_timeout=self.socket_timeout)


def setup_logging(level):
    """Log to stderr; stdout belongs to the CNI protocol."""
    logging.basicConfig(
        stream=sys.stderr, level=level,
        format='%(asctime)s %(name)s %(levelname)s: %(message)s')
