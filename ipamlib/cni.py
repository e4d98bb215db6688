"""The CNI IPAM plugin.

The container runtime executes us once per operation. The verb is in
``CNI_COMMAND``, the container in ``CNI_CONTAINERID``, and the network
configuration arrives as JSON on stdin, for example::

    {
        "name": "mynet",
        "cniVersion": "0.4.0",
        "ipam": {
            "type": "redis-ipam",
            "subnet_range": "10.0.0.100-10.0.0.200/24",
            "gateway": "10.0.0.1"
        }
    }

Results and errors are written to stdout as JSON; on error the exit
status is 1. Log output goes to stderr.
"""

import json
import logging

import click

from ipamlib.allocator import IPAllocator
from ipamlib.config import Settings, load_netconf, setup_logging
from ipamlib.election import MasterElector
from ipamlib.exceptions import (
    IPAMError, ConfigError, DecodeError, ParseError, BackendUnavailable,
    PoolExhausted, MasterDiscoveryError, NotImplementedCommand)


log = logging.getLogger(__name__)


SUPPORTED_VERSIONS = ['0.1.0', '0.2.0', '0.3.0', '0.3.1', '0.4.0', '1.0.0']
CURRENT_VERSION = '1.0.0'
LEGACY_VERSIONS = ('0.1.0', '0.2.0')

# Error codes, as defined by CNI, plus our own in the
# plugin-specific range starting at 100.
ERR_INCOMPATIBLE_VERSION = 1
ERR_INVALID_ENVIRONMENT = 4
ERR_DECODE = 6
ERR_INVALID_CONFIG = 7
ERR_TRY_AGAIN_LATER = 11
ERR_POOL_EXHAUSTED = 100
ERR_NOT_IMPLEMENTED = 101
ERR_INTERNAL = 999


class CNIError(Exception):
    """An error with a CNI error code attached."""

    def __init__(self, code, msg, details=''):
        Exception.__init__(self, msg)
        self.code = code
        self.msg = msg
        self.details = details


def error_code(exc):
    """Map one of our exceptions to a CNI error code."""
    if isinstance(exc, DecodeError):
        return ERR_DECODE
    if isinstance(exc, (ConfigError, ParseError)):
        return ERR_INVALID_CONFIG
    if isinstance(exc, (BackendUnavailable, MasterDiscoveryError)):
        return ERR_TRY_AGAIN_LATER
    if isinstance(exc, PoolExhausted):
        return ERR_POOL_EXHAUSTED
    if isinstance(exc, NotImplementedCommand):
        return ERR_NOT_IMPLEMENTED
    return ERR_INTERNAL


def build_result(version, ip, subnet, gateway):
    """Construct the ADD result in the shape ``version`` expects.

    The container gets ``ip`` with the netmask of ``subnet``, and a
    default route via ``gateway``.
    """
    address = '%s/%s' % (ip, subnet.prefixlen)
    route = {'dst': '0.0.0.0/0', 'gw': str(gateway)}

    if version in LEGACY_VERSIONS:
        return {
            'cniVersion': version,
            'ip4': {
                'ip': address,
                'gateway': str(gateway),
                'routes': [route],
            },
            'dns': {},
        }

    ipconfig = {'address': address, 'gateway': str(gateway)}
    if version != CURRENT_VERSION:
        # Dropped from the result format in 1.0.0
        ipconfig['version'] = '4'
    return {
        'cniVersion': version,
        'ips': [ipconfig],
        'routes': [route],
        'dns': {},
    }


def open_allocator(settings):
    """Return ``(store, allocator)``; the caller closes the store.

    We never claim mastership from a plugin invocation, we only
    discover it; holding it is the daemon's job.
    """
    store = settings.create_store()
    try:
        MasterElector(store)
    except IPAMError:
        store.close()
        raise
    return store, IPAllocator(store)


def cmd_add(container_id, netconf, settings):
    store, allocator = open_allocator(settings)
    try:
        ip, subnet = allocator.get_or_allocate(
            container_id, netconf.ipam.subnet_range)
    finally:
        store.close()
    return build_result(
        netconf.cni_version or CURRENT_VERSION, ip, subnet,
        netconf.ipam.gateway)


def cmd_del(container_id, netconf, settings):
    store, allocator = open_allocator(settings)
    try:
        allocator.release(container_id)
    finally:
        store.close()


def cmd_get(container_id, netconf, settings):
    raise NotImplementedCommand()


def cmd_version():
    return {
        'cniVersion': CURRENT_VERSION,
        'supportedVersions': SUPPORTED_VERSIONS,
    }


COMMANDS = {
    'ADD': (cmd_add, True),
    'DEL': (cmd_del, False),
    'GET': (cmd_get, False),
    'CHECK': (cmd_get, False),
}


def dispatch(command, container_id, stdin_data, environ=None):
    """Run one plugin invocation, return the result to print (or
    ``None``). Raises :class:`CNIError` or :class:`IPAMError`.
    """
    if not command:
        raise CNIError(
            ERR_INVALID_ENVIRONMENT, 'required env variables [CNI_COMMAND] missing')
    command = command.upper()
    if command == 'VERSION':
        return cmd_version()
    if command not in COMMANDS:
        raise CNIError(
            ERR_INVALID_ENVIRONMENT, 'unknown CNI_COMMAND: %s' % command)
    if not container_id:
        raise CNIError(
            ERR_INVALID_ENVIRONMENT,
            'required env variables [CNI_CONTAINERID] missing')

    func, needs_ipam = COMMANDS[command]
    netconf = load_netconf(stdin_data, require_ipam=needs_ipam)
    if netconf.cni_version and netconf.cni_version not in SUPPORTED_VERSIONS:
        raise CNIError(
            ERR_INCOMPATIBLE_VERSION,
            'incompatible CNI versions; config is "%s", plugin supports %s' % (
                netconf.cni_version, SUPPORTED_VERSIONS))

    settings = Settings.load(
        environ=environ, store=netconf.ipam.store if netconf.ipam else None)
    setup_logging(settings.log_level)
    log.debug('%s %s', command, container_id)
    return func(container_id, netconf, settings)


def error_version(stdin_data):
    """The cniVersion to report an error under."""
    try:
        return load_netconf(stdin_data, require_ipam=False).cni_version \
            or CURRENT_VERSION
    except IPAMError:
        return CURRENT_VERSION


@click.command()
@click.option('--command', envvar='CNI_COMMAND')
@click.option('--container-id', envvar='CNI_CONTAINERID')
@click.pass_context
def cli(ctx, command, container_id):
    stdin_data = click.get_text_stream('stdin').read()
    try:
        result = dispatch(command, container_id, stdin_data)
    except (CNIError, IPAMError) as e:
        if isinstance(e, CNIError):
            code, msg, details = e.code, e.msg, e.details
        else:
            code, msg, details = error_code(e), str(e), ''
        click.echo(json.dumps({
            'cniVersion': error_version(stdin_data),
            'code': code,
            'msg': msg,
            'details': details,
        }, indent=4))
        ctx.exit(1)

    if result is not None:
        click.echo(json.dumps(result, indent=4))


def run():
    cli()


if __name__ == '__main__':
    run()
