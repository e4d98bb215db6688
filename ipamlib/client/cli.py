#!/usr/bin/env python
"""``ipamctl``: look at and fix up the lease table by hand."""

import sys

import click
from clint.textui import puts, indent, colored

from ipamlib.allocator import IPAllocator
from ipamlib.config import Settings, setup_logging
from ipamlib.election import MasterElector
from ipamlib.exceptions import IPAMError


def echo(s):
    click.echo(s, nl=False)


def say(s):
    """Like :func:`puts`, but through click so output can be captured."""
    puts(s, stream=echo)


class App(object):
    """Holds the settings and opens stores for the commands."""

    def __init__(self, settings):
        self.settings = settings

    def store(self, elect=False):
        """Return a new store; with ``elect``, writes are routed to
        the current master.
        """
        store = self.settings.create_store()
        if elect:
            try:
                MasterElector(store)
            except IPAMError:
                store.close()
                raise
        return store


@click.group()
@click.option('--config', 'config_file', help='YAML settings file')
@click.option('--store', help='Local store address, host:port')
@click.option('--debug', is_flag=True)
@click.pass_context
def main(ctx, config_file, store, debug):
    try:
        settings = Settings.load(
            config_file, store=store, log_level='DEBUG' if debug else None)
    except IPAMError as e:
        raise click.ClickException(str(e))
    setup_logging(settings.log_level)
    ctx.obj = App(settings)


@main.command()
@click.pass_obj
def leases(app):
    """List all leases, by address.
    """
    store = app.store()
    try:
        table = store.read_all()
    except IPAMError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    if not table:
        say(colored.yellow('No leases.'))
        return
    say('%s lease(s):' % len(table))
    with indent(2):
        for id, ip in sorted(table.items(), key=lambda item: item[1]):
            say('%-15s %s' % (ip, id))


@main.command()
@click.pass_obj
def master(app):
    """Show the current master pointer.
    """
    store = app.store()
    try:
        address = store.get_master()
    except IPAMError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    if address is None:
        say(colored.yellow('No master; writes go to %s' % app.settings.store))
    else:
        say('Master is %s' % colored.green(address))


@main.command()
@click.argument('container-id')
@click.pass_obj
def release(app, container_id):
    """Release the address held by a container.
    """
    try:
        store = app.store(elect=True)
        try:
            ip = IPAllocator(store).release(container_id)
        finally:
            store.close()
    except IPAMError as e:
        raise click.ClickException(str(e))

    if ip is None:
        say(colored.yellow('%s holds no address.' % container_id))
    else:
        say('Released %s from %s' % (ip, container_id))


def run():
    sys.exit(main(sys.argv[1:]) or None)


if __name__ == '__main__':
    run()
