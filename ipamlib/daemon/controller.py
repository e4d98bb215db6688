"""``ipamd``: holds store mastership for this host.

Run one of these next to every store instance. The first daemon to
come up while no master pointer exists becomes master and keeps the
pointer refreshed; the others just note who the master is and wait.

Stopping the daemon (SIGINT/SIGTERM) stops the refresh, and the
pointer expires after its TTL; a daemon started after that takes over.
"""

import logging
import signal

import click
import gevent
import gevent.event

from ipamlib.config import Settings, setup_logging
from ipamlib.election import MasterElector
from ipamlib.exceptions import IPAMError


log = logging.getLogger(__name__)


class Controller(object):
    """This is the main class of the daemon.
    """

    def __init__(self, settings, advertise):
        self.settings = settings
        self.advertise = advertise
        self.store = settings.create_store()
        self.elector = None
        self._stopped = gevent.event.Event()

    def start(self):
        """Run the election. Raises :class:`MasterDiscoveryError`."""
        self.elector = MasterElector(
            self.store, self.advertise,
            ttl=self.settings.master_ttl,
            interval=self.settings.refresh_interval)
        if self.elector.is_master:
            log.info('This host (%s) is the store master', self.advertise)
        else:
            log.info('Following store master at %s', self.elector.master)

    def stop(self):
        if self.elector is not None:
            self.elector.stop()
        self._stopped.set()

    def wait(self, timeout=None):
        return self._stopped.wait(timeout)

    def close(self):
        self.store.close()

    def run(self):
        self.start()
        for signum in (signal.SIGINT, signal.SIGTERM):
            gevent.signal_handler(signum, self.stop)
        try:
            self.wait()
        finally:
            self.stop()
            self.close()


@click.command()
@click.option('--config', 'config_file', help='YAML settings file')
@click.option('--store', help='Local store address, host:port')
@click.option('--advertise', help='Address to publish as master, host:port')
@click.option('--interface', help='Take the host ip from this interface')
@click.option('--debug', is_flag=True)
def cli(config_file, store, advertise, interface, debug):
    # Either the tests have already patched, or we do it now
    import gevent.monkey
    if not gevent.monkey.saved:
        gevent.monkey.patch_all()

    try:
        settings = Settings.load(
            config_file, store=store, advertise=advertise,
            interface=interface, log_level='DEBUG' if debug else None)
        setup_logging(settings.log_level)
        controller = Controller(settings, settings.get_advertise_address())
        controller.run()
    except IPAMError as e:
        raise click.ClickException(str(e))


if __name__ == '__main__':
    cli()
