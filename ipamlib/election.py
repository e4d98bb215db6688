"""Decide which store instance accepts writes.

The master pointer is a single key with a TTL. Whoever finds it absent
at startup, and has an address to advertise, writes its own address
there and keeps refreshing it. Everyone else who starts while the key
exists sends their writes to the address it names.

This only routes writes; it does not serialize them. Atomicity of a
reservation is the job of :meth:`LeaseStore.claim`.

Known limitation: the pointer is only looked at once. If the master we
discovered goes away later, our writes will keep failing until the
process is restarted; there is no re-election. The same goes for a
master restarted before its own pointer expired: it finds its own
address, follows it like any other, and stops refreshing it.
"""

import logging

import gevent

from ipamlib.exceptions import IPAMError, MasterDiscoveryError


log = logging.getLogger(__name__)


MASTER_TTL = 60
REFRESH_INTERVAL = 45

UNELECTED = 'unelected'
MASTER_KNOWN = 'master-known'


class MasterElector(object):
    """Runs the election against ``store`` when constructed.

    If ``advertise`` is given and nobody is master, we become master
    and a greenlet keeps the pointer alive until :meth:`stop` is
    called. Without ``advertise`` and without a master, we stay
    unelected and writes go to the local store.

    Raises :class:`MasterDiscoveryError` if the store cannot be asked.
    """

    def __init__(self, store, advertise=None, ttl=MASTER_TTL,
                 interval=REFRESH_INTERVAL):
        self.store = store
        self.advertise = advertise
        self.ttl = ttl
        self.interval = interval

        self.master = None
        self._greenlet = None

        self._elect()

    @property
    def state(self):
        return MASTER_KNOWN if self.master else UNELECTED

    @property
    def is_master(self):
        return self._greenlet is not None

    def _elect(self):
        try:
            master = self.store.get_master()
        except IPAMError as e:
            raise MasterDiscoveryError(str(e))

        if master is None:
            if not self.advertise:
                log.debug('No master, using local store for writes')
                return
            self._claim()
        else:
            log.info('Discovered master at %s', master)
            self.master = master
            self.store.use_master(master)

    def _claim(self):
        try:
            self.store.set_master(self.advertise, self.ttl)
        except IPAMError as e:
            raise MasterDiscoveryError(str(e))
        log.info('Claimed mastership as %s', self.advertise)
        self.master = self.advertise
        self._start_refresh()

    def _start_refresh(self):
        self._greenlet = gevent.spawn(self._refresh)

    def _refresh(self):
        conn = self.store.conn()
        while True:
            gevent.sleep(self.interval)
            log.debug('setting master key')
            try:
                self.store.set_master(self.advertise, self.ttl, conn=conn)
            except IPAMError as e:
                log.error('set master key: %s', e)
                # The failed connection was dropped from the pool;
                # start over with a fresh client on the next tick.
                conn = self.store.conn()

    def stop(self):
        """Stop refreshing. The pointer will expire on its own."""
        if self._greenlet is not None:
            self._greenlet.kill()
            self._greenlet = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
