""" Per-account IMAPClient connection pools. """
import contextlib
import imaplib
import socket
import ssl
import threading
from collections import defaultdict

from gevent.lock import BoundedSemaphore
from gevent.queue import Queue
from imapclient import IMAPClient

from mailcrawl.mailsync.exc import FolderNotFound
from mailcrawl.log import get_logger
log = get_logger()

__all__ = ['connection_pool', 'dispose_pool', 'create_imap_connection',
           'ImapConnectionPool']

# Lazily-initialized map of account ids to lock objects.
# This prevents multiple greenlets from concurrently creating duplicate
# connection pools for a given account.
_lock_map = defaultdict(threading.Lock)

# Account id -> ImapConnectionPool.
pools = {}


# Errors after which the server's response has been read in full and the
# connection is in a known state. Anything else, including a timeout or a
# greenlet kill in the middle of a command, may leave an unread response
# behind, so the connection is thrown away.
CONN_REUSABLE_EXC_CLASSES = (FolderNotFound,)

# Errors after which a LOGOUT can still be exchanged with the server.
CONN_LOGOUT_EXC_CLASSES = (imaplib.IMAP4.error,)

IMAP_TIMEOUT = 120


def create_imap_connection(host, port, timeout=IMAP_TIMEOUT):
    """
    Return a connection to the IMAP server.
    The connection is encrypted if the specified port is the default IMAP
    SSL port (993), and upgraded with STARTTLS otherwise. Servers that offer
    neither are refused.

    """
    use_ssl = port == 993

    context = ssl.create_default_context()
    conn = IMAPClient(host, port=port, use_uid=True,
                      ssl=use_ssl, ssl_context=context, timeout=timeout)
    # Keep INTERNALDATE timezone-aware so it can be stored as UTC.
    conn.normalise_times = False

    if not use_ssl:
        if not conn.has_capability('STARTTLS'):
            raise ssl.SSLError('IMAP server does not support STARTTLS')
        conn.starttls(context)
    return conn


def connection_pool(account_id, pool_size=3, pool_map=None):
    """ Per-account IMAP connection pool.

    Use like this:

        with connection_pool(account_id).get() as conn:
            # your code here
            pass

    Note that the returned connection could have ANY folder selected, or
    none at all! It's up to the calling code to select the folder it needs.
    """
    if pool_map is None:
        pool_map = pools
    with _lock_map[account_id]:
        if account_id not in pool_map:
            pool_map[account_id] = ImapConnectionPool(
                account_id, num_connections=pool_size)
        return pool_map[account_id]


def dispose_pool(account_id, pool_map=None):
    """Close the account's idle connections and forget its pool."""
    if pool_map is None:
        pool_map = pools
    with _lock_map[account_id]:
        pool = pool_map.pop(account_id, None)
    _lock_map.pop(account_id, None)
    if pool is not None:
        pool.reset()


class ImapConnectionPool(object):
    """
    Connection pool for IMAPClient connections.

    Connections in a pool are specific to an account. The pool doesn't know
    how to log in; whoever uses it sets `connect` to a callable returning a
    new authenticated connection (it changes when credentials are renewed).

    Parameters
    ----------
    account_id : int
        Which account to open up a connection to.
    num_connections : int
        How many connections in the pool.
    """

    def __init__(self, account_id, num_connections):
        log.info('Creating IMAP connection pool', account_id=account_id,
                 num_connections=num_connections)
        self.account_id = account_id
        self.connect = None
        self._queue = Queue(num_connections, items=num_connections * [None])
        self._sem = BoundedSemaphore(num_connections)

    @contextlib.contextmanager
    def get(self):
        """ Get a connection from the pool, or instantiate a new one if needed.
        If `num_connections` connections are already in use, block until one is
        available.
        """
        # A gevent semaphore is granted in the order that greenlets tried to
        # acquire it, so we use a semaphore here to prevent potential
        # starvation of greenlets if there is high contention for the pool.
        self._sem.acquire()
        client = self._queue.get()
        try:
            if client is None:
                client = self.connect()
            yield client
        except CONN_REUSABLE_EXC_CLASSES:
            raise
        except BaseException as exc:
            log.info('IMAP connection error; discarding connection',
                     account_id=self.account_id,
                     error='{}: {}'.format(type(exc).__name__, exc))
            if client is not None:
                self._discard(client, exc)
            client = None
            raise
        finally:
            self._queue.put(client)
            self._sem.release()

    def reset(self):
        """Log out of every idle connection, so the next `get()` logs in
        with whatever credentials `connect` now uses."""
        for _ in range(self._queue.qsize()):
            client = self._queue.get()
            if client is not None:
                self._logout(client)
            self._queue.put(None)

    def _discard(self, client, exc):
        if isinstance(exc, CONN_LOGOUT_EXC_CLASSES) and \
                not isinstance(exc, imaplib.IMAP4.abort):
            self._logout(client)
            return
        try:
            client.shutdown()
        except (socket.error, imaplib.IMAP4.error):
            log.info('Error closing IMAP connection',
                     account_id=self.account_id, exc_info=True)

    def _logout(self, client):
        try:
            client.logout()
        except (socket.error, imaplib.IMAP4.error):
            log.info('Error on IMAP logout', account_id=self.account_id,
                     exc_info=True)
