"""
Generic IMAP provider adapter.

Remote ids are folder UIDs. All calls go through the account's connection
pool and re-select the folder they operate on, since IMAP UIDs are only
meaningful within the session of a SELECT.

"""
import contextlib
import imaplib
import socket
import ssl
from datetime import timezone

from imapclient.exceptions import LoginError
from flanker.mime.message.headers.encodedword import decode

from mailcrawl.mailsync.backends.base import (ProviderAdapter, RawMessage,
                                               FolderStatus)
from mailcrawl.mailsync.backends.imap.pool import (connection_pool,
                                                   create_imap_connection)
from mailcrawl.mailsync.exc import (SyncError, TransientError,
                                    AuthenticationError, TerminalError,
                                    FolderNotFound, MalformedResponse)
from mailcrawl.log import get_logger
log = get_logger()

# Substrings Yahoo, Gmail, Outlook and Dovecot use to say a folder is gone.
MISSING_FOLDER_MESSAGES = ('[NONEXISTENT]', 'does not exist', "doesn't exist",
                           'Unknown Mailbox', 'Mailbox not found')

NOSELECT_FLAGS = ('\\Noselect', '\\NoSelect', '\\NonExistent')


def _text(value):
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode('utf-8', 'replace')
    return value


def _item(data, key):
    """FETCH and SELECT response items are keyed by bytes in current
    IMAPClient releases and by str in older ones."""
    if key.encode('ascii') in data:
        return data[key.encode('ascii')]
    return data.get(key)


def _utc_naive(dt):
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class ImapAdapter(ProviderAdapter):
    FETCH_ITEMS = ['ENVELOPE', 'FLAGS', 'INTERNALDATE', 'RFC822.SIZE']

    def __init__(self, account):
        ProviderAdapter.__init__(self, account)
        self.pool = connection_pool(self.account_id,
                                    self.max_parallel_folder_fetches())
        self.pool.connect = self._connect
        self._folder_list = None

    @property
    def imap_endpoint(self):
        host = self.credentials.get('imap_host')
        if host:
            return host, int(self.credentials.get('imap_port', 993))
        if 'imap' in self.provider_info:
            return self.provider_info['imap']
        raise TerminalError('No IMAP server configured for account')

    def _connect(self):
        host, port = self.imap_endpoint
        try:
            conn = create_imap_connection(host, port)
        except (imaplib.IMAP4.error, socket.error) as exc:
            log.error('Error instantiating IMAP connection',
                      account_id=self.account_id, host=host, port=port,
                      error=exc)
            raise TransientError('Could not connect to {}:{}: {}'.format(
                host, port, exc))
        try:
            if self.auth_type == 'oauth2':
                conn.oauth2_login(self.email_address,
                                  self.credentials.get('access_token'))
            else:
                conn.login(self.credentials.get('username') or
                           self.email_address,
                           self.credentials.get('password'))
        except LoginError as exc:
            log.error('IMAP login failed', account_id=self.account_id,
                      host=host, error=exc)
            raise AuthenticationError(str(exc))
        return conn

    def refresh_credentials_if_needed(self, account, force=False):
        refreshed = ProviderAdapter.refresh_credentials_if_needed(
            self, account, force=force)
        if refreshed or force:
            # Connections logged in with the old token are useless now.
            self.pool.reset()
        return refreshed

    @contextlib.contextmanager
    def _session(self, handle=None):
        """
        A pooled connection with `handle`'s folder selected, translating
        client library errors into sync errors. Yields the connection and
        the SELECT response (None without a handle).

        """
        try:
            with self.pool.get() as conn:
                select_info = None
                if handle is not None:
                    select_info = self._select(conn, handle)
                yield conn, select_info
        except SyncError:
            raise
        except LoginError as exc:
            raise AuthenticationError(str(exc))
        except (imaplib.IMAP4.error, socket.error, ssl.SSLError) as exc:
            # Includes throttling responses and dropped connections.
            raise TransientError('{}: {}'.format(type(exc).__name__, exc))

    def _select(self, conn, handle):
        try:
            return conn.select_folder(handle.name, readonly=True)
        except imaplib.IMAP4.error as exc:
            message = str(exc)
            if any(m in message for m in MISSING_FOLDER_MESSAGES):
                raise FolderNotFound(handle.folder_type, [handle.name])
            # We can't assume that all errors here are caused by the folder
            # being deleted, as other connection errors could occur.
            log.error('IMAPClient error selecting folder. May be deleted',
                      account_id=self.account_id, folder=handle.name,
                      error=message)
            raise

    def _folder_names(self):
        if self._folder_list is None:
            with self._session() as (conn, _):
                folders = conn.list_folders()
            names = []
            for flags, _, name in folders:
                flags = [_text(f) for f in flags]
                if any(f in NOSELECT_FLAGS for f in flags):
                    # Special folders that can't contain messages
                    continue
                names.append(_text(name))
            self._folder_list = names
        return self._folder_list

    def folder_status(self, handle):
        with self._session(handle) as (_, select_info):
            uidvalidity = _item(select_info, 'UIDVALIDITY')
            uidnext = _item(select_info, 'UIDNEXT')
        return FolderStatus(
            int(uidvalidity) if uidvalidity is not None else None,
            int(uidnext) if uidnext is not None else None)

    def list_recent_identifiers(self, handle, count):
        if count <= 0:
            return []
        with self._session(handle) as (conn, select_info):
            exists = _item(select_info, 'EXISTS')
            if exists is None:
                uids = conn.search(['ALL'])
            elif int(exists) == 0:
                uids = []
            else:
                # Sequence numbers run in UID order, so the last `count` of
                # them are the newest messages.
                start = max(1, int(exists) - count + 1)
                uids = conn.search(['{}:*'.format(start)])
        uids = sorted(int(uid) for uid in uids)
        return list(reversed(uids[-count:]))

    def list_identifiers_in_range(self, handle, low, high):
        low = max(low, 1)
        if high is not None and high < low:
            return set()
        criteria = ['UID', '{}:{}'.format(low, '*' if high is None else high)]
        with self._session(handle) as (conn, _):
            uids = conn.search(criteria)
        # "UID n:*" always matches the highest UID, even when it's below n.
        return {int(u) for u in uids
                if int(u) >= low and (high is None or int(u) <= high)}

    def fetch_items(self, include_body):
        items = list(self.FETCH_ITEMS)
        if include_body:
            items.append('BODY.PEEK[]')
        return items

    def fetch_messages(self, handle, identifiers, include_body):
        identifiers = sorted(set(identifiers))
        if not identifiers:
            return []
        with self._session(handle) as (conn, _):
            data = conn.fetch(identifiers, self.fetch_items(include_body))

        wanted = set(identifiers)
        messages = []
        for uid in sorted(data, key=int):
            # Skip handling unsolicited FETCH responses
            if int(uid) not in wanted:
                continue
            item = data[uid]
            if _item(item, 'FLAGS') is None:
                log.error('No data returned for UID, skipping',
                          account_id=self.account_id, uid=uid)
                continue
            messages.append(self._parse(int(uid), item, include_body))
        return messages

    def _parse(self, uid, item, include_body):
        envelope = _item(item, 'ENVELOPE')
        if envelope is None:
            raise MalformedResponse('No ENVELOPE for UID {}'.format(uid))
        flags = [_text(f) for f in _item(item, 'FLAGS')]
        body = _item(item, 'BODY[]') if include_body else None
        from_addr = None
        if envelope.from_:
            sender = envelope.from_[0]
            if sender.mailbox and sender.host:
                from_addr = '{}@{}'.format(_text(sender.mailbox),
                                           _text(sender.host))
        subject = _text(envelope.subject)
        return RawMessage(
            remote_id=uid,
            provider_id=self._provider_id(item),
            message_id_header=_text(envelope.message_id),
            subject=decode(subject) if subject else None,
            from_addr=from_addr,
            received_at=_utc_naive(_item(item, 'INTERNALDATE')),
            size=_item(item, 'RFC822.SIZE'),
            flags=flags,
            labels=self._labels(item),
            body=body)

    def _provider_id(self, item):
        return None

    def _labels(self, item):
        return []

    def close(self):
        self.pool.reset()
