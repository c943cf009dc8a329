import imaplib
import socket
from datetime import datetime

import pytest

from mailcrawl.models import Account, FolderCursor, Message
from mailcrawl.mailsync.backends import adapter_for
from mailcrawl.mailsync.backends.base import FolderHandle, FolderStatus
from mailcrawl.mailsync.backends.imap.adapter import ImapAdapter
from mailcrawl.mailsync.exc import (AuthenticationError, TransientError,
                                    FolderNotFound, MalformedResponse,
                                    NotSupportedError)
from mailcrawl.mailsync.service import SyncOrchestrator
from mailcrawl.mailsync.state import SyncStatus

from tests.util.imap import make_fetch_data

INBOX = FolderHandle('inbox', 'INBOX')


@pytest.fixture
def imap_conn(default_account, mock_imapclient):
    mock_imapclient._add_login(default_account.email_address, 'bananagrams')
    mock_imapclient.add_folder_data(
        'INBOX', {uid: make_fetch_data(uid) for uid in range(1, 31)})
    return mock_imapclient


@pytest.fixture
def adapter(db, default_account, imap_conn):
    return ImapAdapter(default_account)


def test_adapter_registry(db, default_account, gmail_account):
    assert type(adapter_for(default_account)).__name__ == 'ImapAdapter'
    assert type(adapter_for(gmail_account)).__name__ == 'GmailAdapter'

    default_account.provider = 'aol'
    with pytest.raises(NotSupportedError):
        adapter_for(default_account)


def test_imap_endpoint(db, default_account):
    assert ImapAdapter(default_account).imap_endpoint == \
        ('imap.example.com', 993)
    default_account.credentials = {'password': 'x', 'imap_host': 'mx.local',
                                   'imap_port': '143'}
    assert ImapAdapter(default_account).imap_endpoint == ('mx.local', 143)


def test_resolve_folders(adapter, imap_conn):
    imap_conn.add_folder_data('INBOX.Sent', {})
    imap_conn.add_folder_data('[Mail]', {}, flags=(b'\\Noselect',))
    assert adapter._folder_names() == ['INBOX', 'INBOX.Sent']

    plans, missing = adapter.plan_folders(['inbox', 'sent', 'drafts'])
    assert [(p.folder_type, p.handle.name) for p in plans] == \
        [('inbox', 'INBOX'), ('sent', 'INBOX.Sent')]
    assert list(missing) == ['drafts']
    assert isinstance(missing['drafts'], FolderNotFound)


def test_inbox_name_is_case_insensitive(db, default_account,
                                        mock_imapclient):
    mock_imapclient._add_login(default_account.email_address, 'bananagrams')
    mock_imapclient.add_folder_data('Inbox', {})
    handle = ImapAdapter(default_account).resolve_folder('inbox')
    assert handle == FolderHandle('inbox', 'Inbox')


def test_list_recent_identifiers(adapter):
    assert adapter.list_recent_identifiers(INBOX, 5) == [30, 29, 28, 27, 26]
    assert adapter.list_recent_identifiers(INBOX, 0) == []
    assert len(adapter.list_recent_identifiers(INBOX, 100)) == 30


def test_list_identifiers_in_range(adapter):
    assert adapter.list_identifiers_in_range(INBOX, 3, 6) == {3, 4, 5, 6}
    assert adapter.list_identifiers_in_range(INBOX, 28, None) == \
        {28, 29, 30}
    # The server answers "UID 31:*" with UID 30; that isn't in range.
    assert adapter.list_identifiers_in_range(INBOX, 31, None) == set()
    assert adapter.list_identifiers_in_range(INBOX, 6, 3) == set()


def test_fetch_messages(adapter, imap_conn):
    imap_conn.add_folder_data('INBOX', {
        5: make_fetch_data(5, flags=(b'\\Seen', b'\\Flagged'),
                           subject=b'=?utf-8?q?Caf=C3=A9_menu?=')})
    messages = adapter.fetch_messages(INBOX, [7, 5, 99], True)
    assert [m.remote_id for m in messages] == [5, 7]

    message = messages[0]
    assert message.provider_id is None
    assert message.message_id_header == '<5@example.com>'
    assert message.subject == u'Caf\xe9 menu'
    assert message.from_addr == 'sender@example.com'
    assert message.received_at == datetime(2020, 1, 1, 10, 0)
    assert message.size == 2048
    assert message.flags == ['\\Seen', '\\Flagged']
    assert message.labels == []
    assert message.body.startswith(b'Subject: Message 5')
    assert 'BODY.PEEK[]' in imap_conn.fetches[-1][1]


def test_fetch_without_bodies(adapter, imap_conn):
    messages = adapter.fetch_messages(INBOX, [1, 2], False)
    assert [m.body for m in messages] == [None, None]
    assert 'BODY.PEEK[]' not in imap_conn.fetches[-1][1]
    assert adapter.fetch_messages(INBOX, [], False) == []


def test_missing_envelope_is_malformed(adapter, imap_conn):
    imap_conn.add_folder_data('INBOX', {
        31: {b'FLAGS': (), b'RFC822.SIZE': 10}})
    with pytest.raises(MalformedResponse):
        adapter.fetch_messages(INBOX, [31], False)


def test_login_failure(db, default_account, mock_imapclient):
    mock_imapclient._add_login(default_account.email_address, 'wrong')
    mock_imapclient.add_folder_data('INBOX', {})
    with pytest.raises(AuthenticationError):
        ImapAdapter(default_account).list_recent_identifiers(INBOX, 5)


def test_missing_folder(adapter):
    with pytest.raises(FolderNotFound):
        adapter.list_recent_identifiers(FolderHandle('sent', 'Sent'), 5)


@pytest.mark.parametrize('attr,error', [
    ('search_error', imaplib.IMAP4.abort('socket error: EOF')),
    ('search_error', imaplib.IMAP4.error('[THROTTLED] Too many commands')),
    ('select_error', socket.timeout('timed out')),
    ('select_error', imaplib.IMAP4.error('[UNAVAILABLE] Try again later')),
])
def test_client_errors_are_transient(adapter, imap_conn, attr, error):
    setattr(imap_conn, attr, error)
    with pytest.raises(TransientError):
        adapter.list_recent_identifiers(INBOX, 5)


def test_close_logs_out(adapter, imap_conn):
    adapter.list_recent_identifiers(INBOX, 5)
    adapter.close()
    assert imap_conn.logged_out == 1


def test_seed_over_imap(db, default_account, imap_conn):
    orchestrator = SyncOrchestrator()
    result = orchestrator.seed(default_account.id)
    assert result.created == 10

    db.session.expire_all()
    account = db.session.get(Account, default_account.id)
    assert account.sync_status == SyncStatus.syncing
    assert (account.forward_cursor, account.backfill_cursor) == (30, 21)
    subjects = sorted(s for s, in db.session.query(Message.subject))
    assert subjects[0] == 'Message 21'

    imap_conn.add_folder_data('INBOX', {31: make_fetch_data(31)})
    assert orchestrator.forward(default_account.id).created == 1
    assert orchestrator.backfill(default_account.id).created == 5


def test_list_recent_identifiers_searches_newest_sequence_numbers(
        adapter, imap_conn):
    assert adapter.list_recent_identifiers(INBOX, 5) == [30, 29, 28, 27, 26]
    assert imap_conn.sequence_searches == ['26:*']
    adapter.list_recent_identifiers(INBOX, 100)
    assert imap_conn.sequence_searches[-1] == '1:*'

    imap_conn.add_folder_data('Sent', {})
    assert adapter.list_recent_identifiers(FolderHandle('sent', 'Sent'),
                                           5) == []
    assert len(imap_conn.sequence_searches) == 2


def test_folder_status(adapter, imap_conn):
    assert adapter.folder_status(INBOX) == FolderStatus(1, 31)
    imap_conn.recreate_folder('INBOX', {1: make_fetch_data(1)})
    assert adapter.folder_status(INBOX) == FolderStatus(2, 2)


def test_recreated_folder_over_imap(db, default_account, imap_conn):
    orchestrator = SyncOrchestrator()
    assert orchestrator.seed(default_account.id).created == 10

    imap_conn.recreate_folder(
        'INBOX', {uid: make_fetch_data(uid) for uid in (1, 2, 3)})
    result = orchestrator.forward(default_account.id)
    assert result.created == 3
    assert result.reopened

    db.session.expire_all()
    assert db.session.query(Message).count() == 13
    cursor = db.session.query(FolderCursor).filter(
        FolderCursor.account_id == default_account.id,
        FolderCursor.folder_type == 'inbox').one()
    assert (cursor.generation, cursor.uidvalidity) == (1, 2)
    assert cursor.forward_cursor == 3
