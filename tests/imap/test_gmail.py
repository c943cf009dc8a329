import mock
import pytest
import requests

from mailcrawl.models import Account, Message
from mailcrawl.mailsync.backends.base import FolderHandle
from mailcrawl.mailsync.backends.gmail import GmailAdapter, WATCH_URL
from mailcrawl.mailsync.exc import AuthenticationError, TransientError
from mailcrawl.mailsync.service import SyncOrchestrator
from mailcrawl.mailsync.state import SyncStatus
from mailcrawl.providers import FOLDER_TYPES

from tests.util.imap import make_fetch_data


@pytest.fixture
def gmail_conn(gmail_account, mock_imapclient):
    mock_imapclient.add_folder_data('INBOX', {
        1: make_fetch_data(1, g_msgid=1001, g_labels=(b'\\Inbox', b'work')),
        2: make_fetch_data(2, g_msgid=1002, g_labels=(b'\\Inbox',)),
        3: make_fetch_data(3, g_msgid=1003, g_labels=(b'\\Inbox',)),
    })
    mock_imapclient.add_folder_data('[Gmail]', {}, flags=(b'\\Noselect',))
    mock_imapclient.add_folder_data('[Gmail]/All Mail', {
        10: make_fetch_data(10, g_msgid=1001, g_labels=(b'\\Inbox',)),
        11: make_fetch_data(11, g_msgid=1002, g_labels=(b'\\Inbox',)),
        12: make_fetch_data(12, g_msgid=2001, g_labels=(b'\\Starred',)),
        13: make_fetch_data(13, g_msgid=2002),
    })
    mock_imapclient.add_folder_data('[Gmail]/Sent Mail', {})
    return mock_imapclient


def watch_response(status_code=200, body=None):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = body or {'historyId': '4242',
                                          'expiration': '1431990098200'}
    response.text = str(body)
    return response


@pytest.fixture
def watch_post(monkeypatch):
    post = mock.Mock(return_value=watch_response())
    monkeypatch.setattr('mailcrawl.mailsync.backends.gmail.requests.post',
                        post)
    return post


def test_aliased_folders_share_a_pass(db, gmail_account, gmail_conn):
    adapter = GmailAdapter(gmail_account)
    plans, missing = adapter.plan_folders(FOLDER_TYPES)
    assert [(p.folder_type, p.handle.name, p.shared_with) for p in plans] == [
        ('inbox', 'INBOX', []),
        ('sent', '[Gmail]/Sent Mail', []),
        ('archive', '[Gmail]/All Mail', ['starred', 'important']),
    ]
    assert sorted(missing) == ['drafts', 'spam', 'trash']


def test_provider_id_and_labels(db, gmail_account, gmail_conn):
    adapter = GmailAdapter(gmail_account)
    messages = adapter.fetch_messages(FolderHandle('inbox', 'INBOX'), [1, 2],
                                      False)
    assert [m.provider_id for m in messages] == ['1001', '1002']
    assert messages[0].labels == ['\\Inbox', 'work']
    assert 'X-GM-MSGID' in gmail_conn.fetches[-1][1]


def test_oauth_login(db, gmail_account, gmail_conn):
    gmail_conn.oauth_tokens[gmail_account.email_address] = 'sunshine'
    adapter = GmailAdapter(gmail_account)
    assert adapter.list_recent_identifiers(
        FolderHandle('inbox', 'INBOX'), 2) == [3, 2]

    gmail_conn.oauth_tokens[gmail_account.email_address] = 'moonlight'
    adapter.close()
    with pytest.raises(AuthenticationError):
        adapter.list_recent_identifiers(FolderHandle('inbox', 'INBOX'), 2)


def test_label_views_are_stored_once(db, gmail_account, gmail_conn,
                                     watch_post):
    result = SyncOrchestrator().seed(gmail_account.id)
    assert result.ok
    assert result.created == 5

    messages = {m.provider_id: m for m in db.session.query(Message)}
    assert sorted(messages) == ['1001', '1002', '1003', '2001', '2002']
    assert messages['1001'].folders == ['inbox', 'archive']
    assert messages['1001'].folder == 'inbox'
    assert messages['2001'].folders == ['archive']
    assert messages['2001'].labels == ['\\Starred']

    db.session.expire_all()
    account = db.session.get(Account, gmail_account.id)
    assert account.sync_status == SyncStatus.syncing
    assert account.folder_cursor('archive').forward_cursor == 13
    assert account.folder_cursor('starred') is None


def test_push_subscription_after_seed(db, gmail_account, gmail_conn,
                                      watch_post):
    SyncOrchestrator().seed(gmail_account.id)
    assert watch_post.call_count == 1
    args, kwargs = watch_post.call_args
    assert args == (WATCH_URL,)
    assert kwargs['json'] == {'topicName':
                              'projects/mailcrawl-test/topics/gmail',
                              'labelIds': ['INBOX']}
    assert kwargs['auth'].token == 'sunshine'


def test_push_subscription_failure_is_not_fatal(db, gmail_account,
                                                gmail_conn, watch_post):
    watch_post.return_value = watch_response(500, {'error': 'backend'})
    result = SyncOrchestrator().seed(gmail_account.id)
    assert result.created == 5
    db.session.expire_all()
    assert db.session.get(Account, gmail_account.id).sync_status == \
        SyncStatus.syncing


@pytest.mark.parametrize('response,error', [
    (watch_response(401, {'error': 'unauthorized'}), AuthenticationError),
    (watch_response(503, {'error': 'unavailable'}), TransientError),
])
def test_watch_errors(db, gmail_account, watch_post, response, error):
    watch_post.return_value = response
    adapter = GmailAdapter(gmail_account)
    with pytest.raises(error):
        adapter.subscribe_to_change_notifications(gmail_account)


def test_watch_network_error(db, gmail_account, watch_post):
    watch_post.side_effect = requests.exceptions.ConnectionError('reset')
    with pytest.raises(TransientError):
        GmailAdapter(gmail_account).subscribe_to_change_notifications(
            gmail_account)


def test_no_push_without_topic(db, gmail_account, watch_post, monkeypatch):
    from mailcrawl.config import config
    monkeypatch.setitem(config, 'GMAIL_PUSH_TOPIC', None)
    adapter = GmailAdapter(gmail_account)
    assert not adapter.supports_push()
    assert adapter.subscribe_to_change_notifications(gmail_account) is None
    assert not watch_post.called
