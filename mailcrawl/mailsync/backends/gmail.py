"""
Gmail adapter.

Gmail is IMAP with extensions: every message carries a folder-independent
X-GM-MSGID, which is used as the provider id so a message showing up under
several labels is only stored once. Several logical folders ("archive",
"starred", "important") are views onto All Mail, so folders that resolve to
the same provider folder share one pass.

Push notifications go through the Gmail API's users.watch call, which
publishes mailbox changes to a Cloud Pub/Sub topic that delivers to our
push endpoint.

"""
import requests

from mailcrawl.config import config
from mailcrawl.mailsync.backends.imap.adapter import ImapAdapter, _item, _text
from mailcrawl.mailsync.exc import AuthenticationError, TransientError
from mailcrawl.oauth import OAuthRequestsWrapper
from mailcrawl.log import get_logger
log = get_logger()

PROVIDER = 'gmail'
ADAPTER_CLS = 'GmailAdapter'

WATCH_URL = 'https://gmail.googleapis.com/gmail/v1/users/me/watch'


class GmailAdapter(ImapAdapter):
    FETCH_ITEMS = ImapAdapter.FETCH_ITEMS + ['X-GM-MSGID', 'X-GM-LABELS']
    collapse_aliased_folders = True

    def _provider_id(self, item):
        g_msgid = _item(item, 'X-GM-MSGID')
        return str(g_msgid) if g_msgid is not None else None

    def _labels(self, item):
        return [_text(l) for l in (_item(item, 'X-GM-LABELS') or ())]

    def supports_push(self):
        return bool(config.get('GMAIL_PUSH_TOPIC')) and \
            self.auth_type == 'oauth2'

    def subscribe_to_change_notifications(self, account):
        if not self.supports_push():
            return None
        self.refresh_credentials_if_needed(account)
        payload = {'topicName': config.get_required('GMAIL_PUSH_TOPIC'),
                   'labelIds': ['INBOX']}
        try:
            response = requests.post(
                WATCH_URL, json=payload, timeout=30,
                auth=OAuthRequestsWrapper(self.credentials['access_token']))
        except requests.exceptions.RequestException as e:
            raise TransientError('Error registering Gmail watch: {}'.format(e))
        if response.status_code in (401, 403):
            raise AuthenticationError('Gmail watch refused: {}'.format(
                response.text[:200]))
        if response.status_code != 200:
            raise TransientError('Gmail watch failed with {}: {}'.format(
                response.status_code, response.text[:200]))
        watch = response.json()
        log.info('Registered Gmail watch', account_id=self.account_id,
                 history_id=watch.get('historyId'),
                 expiration=watch.get('expiration'))
        return watch
