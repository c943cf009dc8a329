from collections import namedtuple
from datetime import datetime, timedelta

from mailcrawl.config import config
from mailcrawl.providers import (provider_info, folder_candidates,
                                 DEFAULT_MAX_PARALLEL_FOLDERS)
from mailcrawl.mailsync.exc import AuthenticationError, FolderNotFound
from mailcrawl import oauth
from mailcrawl.log import get_logger
log = get_logger()


# A provider folder a logical folder type resolved to.
FolderHandle = namedtuple('FolderHandle', 'folder_type name')

# One entry of a sync plan: the logical folder the crawl state is kept
# under, the provider folder to read, and any other logical folders the
# adapter folded into the same pass.
FolderPlan = namedtuple('FolderPlan', 'folder_type handle shared_with')

# A folder's id-space marker and the id the next new message will get. Either
# may be None if the provider doesn't say.
FolderStatus = namedtuple('FolderStatus', 'uidvalidity uidnext')

# What an adapter hands back from fetch_messages(). `remote_id` orders
# messages within a folder; `provider_id` is the folder-independent id if the
# provider has one.
RawMessage = namedtuple(
    'RawMessage',
    'remote_id provider_id message_id_header subject from_addr received_at '
    'size flags labels body')

# Refresh access tokens this long before they actually expire.
TOKEN_EXPIRY_SLACK = timedelta(seconds=60)


class ProviderAdapter(object):
    """
    The complete set of things the sync core needs from a provider.

    One instance is built per account per pass (see
    `mailcrawl.mailsync.backends.adapter_for`) from a snapshot of the
    account, so its methods may be called after the session the account was
    loaded in has closed. Network-facing methods raise only the exceptions in
    `mailcrawl.mailsync.exc`.

    Subclasses must implement `_folder_names`, `list_recent_identifiers`,
    `list_identifiers_in_range` and `fetch_messages`.

    """
    # Whether logical folders that resolve to the same provider folder are
    # crawled once (True) or each get their own pass (False).
    collapse_aliased_folders = False

    def __init__(self, account):
        self.account_id = account.id
        self.provider = account.provider
        self.email_address = account.email_address
        self.credentials = dict(account.credentials or {})
        self.provider_info = provider_info(account.provider)
        self._resolved = {}

    @property
    def auth_type(self):
        if 'refresh_token' in self.credentials:
            return 'oauth2'
        if 'password' in self.credentials:
            return 'password'
        return self.provider_info.get('auth', 'password')

    def _folder_names(self):
        """Names of all selectable folders on the remote."""
        raise NotImplementedError

    def resolve_folder(self, folder_type):
        """
        Return a FolderHandle for the first of the primary name and its
        aliases that exists on the remote. Raises FolderNotFound if none do.

        """
        if folder_type in self._resolved:
            return self._resolved[folder_type]
        candidates = folder_candidates(self.provider, folder_type)
        existing = self._folder_names()
        # RFC 3501 makes INBOX case-insensitive; nothing else is.
        normalized = {n.upper() if n.upper() == 'INBOX' else n: n
                      for n in existing}
        for name in candidates:
            key = name.upper() if name.upper() == 'INBOX' else name
            if key in normalized:
                handle = FolderHandle(folder_type, normalized[key])
                self._resolved[folder_type] = handle
                return handle
        raise FolderNotFound(folder_type, candidates)

    def plan_folders(self, folder_types):
        """
        Resolve `folder_types` (primary first) into the list of passes to
        run. Returns (plans, missing) where `missing` maps each unresolvable
        folder type to its FolderNotFound error.

        """
        plans = []
        missing = {}
        by_name = {}
        for folder_type in folder_types:
            try:
                handle = self.resolve_folder(folder_type)
            except FolderNotFound as e:
                missing[folder_type] = e
                continue
            if self.collapse_aliased_folders and handle.name in by_name:
                by_name[handle.name].shared_with.append(folder_type)
                continue
            plan = FolderPlan(folder_type, handle, [])
            by_name[handle.name] = plan
            plans.append(plan)
        return plans, missing

    def list_recent_identifiers(self, handle, count):
        """The newest `count` ids in the folder, newest first."""
        raise NotImplementedError

    def list_identifiers_in_range(self, handle, low, high):
        """
        The set of ids in the folder with `low <= id <= high`. A `high` of
        None means no upper bound.

        """
        raise NotImplementedError

    def fetch_messages(self, handle, identifiers, include_body):
        """One batched fetch; returns a list of RawMessage."""
        raise NotImplementedError

    def folder_status(self, handle):
        """
        A FolderStatus for the folder, or None if the provider's ids are
        never reassigned.

        """
        return None

    def token_is_fresh(self):
        expires_at = self.credentials.get('expires_at')
        if not self.credentials.get('access_token') or not expires_at:
            return False
        expiry = datetime.fromisoformat(expires_at)
        return expiry - TOKEN_EXPIRY_SLACK > datetime.utcnow()

    def refresh_credentials_if_needed(self, account, force=False):
        """
        Make sure the account's credentials are usable, renewing the access
        token if it's missing, about to expire, or `force` is set (the
        provider just rejected it). Idempotent. Updates `account.credentials`
        in place; the caller commits.

        Returns True if new credentials were obtained.

        Raises
        ------
        AuthenticationError
            If there are no usable credentials, or the provider refused to
            renew them.
        TransientError
            If the token endpoint couldn't be reached.

        """
        creds = account.credentials or {}
        if self.auth_type != 'oauth2':
            if not creds.get('password'):
                raise AuthenticationError('No password stored for account')
            self.credentials = dict(creds)
            return False

        self.credentials = dict(creds)
        if not force and self.token_is_fresh():
            return False

        client_id = creds.get('client_id') or \
            config.get('GOOGLE_OAUTH_CLIENT_ID')
        client_secret = creds.get('client_secret') or \
            config.get('GOOGLE_OAUTH_CLIENT_SECRET')
        token_url = creds.get('token_url') or \
            self.provider_info.get('token_url')
        if not token_url:
            raise AuthenticationError('No token endpoint for provider {}'
                                      .format(self.provider))
        access_token, expires_in = oauth.new_access_token(
            token_url, client_id, client_secret, creds.get('refresh_token'))
        expires_at = datetime.utcnow() + timedelta(seconds=expires_in)
        account.credentials['access_token'] = access_token
        account.credentials['expires_at'] = expires_at.isoformat()
        self.credentials = dict(account.credentials)
        log.info('Renewed access token', account_id=self.account_id,
                 forced=force)
        return True

    def supports_push(self):
        return False

    def subscribe_to_change_notifications(self, account):
        """Register for provider push notifications. Returns the provider's
        subscription details, or None if push isn't supported."""
        return None

    def max_parallel_folder_fetches(self):
        limits = config.get('MAX_PARALLEL_FOLDERS') or {}
        default = limits.get('custom', DEFAULT_MAX_PARALLEL_FOLDERS)
        return max(1, int(limits.get(self.provider, default)))

    def close(self):
        """Release anything the adapter holds open between passes."""
        pass
