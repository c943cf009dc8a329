"""
All models are imported here so that relationships declared by string
reference can always be resolved, whichever module is imported first.
"""
from mailcrawl.models.base import MailSyncBase  # noqa
from mailcrawl.models.account import Account  # noqa
from mailcrawl.models.cursor import FolderCursor  # noqa
from mailcrawl.models.message import Message  # noqa
from mailcrawl.models.lease import SyncLease  # noqa
