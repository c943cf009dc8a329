import traceback
from datetime import datetime

from sqlalchemy import (Column, BigInteger, Integer, String, DateTime,
                        Boolean, Enum)
from sqlalchemy.orm import relationship

from mailcrawl.sqlalchemy_ext.util import JSON, MutableDict, MutableList
from mailcrawl.models.base import MailSyncBase
from mailcrawl.models.mixins import HasEmailAddress
from mailcrawl.mailsync.state import SyncStatus, CRAWLABLE
from mailcrawl.providers import provider_info, FOLDER_TYPES, PRIMARY_FOLDER


class Account(MailSyncBase, HasEmailAddress):
    # A constant, unique lowercase identifier for the account provider
    # (e.g., 'gmail', 'outlook', 'custom'); a key into mailcrawl.providers.
    provider = Column(String(64), nullable=False)

    # Opaque to the sync core; interpreted by the provider adapter.
    credentials = Column(MutableDict.as_mutable(JSON), default={},
                         nullable=True)

    forward_cursor = Column(BigInteger, nullable=True)
    backfill_cursor = Column(BigInteger, nullable=True)
    backfill_complete = Column(Boolean, nullable=False, default=False)

    disabled_folders = Column(MutableList.as_mutable(JSON), default=[],
                              nullable=True)

    sync_status = Column(Enum(SyncStatus, name='syncstatus',
                              native_enum=False,
                              values_callable=lambda e: [m.value for m in e]),
                         nullable=False, default=SyncStatus.pending,
                         index=True)

    last_forward_sync_at = Column(DateTime, nullable=True)
    last_backfill_at = Column(DateTime, nullable=True)
    sync_started_at = Column(DateTime, nullable=True)

    consecutive_failures = Column(Integer, nullable=False, default=0)

    _sync_error = Column(MutableDict.as_mutable(JSON), nullable=True)

    folder_cursors = relationship('FolderCursor', back_populates='account',
                                  cascade='all, delete-orphan',
                                  order_by='FolderCursor.id')

    @property
    def provider_info(self):
        return provider_info(self.provider)

    @property
    def is_crawlable(self):
        return self.sync_status in CRAWLABLE

    @property
    def enabled_folder_types(self):
        """Logical folder types to sync, primary folder first."""
        disabled = set(self.disabled_folders or [])
        disabled.discard(PRIMARY_FOLDER)
        known = self.provider_info['folder_map']
        return [t for t in FOLDER_TYPES if t in known and t not in disabled]

    def folder_cursor(self, folder_type):
        for cursor in self.folder_cursors:
            if cursor.folder_type == folder_type:
                return cursor
        return None

    @property
    def sync_error(self):
        return self._sync_error

    def update_sync_error(self, error=None):
        if error is None:
            self._sync_error = None
        else:
            self._sync_error = {
                'message': str(error)[:3000],
                'exception': ''.join(traceback.format_exception_only(
                    type(error), error))[:500],
                'traceback': traceback.format_exc(20)[:3000],
                'at': datetime.utcnow().isoformat()}

    def record_pass_success(self):
        self.consecutive_failures = 0

    def record_pass_failure(self, error):
        self.consecutive_failures = (self.consecutive_failures or 0) + 1
        self.update_sync_error(error)
        return self.consecutive_failures

    @property
    def status_summary(self):
        """What an operator or end user is allowed to see about the sync."""
        d = dict(id=self.id,
                 email=self.email_address,
                 provider=self.provider,
                 state=self.sync_status.value,
                 forward_cursor=self.forward_cursor,
                 backfill_cursor=self.backfill_cursor,
                 backfill_complete=self.backfill_complete,
                 disabled_folders=list(self.disabled_folders or []),
                 last_forward_sync_at=self.last_forward_sync_at,
                 last_backfill_at=self.last_backfill_at,
                 sync_started_at=self.sync_started_at,
                 consecutive_failures=self.consecutive_failures,
                 folders={c.folder_type: c.summary
                          for c in self.folder_cursors})
        error = self.sync_error
        d['sync_error'] = error.get('message') if error else None
        return d

    def __repr__(self):
        return '<Account {} {} {}>'.format(self.id, self.provider,
                                           self.email_address)
