from sqlalchemy import (Column, BigInteger, Integer, String, DateTime,
                        Boolean, ForeignKey, UniqueConstraint)
from sqlalchemy.orm import relationship

from mailcrawl.models.base import MailSyncBase, MAX_FOLDER_NAME_LENGTH


class FolderCursor(MailSyncBase):
    """
    Forward and backfill watermarks for one logical folder of an account.

    These, not the message table, are what the crawlers consult to decide
    what has already been fetched. The account-level cursors are derived from
    them (max of forward, min of backfill).

    """
    account_id = Column(Integer, ForeignKey('account.id', ondelete='CASCADE'),
                        nullable=False)
    account = relationship('Account', back_populates='folder_cursors')

    folder_type = Column(String(32), nullable=False)
    # The provider folder the logical type resolved to when last synced.
    folder_name = Column(String(MAX_FOLDER_NAME_LENGTH), nullable=True)

    forward_cursor = Column(BigInteger, nullable=True)
    backfill_cursor = Column(BigInteger, nullable=True)
    backfill_exhausted = Column(Boolean, nullable=False, default=False)

    # The provider's id-space marker (IMAP UIDVALIDITY) when last synced.
    # When the remote ids are reassigned both cursors are dropped and the
    # generation goes up; messages remember the generation they were
    # fetched under.
    uidvalidity = Column(BigInteger, nullable=True)
    generation = Column(Integer, nullable=False, default=0)

    last_forward_sync_at = Column(DateTime, nullable=True)
    last_backfill_at = Column(DateTime, nullable=True)

    __table_args__ = (UniqueConstraint('account_id', 'folder_type'),)

    @property
    def summary(self):
        return dict(folder_name=self.folder_name,
                    forward_cursor=self.forward_cursor,
                    backfill_cursor=self.backfill_cursor,
                    backfill_exhausted=self.backfill_exhausted,
                    generation=self.generation)

    def __repr__(self):
        return '<FolderCursor {}:{} fwd={} back={}{}>'.format(
            self.account_id, self.folder_type, self.forward_cursor,
            self.backfill_cursor, ' done' if self.backfill_exhausted else '')
