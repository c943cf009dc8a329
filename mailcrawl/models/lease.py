from sqlalchemy import (Column, Integer, String, DateTime, ForeignKey,
                        UniqueConstraint)

from mailcrawl.models.base import MailSyncBase, MAX_INDEXABLE_LENGTH


class SyncLease(MailSyncBase):
    """An expiring claim on one sync direction of one account."""
    account_id = Column(Integer, ForeignKey('account.id', ondelete='CASCADE'),
                        nullable=False)
    direction = Column(String(16), nullable=False)
    holder = Column(String(MAX_INDEXABLE_LENGTH), nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (UniqueConstraint('account_id', 'direction'),)
