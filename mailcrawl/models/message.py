from sqlalchemy import (Column, BigInteger, Integer, String, DateTime,
                        Boolean, ForeignKey, LargeBinary, UniqueConstraint,
                        Index)

from mailcrawl.sqlalchemy_ext.util import JSON, MutableList
from mailcrawl.models.base import MailSyncBase, MAX_INDEXABLE_LENGTH


class Message(MailSyncBase):
    """
    Local record of one remote message.

    Unique on (account, remote id, folder, generation). When the provider
    exposes a folder-independent id it's also unique on (account, provider
    id), so a message visible under two labels is stored once and the second
    folder is tracked in `folders`.

    """
    account_id = Column(Integer, ForeignKey('account.id', ondelete='CASCADE'),
                        nullable=False)

    folder = Column(String(32), nullable=False)
    remote_id = Column(BigInteger, nullable=False)
    provider_id = Column(String(MAX_INDEXABLE_LENGTH), nullable=True)
    # The folder cursor's generation when the message was fetched; remote
    # ids from an older generation no longer name the same message.
    generation = Column(Integer, nullable=False, default=0)

    message_id_header = Column(String(998), nullable=True)
    subject = Column(String(998), nullable=True)
    from_addr = Column(String(MAX_INDEXABLE_LENGTH), nullable=True)
    received_at = Column(DateTime, nullable=True)
    size = Column(Integer, nullable=True)

    flags = Column(MutableList.as_mutable(JSON), default=[], nullable=True)
    # Provider labels (Gmail X-GM-LABELS); empty for plain IMAP.
    labels = Column(MutableList.as_mutable(JSON), default=[], nullable=True)
    # Every logical folder the message has been seen in, `folder` first.
    folders = Column(MutableList.as_mutable(JSON), default=[], nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    is_starred = Column(Boolean, nullable=False, default=False)

    # Raw RFC822 bytes; parsing and rendering happen elsewhere.
    body = Column(LargeBinary, nullable=True)

    __table_args__ = (
        UniqueConstraint('account_id', 'remote_id', 'folder',
                         'generation'),
        UniqueConstraint('account_id', 'provider_id'),
        Index('ix_message_account_id_received_at', 'account_id',
              'received_at'),
    )

    @property
    def has_body(self):
        return self.body is not None

    def __repr__(self):
        return '<Message {}:{}:{}>'.format(self.account_id, self.folder,
                                           self.remote_id)
