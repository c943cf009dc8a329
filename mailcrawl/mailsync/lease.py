"""
Per-account, per-direction mutual exclusion.

A lease is a row in the `synclease` table naming its holder and an expiry.
Acquiring takes over a row that has expired (or that we already hold) with a
conditional UPDATE, or inserts a fresh one; the unique constraint on
(account, direction) means two workers can't both insert. A crashed holder's
lease simply runs out.

"""
import os
import socket
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import update, delete, or_
from sqlalchemy.exc import IntegrityError

from mailcrawl.config import config
from mailcrawl.models import SyncLease
from mailcrawl.models.session import session_scope
from mailcrawl.log import get_logger
log = get_logger()

DIRECTIONS = ('seed', 'forward', 'backfill')


def process_identifier():
    return '{}:{}'.format(socket.gethostname(), os.getpid())


class Lease(object):
    def __init__(self, account_id, direction, ttl=None, holder=None):
        assert direction in DIRECTIONS, direction
        self.account_id = account_id
        self.direction = direction
        self.ttl = ttl or config.get('LEASE_TTL', 600)
        self.holder = holder or '{}:{}'.format(process_identifier(),
                                               uuid.uuid4().hex[:8])
        self.held = False

    def _expiry(self):
        return datetime.utcnow() + timedelta(seconds=self.ttl)

    def acquire(self):
        """Returns True if we now hold the lease."""
        now = datetime.utcnow()
        try:
            with session_scope(self.account_id) as db_session:
                taken = db_session.execute(update(SyncLease).where(
                    SyncLease.account_id == self.account_id,
                    SyncLease.direction == self.direction,
                    or_(SyncLease.expires_at < now,
                        SyncLease.holder == self.holder)).values(
                            holder=self.holder, expires_at=self._expiry())
                    .execution_options(synchronize_session=False))
                if taken.rowcount:
                    self.held = True
                    return True
                existing = db_session.query(SyncLease.holder).filter(
                    SyncLease.account_id == self.account_id,
                    SyncLease.direction == self.direction).first()
                if existing is not None:
                    log.debug('lease held elsewhere',
                              account_id=self.account_id,
                              direction=self.direction, holder=existing[0])
                    return False
                db_session.add(SyncLease(account_id=self.account_id,
                                         direction=self.direction,
                                         holder=self.holder,
                                         expires_at=self._expiry()))
        except IntegrityError:
            return False
        self.held = True
        return True

    def renew(self):
        """Push the expiry out again. Returns False if the lease was lost
        (it expired and somebody else took it)."""
        with session_scope(self.account_id) as db_session:
            renewed = db_session.execute(update(SyncLease).where(
                SyncLease.account_id == self.account_id,
                SyncLease.direction == self.direction,
                SyncLease.holder == self.holder).values(
                    expires_at=self._expiry())
                .execution_options(synchronize_session=False))
            self.held = renewed.rowcount > 0
        if not self.held:
            log.warning('lease lost', account_id=self.account_id,
                        direction=self.direction)
        return self.held

    def release(self):
        with session_scope(self.account_id) as db_session:
            db_session.execute(delete(SyncLease).where(
                SyncLease.account_id == self.account_id,
                SyncLease.direction == self.direction,
                SyncLease.holder == self.holder)
                .execution_options(synchronize_session=False))
        self.held = False


@contextmanager
def sync_lease(account_id, direction, ttl=None):
    """
    Hold the (account, direction) lease for the duration of the block.
    Yields the Lease if it was acquired and None if somebody else holds it.

    """
    lease = Lease(account_id, direction, ttl=ttl)
    if not lease.acquire():
        yield None
        return
    try:
        yield lease
    finally:
        lease.release()
