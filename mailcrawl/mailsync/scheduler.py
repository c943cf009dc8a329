"""
The poll scheduler: runs forward passes for accounts whose last one is older
than FORWARD_INTERVAL, and backfill passes for incomplete accounts every
BACKFILL_INTERVAL (or every poll with BACKFILL_CONTINUOUS set).

"""
from datetime import datetime

import gevent
from sqlalchemy import or_

from mailcrawl.config import config
from mailcrawl.log import get_logger
from mailcrawl.models import Account
from mailcrawl.models.session import session_scope
from mailcrawl.util.concurrency import retry_with_logging
from mailcrawl.util.misc import older_than
from mailcrawl.mailsync.service import SyncOrchestrator
from mailcrawl.mailsync.state import SyncStatus, CRAWLABLE


class PollScheduler(gevent.Greenlet):
    def __init__(self, orchestrator=None, poll_interval=None):
        self.orchestrator = orchestrator or SyncOrchestrator()
        self.poll_interval = poll_interval or \
            config.get('SCHEDULER_POLL_INTERVAL', 15)
        self.forward_interval = config.get('FORWARD_INTERVAL', 120)
        self.backfill_interval = config.get('BACKFILL_INTERVAL', 300)
        self.backfill_continuous = config.get('BACKFILL_CONTINUOUS', False)
        self.log = get_logger().new(component='scheduler')
        gevent.Greenlet.__init__(self)

    def _run(self):
        self.log.info('starting poll scheduler',
                      poll_interval=self.poll_interval)
        while True:
            retry_with_logging(self.run_once, self.log)
            gevent.sleep(self.poll_interval)

    def due_for_forward(self, now=None):
        now = now or datetime.utcnow()
        with session_scope() as db_session:
            rows = db_session.query(Account.id, Account.last_forward_sync_at) \
                .filter(Account.sync_status.in_(CRAWLABLE)).all()
        return [account_id for account_id, last in rows
                if older_than(last, self.forward_interval, now)]

    def due_for_backfill(self, now=None):
        now = now or datetime.utcnow()
        with session_scope() as db_session:
            rows = db_session.query(Account.id, Account.last_backfill_at) \
                .filter(Account.sync_status == SyncStatus.syncing,
                        or_(Account.backfill_complete.is_(False),
                            Account.backfill_complete.is_(None))).all()
        if self.backfill_continuous:
            return [account_id for account_id, _ in rows]
        return [account_id for account_id, last in rows
                if older_than(last, self.backfill_interval, now)]

    def run_forward_sync(self):
        """Forward passes for every account due a poll."""
        account_ids = self.due_for_forward()
        self.orchestrator.run_accounts(account_ids, self.orchestrator.forward)
        return account_ids

    def run_backfill_sweep(self):
        account_ids = self.due_for_backfill()
        self.orchestrator.run_accounts(account_ids,
                                       self.orchestrator.backfill)
        return account_ids

    def run_once(self):
        forward = self.run_forward_sync()
        backfill = self.run_backfill_sweep()
        if forward or backfill:
            self.log.debug('scheduled passes run', forward=len(forward),
                           backfill=len(backfill))
        return forward, backfill
