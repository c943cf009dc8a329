"""
The watchdog sweep: start brand-new accounts and rescue stalled ones.

A pass looks at every account once:

* Pending accounts are seeded (kickstart).
* Seeding accounts whose seed started longer ago than the stall threshold
  are seeded again; their seed died or failed transiently.
* Syncing and Active accounts whose forward (or, while backfill is
  incomplete, backfill) liveness timestamp is older than the stall threshold
  get that crawler re-invoked.

Rescuing a crawl that is in fact still running is harmless: the rescue finds
the lease held and does nothing, and should the lease have expired in the
meantime, cursors only ever move by compare-and-advance.

With RESCUE_RESET_TO_PENDING set, an account stalled for longer than
RESCUE_RESET_AFTER seconds is instead reset to Pending and seeded from
scratch on a later pass.

"""
from datetime import datetime

import gevent

from mailcrawl.config import config
from mailcrawl.log import get_logger
from mailcrawl.models import Account
from mailcrawl.models.session import session_scope
from mailcrawl.util.concurrency import retry_with_logging
from mailcrawl.util.misc import older_than
from mailcrawl.mailsync.service import SyncOrchestrator
from mailcrawl.mailsync.state import (SyncStatus, SyncEvent, apply_event,
                                      clear_sync_progress)


class Watchdog(gevent.Greenlet):
    def __init__(self, orchestrator=None, interval=None):
        self.orchestrator = orchestrator or SyncOrchestrator()
        self.interval = interval or config.get('WATCHDOG_INTERVAL', 60)
        multiplier = config.get('STALL_MULTIPLIER', 3)
        self.forward_stall = multiplier * config.get('FORWARD_INTERVAL', 120)
        self.backfill_stall = multiplier * config.get('BACKFILL_INTERVAL',
                                                      300)
        self.reset_to_pending = config.get('RESCUE_RESET_TO_PENDING', False)
        self.reset_after = config.get('RESCUE_RESET_AFTER', 86400)
        self.log = get_logger().new(component='watchdog')
        gevent.Greenlet.__init__(self)

    def _run(self):
        self.log.info('starting watchdog', interval=self.interval)
        while True:
            retry_with_logging(self.run_once, self.log)
            gevent.sleep(self.interval)

    def plan(self, now=None):
        """
        Decide what this pass does. Returns (actions, resets): a dict of
        account id to the list of directions to run for it, and the ids of
        accounts to reset to Pending.

        """
        now = now or datetime.utcnow()
        actions = {}
        resets = []
        with session_scope() as db_session:
            rows = db_session.query(
                Account.id, Account.sync_status, Account.backfill_complete,
                Account.last_forward_sync_at, Account.last_backfill_at,
                Account.sync_started_at).filter(
                    Account.sync_status != SyncStatus.error).all()

        for (account_id, status, backfill_complete, last_forward,
             last_backfill, started) in rows:
            if status == SyncStatus.pending:
                actions[account_id] = ['seed']
                continue
            if status == SyncStatus.seeding:
                if older_than(started, self.forward_stall, now):
                    actions[account_id] = ['seed']
                continue

            forward_seen = last_forward or started
            if self.reset_to_pending and \
                    older_than(forward_seen, self.reset_after, now):
                resets.append(account_id)
                continue

            directions = []
            if older_than(forward_seen, self.forward_stall, now):
                directions.append('forward')
            if not backfill_complete and \
                    older_than(last_backfill or started, self.backfill_stall,
                               now):
                directions.append('backfill')
            if directions:
                actions[account_id] = directions
        return actions, resets

    def reset_stalled(self, account_id):
        with session_scope(account_id) as db_session:
            account = db_session.get(Account, account_id)
            if account is None or not account.is_crawlable:
                return False
            clear_sync_progress(account)
            apply_event(account, SyncEvent.stall_reset)
        self.log.warning('stalled account reset to pending',
                         account_id=account_id)
        return True

    def run_once(self):
        """One sweep ("kick the watchdog"). Returns what it decided to do."""
        actions, resets = self.plan()
        for account_id in resets:
            self.reset_stalled(account_id)

        def rescue(account_id):
            for direction in actions[account_id]:
                if direction != 'seed':
                    self.log.info('rescuing stalled crawl',
                                  account_id=account_id, direction=direction)
                getattr(self.orchestrator, direction)(account_id)

        self.orchestrator.run_accounts(sorted(actions), rescue)
        if actions or resets:
            self.log.info('watchdog pass done', accounts=len(actions),
                          resets=len(resets))
        return actions, resets
