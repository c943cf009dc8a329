"""
The sync orchestrator: runs seed, forward and backfill passes for accounts
and turns their outcomes into state machine events.

Every pass runs under the (account, direction) lease. A second invocation for
the same account and direction while one is running, for example a watchdog
rescue of a crawl that was merely slow, finds the lease held and returns
None straight away.

"""
from datetime import datetime

import gevent
from gevent.pool import Pool

from mailcrawl.config import config
from mailcrawl.log import get_logger, log_uncaught_errors
from mailcrawl.models import Account
from mailcrawl.models.session import session_scope
from mailcrawl.mailsync import cursors
from mailcrawl.mailsync.backends import adapter_for
from mailcrawl.mailsync.backfill import BackfillCrawler
from mailcrawl.mailsync.exc import (SyncError, StructuralError,
                                    TerminalError, LeaseLost)
from mailcrawl.mailsync.forward import ForwardCrawler
from mailcrawl.mailsync.lease import sync_lease
from mailcrawl.mailsync.seed import Seeder
from mailcrawl.mailsync.state import (SyncStatus, SyncEvent, TRANSITIONS,
                                      apply_event)


class SyncOrchestrator(object):
    """
    Parameters
    ----------
    adapter_factory: callable, optional
        Builds the provider adapter for an Account. Defaults to the backend
        registry's `adapter_for`.

    """
    crawler_cls = {'seed': Seeder,
                   'forward': ForwardCrawler,
                   'backfill': BackfillCrawler}

    # The event a failing pass escalates to once failures are exhausted.
    failure_event = {'seed': SyncEvent.seed_failed,
                     'forward': SyncEvent.failures_exhausted,
                     'backfill': SyncEvent.failures_exhausted}

    def __init__(self, adapter_factory=None):
        self.adapter_factory = adapter_factory or adapter_for
        self.max_failures = config.get('MAX_CONSECUTIVE_FAILURES', 5)
        self.max_concurrent_accounts = config.get('MAX_CONCURRENT_ACCOUNTS',
                                                  50)
        self.log = get_logger()

    def seed(self, account_id):
        return self._execute(account_id, 'seed')

    def forward(self, account_id):
        return self._execute(account_id, 'forward')

    def backfill(self, account_id):
        return self._execute(account_id, 'backfill')

    def backfill_to_completion(self, account_id, max_passes=None):
        """
        Run backfill passes back to back until the account's backfill is
        complete, a pass fails or doesn't run, or `max_passes` is reached.
        Returns the number of passes run.

        """
        passes = 0
        while max_passes is None or passes < max_passes:
            result = self.backfill(account_id)
            if result is None:
                break
            passes += 1
            if result.completed or not result.ok:
                break
        return passes

    def sync_account(self, account_id):
        """Run whatever the account's state calls for next."""
        with session_scope(account_id) as db_session:
            account = db_session.get(Account, account_id)
            if account is None:
                return
            status = account.sync_status
            backfill_complete = account.backfill_complete

        if status in (SyncStatus.pending, SyncStatus.seeding):
            self.seed(account_id)
        elif status in (SyncStatus.syncing, SyncStatus.active):
            self.forward(account_id)
            if not backfill_complete:
                self.backfill(account_id)

    def trigger_forward_async(self, account_id):
        """Start a forward pass without waiting for it."""
        return gevent.spawn(self.forward, account_id)

    def run_accounts(self, account_ids, fn=None):
        """
        Run `fn(account_id)` (default `sync_account`) for every account, many
        at once. One account's failure never stops the others.

        """
        fn = fn or self.sync_account

        def isolated(account_id):
            try:
                fn(account_id)
            except gevent.GreenletExit:
                raise
            except Exception:
                log_uncaught_errors(self.log, account_id=account_id)

        pool = Pool(self.max_concurrent_accounts)
        for account_id in account_ids:
            pool.spawn(isolated, account_id)
        pool.join()

    def subscribe_push(self, account_id):
        """
        Register the account for provider change notifications if its adapter
        supports them. Failure is logged; polling still covers the account.

        """
        try:
            adapter = self._build_adapter(account_id)
        except TerminalError:
            return None
        try:
            if not adapter.supports_push():
                return None
            with session_scope(account_id) as db_session:
                account = db_session.get(Account, account_id)
                return adapter.subscribe_to_change_notifications(account)
        except SyncError as exc:
            self.log.warning('push subscription failed', account_id=account_id,
                             error=str(exc))
            return None
        finally:
            adapter.close()

    # Internals.

    def _build_adapter(self, account_id):
        with session_scope(account_id) as db_session:
            account = db_session.get(Account, account_id)
            return self.adapter_factory(account)

    def _may_run(self, account_id, direction):
        with session_scope(account_id) as db_session:
            account = db_session.get(Account, account_id)
            if account is None:
                self.log.warning('no such account', account_id=account_id)
                return False
            if direction == 'seed':
                if account.sync_status == SyncStatus.pending:
                    apply_event(account, SyncEvent.seed_started)
                elif account.sync_status == SyncStatus.seeding:
                    # Retrying a seed; restart the stall clock.
                    account.sync_started_at = datetime.utcnow()
                else:
                    return False
                return True
            if not account.is_crawlable:
                return False
            if direction == 'backfill' and account.backfill_complete:
                return False
            return True

    def _execute(self, account_id, direction):
        with sync_lease(account_id, direction) as lease:
            if lease is None:
                self.log.debug('pass already running', account_id=account_id,
                               direction=direction)
                return None
            if not self._may_run(account_id, direction):
                return None
            adapter = None
            try:
                adapter = self._build_adapter(account_id)
                crawler = self.crawler_cls[direction](account_id, adapter,
                                                      lease=lease)
                crawler.refresh_credentials()
                result = crawler.run()
            except LeaseLost as exc:
                # Not a failure of the account; the new holder carries on.
                self.log.warning('pass abandoned', account_id=account_id,
                                 direction=direction, error=str(exc))
                return None
            except TerminalError as exc:
                self.log.error('terminal sync error', account_id=account_id,
                               direction=direction, error=str(exc))
                self._fail(account_id, exc, SyncEvent.terminal_error,
                           immediate=True)
                return None
            except StructuralError as exc:
                self.log.warning('pass failed', account_id=account_id,
                                 direction=direction, error=str(exc))
                # Can't seed without the primary folder.
                self._fail(account_id, exc, self.failure_event[direction],
                           immediate=direction == 'seed')
                return None
            except SyncError as exc:
                self.log.warning('pass failed', account_id=account_id,
                                 direction=direction, error=str(exc))
                self._fail(account_id, exc, self.failure_event[direction])
                return None
            except gevent.GreenletExit:
                raise
            except Exception as exc:
                log_uncaught_errors(self.log, account_id=account_id,
                                    direction=direction)
                self._fail(account_id, exc, self.failure_event[direction])
                return None
            finally:
                if adapter is not None:
                    adapter.close()
            self._complete(account_id, result)

        if direction == 'seed':
            self.subscribe_push(account_id)
        return result

    def _fail(self, account_id, exc, event, immediate=False):
        with session_scope(account_id) as db_session:
            account = db_session.get(Account, account_id)
            if account is None:
                return
            failures = account.record_pass_failure(exc)
            if not immediate and failures < self.max_failures:
                return
            if (account.sync_status, event) in TRANSITIONS:
                apply_event(account, event)

    def _complete(self, account_id, result):
        with session_scope(account_id) as db_session:
            account = db_session.get(Account, account_id)
            if account is None:
                return
            status = account.sync_status

            if result.direction == 'seed':
                account.record_pass_success()
                if status == SyncStatus.seeding:
                    apply_event(account, SyncEvent.seed_succeeded)
                return

            if result.ok:
                account.record_pass_success()
            else:
                error = next(iter(result.failures.values()))
                failures = account.record_pass_failure(error)
                if failures >= self.max_failures and \
                        (status, SyncEvent.failures_exhausted) in TRANSITIONS:
                    apply_event(account, SyncEvent.failures_exhausted)
                    return

            if result.direction == 'forward' and result.reopened and \
                    account.backfill_complete and \
                    not cursors.all_exhausted(db_session, account_id,
                                              account.enabled_folder_types):
                account.backfill_complete = False
                if status == SyncStatus.active:
                    apply_event(account, SyncEvent.backfill_reopened)

            if result.direction == 'backfill' and result.completed and \
                    status == SyncStatus.syncing:
                account.backfill_complete = True
                apply_event(account, SyncEvent.backfill_completed)
