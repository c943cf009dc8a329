"""
Machinery shared by the seeder and the forward and backfill crawlers.

A crawler runs one pass over one account. It owns nothing durable: progress
lives in the cursor store and messages go through the dedup store, so a pass
that dies halfway can simply be run again.

"""
from collections import namedtuple

import gevent
from gevent.pool import Pool

from mailcrawl.config import config
from mailcrawl.log import get_logger, log_uncaught_errors
from mailcrawl.models import Account
from mailcrawl.models.session import session_scope
from mailcrawl.mailsync import cursors, dedup
from mailcrawl.mailsync.exc import (TransientError, AuthenticationError,
                                    StructuralError, TerminalError, LeaseLost)
from mailcrawl.util.concurrency import retry, call_with_timeout


class PassResult(namedtuple('PassResult',
                            'direction created failures skipped completed '
                            'reopened')):
    """
    Outcome of one pass.

    created:   number of message records created
    failures:  folder type -> TransientError, for folders that failed
    skipped:   folder type -> StructuralError, for folders skipped
    completed: (backfill) every folder is now exhausted
    reopened:  (forward) a folder was seeded in place (newly enabled or
               renumbered), possibly reopening backfill
    """
    @property
    def ok(self):
        return not self.failures


class Crawler(object):
    direction = None

    def __init__(self, account_id, adapter, lease=None):
        self.account_id = account_id
        self.adapter = adapter
        self.lease = lease
        self.log = get_logger().new(account_id=account_id,
                                    provider=adapter.provider,
                                    direction=self.direction)
        self._refreshed = False

        self.call_timeout = config.get('ADAPTER_CALL_TIMEOUT', 60)
        self.retry_base_delay = config.get('RETRY_BASE_DELAY', 2)
        self.retry_max_delay = config.get('RETRY_MAX_DELAY', 60)
        self.retry_horizon = config.get('RETRY_HORIZON', 300)

    def _log_retry(self, exc):
        self.log.info('transient adapter error; backing off', error=str(exc))

    def _call_with_retry(self, fn, *args):
        def attempt():
            return call_with_timeout(
                self.call_timeout,
                TransientError('{} timed out after {}s'.format(
                    fn.__name__, self.call_timeout)),
                fn, *args)

        return retry(attempt, retry_classes=[TransientError],
                     exc_callback=self._log_retry,
                     backoff_delay=self.retry_base_delay,
                     max_delay=self.retry_max_delay,
                     horizon=self.retry_horizon)()

    def call(self, fn, *args):
        """
        Invoke an adapter method with a timeout, retrying transient errors
        with backoff until the retry horizon. An authentication error gets
        exactly one forced credential refresh; if that doesn't fix it the
        account is beyond automatic repair.

        """
        try:
            return self._call_with_retry(fn, *args)
        except AuthenticationError as exc:
            if self._refreshed:
                raise TerminalError(
                    'Authentication failed after credential refresh: '
                    '{}'.format(exc))
            self.log.info('authentication failed; refreshing credentials',
                          error=str(exc))
            self.refresh_credentials(force=True)
        try:
            return self._call_with_retry(fn, *args)
        except AuthenticationError as exc:
            raise TerminalError(
                'Authentication failed after credential refresh: '
                '{}'.format(exc))

    def refresh_credentials(self, force=False):
        """
        Make sure the adapter holds usable credentials before talking to the
        provider. A refresh that is itself refused is terminal.

        """
        if force:
            self._refreshed = True
        try:
            with session_scope(self.account_id) as db_session:
                account = db_session.get(Account, self.account_id)
                self._call_with_retry(
                    self.adapter.refresh_credentials_if_needed, account, force)
        except AuthenticationError as exc:
            raise TerminalError('Credential refresh failed: {}'.format(exc))

    def persist(self, folder_type, raw_messages, generation=0):
        current = cursors.folder_generation(self.account_id, folder_type)
        if current is not None and current != generation:
            # The folder was renumbered since this pass read its cursor;
            # these ids mean other messages now.
            self.log.info('folder renumbered during pass; dropping batch',
                          folder=folder_type, generation=generation,
                          current=current)
            self.renew_lease()
            return 0, []
        created, persisted = dedup.persist_messages(
            self.account_id, folder_type, raw_messages, generation)
        self.renew_lease()
        return created, persisted

    def renew_lease(self):
        """Raises LeaseLost if another worker has taken the pass over."""
        if self.lease is not None and not self.lease.renew():
            raise LeaseLost('{} lease of account {} lost'.format(
                self.direction, self.account_id))

    def run_folders(self, plans, fn):
        """
        Run `fn(plan)` for every plan, at most
        `adapter.max_parallel_folder_fetches()` at a time. A folder's
        failure never stops the others; a terminal error or a lost lease stops
        the account once the folders already in flight have finished.

        Returns (results, failures, skipped): folder type -> fn's return value
        for folders that succeeded, and the transient and structural errors
        of those that didn't.

        """
        results = {}
        failures = {}
        skipped = {}
        aborted = []

        def guarded(plan):
            if aborted:
                return
            try:
                results[plan.folder_type] = fn(plan)
            except StructuralError as exc:
                self.log.warning('folder skipped', folder=plan.folder_type,
                                 error=str(exc))
                skipped[plan.folder_type] = exc
            except TransientError as exc:
                self.log.warning('folder pass failed',
                                 folder=plan.folder_type, error=str(exc))
                failures[plan.folder_type] = exc
            except (TerminalError, LeaseLost) as exc:
                aborted.append(exc)
            except gevent.GreenletExit:
                raise
            except Exception as exc:
                log_uncaught_errors(self.log, folder=plan.folder_type)
                failures[plan.folder_type] = exc

        pool = Pool(self.adapter.max_parallel_folder_fetches())
        for plan in plans:
            pool.spawn(guarded, plan)
        pool.join()
        if aborted:
            raise aborted[0]
        return results, failures, skipped

    def enabled_folder_types(self):
        with session_scope(self.account_id) as db_session:
            account = db_session.get(Account, self.account_id)
            return account.enabled_folder_types

    def plan(self, folder_types):
        plans, missing = self.call(self.adapter.plan_folders, folder_types)
        for folder_type, exc in missing.items():
            self.log.warning('folder not found on remote; skipping',
                             folder=folder_type, tried=exc.tried)
        return plans, missing
