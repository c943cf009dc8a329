"""
The account sync state machine.

    Pending --seed_started--> Seeding --seed_succeeded--> Syncing
                                 |                          |  ^
                            seed_failed       backfill_completed | backfill_reopened
                                 v                          v  |
                               Error <--failures_exhausted-- Active

`Error` is only left through an operator reset, which sends the account back
to `Pending`. `stall_reset` is the optional policy that regresses a stalled
`Syncing`/`Active` account to `Pending` instead of rescuing it in place.

Every status change goes through `apply_event`, which refuses any pair not
in TRANSITIONS and checks the account-level invariants afterwards.

"""
import enum
from datetime import datetime

from mailcrawl.mailsync.exc import InvalidTransition
from mailcrawl.log import get_logger
log = get_logger()


class SyncStatus(enum.Enum):
    pending = 'pending'
    seeding = 'seeding'
    syncing = 'syncing'
    active = 'active'
    error = 'error'


class SyncEvent(enum.Enum):
    seed_started = 'seed_started'
    seed_succeeded = 'seed_succeeded'
    seed_failed = 'seed_failed'
    backfill_completed = 'backfill_completed'
    backfill_reopened = 'backfill_reopened'
    failures_exhausted = 'failures_exhausted'
    terminal_error = 'terminal_error'
    stall_reset = 'stall_reset'
    operator_reset = 'operator_reset'


S = SyncStatus
E = SyncEvent

TRANSITIONS = {
    (S.pending, E.seed_started): S.seeding,
    (S.seeding, E.seed_succeeded): S.syncing,
    (S.seeding, E.seed_failed): S.error,
    (S.seeding, E.terminal_error): S.error,
    (S.syncing, E.backfill_completed): S.active,
    (S.active, E.backfill_reopened): S.syncing,
    (S.syncing, E.failures_exhausted): S.error,
    (S.active, E.failures_exhausted): S.error,
    (S.syncing, E.terminal_error): S.error,
    (S.active, E.terminal_error): S.error,
    (S.syncing, E.stall_reset): S.pending,
    (S.active, E.stall_reset): S.pending,
}
for _state in SyncStatus:
    TRANSITIONS[(_state, E.operator_reset)] = S.pending

# States in which the crawlers are allowed to run.
CRAWLABLE = (S.syncing, S.active)


def next_state(state, event):
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(state, event)


def invariant_violations(account):
    """
    Return a list of human-readable descriptions of the ways `account`
    is in an illegal state. An empty list means the account is consistent.

    """
    violations = []
    status = account.sync_status
    if status in (S.pending, S.seeding) and account.backfill_complete:
        violations.append('backfill_complete set while {}'.format(
            status.value))
    if status == S.active and not account.backfill_complete:
        violations.append('active without backfill_complete')
    if status == S.pending and (account.forward_cursor is not None or
                                account.backfill_cursor is not None):
        violations.append('cursors set while pending')
    if (account.forward_cursor is not None and
            account.backfill_cursor is not None and
            account.backfill_cursor > account.forward_cursor):
        violations.append('backfill_cursor above forward_cursor')
    return violations


def clear_sync_progress(account):
    """Forget all crawl progress so the account can be seeded again."""
    account.forward_cursor = None
    account.backfill_cursor = None
    account.backfill_complete = False
    account.last_forward_sync_at = None
    account.last_backfill_at = None
    account.consecutive_failures = 0
    for cursor in list(account.folder_cursors):
        account.folder_cursors.remove(cursor)


def apply_event(account, event):
    """
    Move `account` along the edge labelled `event`.

    Raises InvalidTransition if the edge doesn't exist, and AssertionError if
    the account ends up violating an invariant; callers are expected to have
    set up the non-status fields before applying the event.

    """
    old = account.sync_status
    new = next_state(old, event)
    account.sync_status = new
    if new == S.seeding:
        account.sync_started_at = datetime.utcnow()
    violations = invariant_violations(account)
    if violations:
        account.sync_status = old
        raise AssertionError('Account {} would be inconsistent after {}: {}'
                             .format(account.id, event.value,
                                     '; '.join(violations)))
    log.info('sync status changed', account_id=account.id,
             old=old.value, new=new.value, sync_event=event.value)
    return new
