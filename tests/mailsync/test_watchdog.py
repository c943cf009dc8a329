from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from mailcrawl.models import Account, FolderCursor
from mailcrawl.mailsync.lease import Lease
from mailcrawl.mailsync.state import SyncStatus
from mailcrawl.mailsync.watchdog import Watchdog

from tests.util.base import make_account, message_count


@pytest.fixture
def watchdog(orchestrator):
    return Watchdog(orchestrator=orchestrator)


def set_account(db, account_id, **values):
    if values:
        db.session.execute(update(Account).where(Account.id == account_id)
                           .values(**values))
        db.session.commit()
    db.session.expire_all()
    return db.session.get(Account, account_id)


def hours_ago(n):
    return datetime.utcnow() - timedelta(hours=n)


def test_kickstart_seeds_pending_accounts(db, default_account, mailbox,
                                          watchdog):
    mailbox.add_messages('INBOX', [1, 2, 3])
    actions, resets = watchdog.run_once()
    assert actions == {default_account.id: ['seed']}
    assert resets == []

    db.session.expire_all()
    account = db.session.get(Account, default_account.id)
    assert account.sync_status == SyncStatus.syncing
    assert message_count(db, default_account.id) == 3


def test_fresh_accounts_are_left_alone(db, seeded_account, orchestrator,
                                       watchdog):
    orchestrator.forward(seeded_account.id)
    orchestrator.backfill(seeded_account.id)
    assert watchdog.plan() == ({}, [])


def test_stalled_forward_is_rescued(db, seeded_account, mailbox,
                                    orchestrator, watchdog):
    orchestrator.forward(seeded_account.id)
    orchestrator.backfill(seeded_account.id)
    set_account(db, seeded_account.id, last_forward_sync_at=hours_ago(1))
    mailbox.add_messages('INBOX', [110])

    actions, _ = watchdog.run_once()
    assert actions == {seeded_account.id: ['forward']}
    account = set_account(db, seeded_account.id)
    assert account.forward_cursor == 110
    assert account.last_forward_sync_at > hours_ago(1)


def test_stalled_backfill_is_rescued(db, seeded_account, orchestrator,
                                     watchdog):
    orchestrator.forward(seeded_account.id)
    set_account(db, seeded_account.id, sync_started_at=hours_ago(2),
                last_backfill_at=None)

    actions, _ = watchdog.run_once()
    assert actions == {seeded_account.id: ['backfill']}
    db.session.expire_all()
    assert db.session.get(Account, seeded_account.id).backfill_cursor == 95


def test_backfill_not_rescued_once_complete(db, seeded_account, orchestrator,
                                            watchdog):
    orchestrator.backfill_to_completion(seeded_account.id)
    set_account(db, seeded_account.id, last_forward_sync_at=hours_ago(3),
                last_backfill_at=hours_ago(3))
    actions, _ = watchdog.plan()
    assert actions == {seeded_account.id: ['forward']}


def test_never_synced_account_uses_seed_time(db, seeded_account, watchdog):
    # Just seeded: no forward pass has completed yet, but it isn't stalled.
    assert watchdog.plan() == ({}, [])
    assert watchdog.plan(now=datetime.utcnow() + timedelta(hours=1)) == \
        ({seeded_account.id: ['forward', 'backfill']}, [])


def test_stalled_seed_is_retried(db, mailbox, watchdog):
    account = make_account(db.session, sync_status=SyncStatus.seeding,
                           sync_started_at=hours_ago(1))
    recent = make_account(db.session, email_address='recent@example.com',
                          sync_status=SyncStatus.seeding,
                          sync_started_at=datetime.utcnow())
    mailbox.add_messages('INBOX', [1])

    actions, _ = watchdog.run_once()
    assert actions == {account.id: ['seed']}
    db.session.expire_all()
    assert db.session.get(Account, account.id).sync_status == \
        SyncStatus.syncing
    assert db.session.get(Account, recent.id).sync_status == \
        SyncStatus.seeding


def test_error_accounts_are_ignored(db, seeded_account, watchdog):
    set_account(db, seeded_account.id, sync_status=SyncStatus.error,
                last_forward_sync_at=hours_ago(5))
    assert watchdog.plan() == ({}, [])


def test_rescue_of_running_crawl_is_harmless(db, seeded_account, mailbox,
                                             watchdog):
    set_account(db, seeded_account.id, last_forward_sync_at=hours_ago(1))
    mailbox.add_messages('INBOX', [110])
    # Slow, not dead: the crawl still holds its lease.
    running = Lease(seeded_account.id, 'forward')
    assert running.acquire()

    actions, _ = watchdog.run_once()
    assert 'forward' in actions[seeded_account.id]
    account = set_account(db, seeded_account.id)
    assert account.forward_cursor == 109
    assert message_count(db, seeded_account.id) == 10


def test_one_failing_account_does_not_stop_others(db, mailbox, watchdog,
                                                  monkeypatch):
    first = make_account(db.session)
    second = make_account(db.session, email_address='second@example.com')
    mailbox.add_messages('INBOX', [1])

    seed = watchdog.orchestrator.seed

    def flaky_seed(account_id):
        if account_id == first.id:
            raise RuntimeError('boom')
        return seed(account_id)

    monkeypatch.setattr(watchdog.orchestrator, 'seed', flaky_seed)
    watchdog.run_once()
    db.session.expire_all()
    assert db.session.get(Account, second.id).sync_status == \
        SyncStatus.syncing


def test_reset_to_pending_policy(db, seeded_account, mailbox, watchdog):
    watchdog.reset_to_pending = True
    watchdog.reset_after = 3600
    set_account(db, seeded_account.id, last_forward_sync_at=hours_ago(2))

    actions, resets = watchdog.run_once()
    assert resets == [seeded_account.id]
    assert seeded_account.id not in actions
    account = set_account(db, seeded_account.id)
    assert account.sync_status == SyncStatus.pending
    assert account.forward_cursor is None
    assert account.backfill_cursor is None
    assert db.session.query(FolderCursor).filter(
        FolderCursor.account_id == seeded_account.id).count() == 0

    # The next sweep seeds it again; stored messages aren't duplicated.
    actions, _ = watchdog.run_once()
    assert actions == {seeded_account.id: ['seed']}
    account = set_account(db, seeded_account.id)
    assert account.sync_status == SyncStatus.syncing
    assert account.forward_cursor == 109
    assert message_count(db, seeded_account.id) == 10


def test_reset_policy_off_rescues_in_place(db, seeded_account, watchdog):
    set_account(db, seeded_account.id, last_forward_sync_at=hours_ago(48))
    actions, resets = watchdog.plan()
    assert resets == []
    assert 'forward' in actions[seeded_account.id]
