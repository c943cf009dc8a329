from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from mailcrawl.models import Account
from mailcrawl.mailsync.scheduler import PollScheduler
from mailcrawl.mailsync.state import SyncStatus

from tests.util.base import make_account, message_count


@pytest.fixture
def scheduler(orchestrator):
    return PollScheduler(orchestrator=orchestrator)


def test_due_for_forward(db, seeded_account, orchestrator, scheduler):
    pending = make_account(db.session, email_address='new@example.com')
    # Seeded but never forward-synced.
    assert scheduler.due_for_forward() == [seeded_account.id]

    orchestrator.forward(seeded_account.id)
    assert scheduler.due_for_forward() == []
    later = datetime.utcnow() + timedelta(seconds=121)
    assert scheduler.due_for_forward(now=later) == [seeded_account.id]
    assert pending.id not in scheduler.due_for_forward(now=later)


def test_due_for_backfill(db, seeded_account, orchestrator, scheduler):
    assert scheduler.due_for_backfill() == [seeded_account.id]
    orchestrator.backfill(seeded_account.id)
    assert scheduler.due_for_backfill() == []
    later = datetime.utcnow() + timedelta(seconds=301)
    assert scheduler.due_for_backfill(now=later) == [seeded_account.id]

    scheduler.backfill_continuous = True
    assert scheduler.due_for_backfill() == [seeded_account.id]


def test_complete_accounts_are_not_backfilled(db, seeded_account,
                                              orchestrator, scheduler):
    orchestrator.backfill_to_completion(seeded_account.id)
    db.session.expire_all()
    assert db.session.get(Account, seeded_account.id).sync_status == \
        SyncStatus.active
    scheduler.backfill_continuous = True
    assert scheduler.due_for_backfill() == []
    # Active accounts are still polled.
    later = datetime.utcnow() + timedelta(hours=1)
    assert scheduler.due_for_forward(now=later) == [seeded_account.id]


def test_error_accounts_are_not_polled(db, seeded_account, scheduler):
    db.session.execute(update(Account).where(
        Account.id == seeded_account.id).values(sync_status=SyncStatus.error))
    db.session.commit()
    assert scheduler.due_for_forward() == []
    assert scheduler.due_for_backfill() == []


def test_run_once(db, seeded_account, mailbox, scheduler):
    mailbox.add_messages('INBOX', [110, 111])
    forward, backfill = scheduler.run_once()
    assert forward == [seeded_account.id]
    assert backfill == [seeded_account.id]
    # Two new messages forward, five old ones backfilled.
    assert message_count(db, seeded_account.id) == 17

    assert scheduler.run_once() == ([], [])
