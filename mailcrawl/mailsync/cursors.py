"""
Durable crawl progress.

Each logical folder of an account has a forward cursor (highest remote id
ingested) and a backfill cursor (lowest remote id ingested). The account
carries the summary: the max of its folders' forward cursors and the min of
their backfill cursors.

Every write here is a compare-and-advance: a conditional UPDATE that only
matches if the new value is strictly past the stored one. Two crawls of the
same folder racing each other (a scheduled pass and a rescue, say) can
therefore never move a cursor backwards, whatever order they finish in.
The exception is `reset_folder`, for when the remote renumbers a folder;
writes from a crawl that started before the reset carry the old generation
and match nothing.

"""
from datetime import datetime

from sqlalchemy import update, or_, func
from sqlalchemy.exc import IntegrityError

from mailcrawl.models import Account, FolderCursor, Message
from mailcrawl.models.session import session_scope
from mailcrawl.log import get_logger
log = get_logger()


def _execute(db_session, stmt):
    result = db_session.execute(
        stmt.execution_options(synchronize_session=False))
    return result.rowcount > 0


def get_or_create_folder_cursor(account_id, folder_type, folder_name=None):
    """
    Make sure the folder has a cursor row. Returns the folder's generation.

    A new row starts at the newest generation of the folder's stored
    messages, so a folder re-seeded after an operator reset never files new
    messages under the ids of an older generation.

    """
    with session_scope(account_id) as db_session:
        existing = db_session.query(FolderCursor.id,
                                    FolderCursor.generation).filter(
            FolderCursor.account_id == account_id,
            FolderCursor.folder_type == folder_type).first()
        if existing is not None:
            if folder_name is not None:
                _execute(db_session, update(FolderCursor).where(
                    FolderCursor.id == existing[0]).values(
                        folder_name=folder_name))
            return existing[1]
        generation = db_session.query(func.max(Message.generation)).filter(
            Message.account_id == account_id,
            Message.folder == folder_type).scalar() or 0
    try:
        with session_scope(account_id) as db_session:
            db_session.add(FolderCursor(account_id=account_id,
                                        folder_type=folder_type,
                                        folder_name=folder_name,
                                        generation=generation))
    except IntegrityError:
        # Somebody else got there first.
        return get_or_create_folder_cursor(account_id, folder_type)
    return generation


def folder_cursors(account_id):
    """
    A detached snapshot of the account's folder cursors, as a dict of
    folder type to FolderCursor.

    """
    with session_scope(account_id) as db_session:
        cursors = db_session.query(FolderCursor).filter(
            FolderCursor.account_id == account_id).all()
        for cursor in cursors:
            db_session.expunge(cursor)
    return {c.folder_type: c for c in cursors}


def _folder(account_id, folder_type, generation=None):
    clauses = [FolderCursor.account_id == account_id,
               FolderCursor.folder_type == folder_type]
    if generation is not None:
        # Progress made under an older generation is meaningless now.
        clauses.append(FolderCursor.generation == generation)
    return clauses


def advance_forward(db_session, account_id, folder_type, value,
                    generation=None):
    """
    Move the folder's forward cursor (and the account's, if it's behind) up
    to `value`. Returns True if the folder cursor moved.

    """
    moved = _execute(db_session, update(FolderCursor).where(
        *_folder(account_id, folder_type, generation),
        or_(FolderCursor.forward_cursor.is_(None),
            FolderCursor.forward_cursor < value)).values(
                forward_cursor=value))
    if moved:
        _execute(db_session, update(Account).where(
            Account.id == account_id,
            or_(Account.forward_cursor.is_(None),
                Account.forward_cursor < value)).values(forward_cursor=value))
        log.debug('forward cursor advanced', account_id=account_id,
                  folder=folder_type, cursor=value)
    return moved


def retreat_backfill(db_session, account_id, folder_type, value,
                     generation=None):
    """
    Move the folder's backfill cursor (and the account's, if it's ahead)
    down to `value`. Returns True if the folder cursor moved.

    """
    moved = _execute(db_session, update(FolderCursor).where(
        *_folder(account_id, folder_type, generation),
        or_(FolderCursor.backfill_cursor.is_(None),
            FolderCursor.backfill_cursor > value)).values(
                backfill_cursor=value))
    if moved:
        _execute(db_session, update(Account).where(
            Account.id == account_id,
            or_(Account.backfill_cursor.is_(None),
                Account.backfill_cursor > value)).values(
                    backfill_cursor=value))
        log.debug('backfill cursor retreated', account_id=account_id,
                  folder=folder_type, cursor=value)
    return moved


def mark_exhausted(db_session, account_id, folder_type, generation=None):
    return _execute(db_session, update(FolderCursor).where(
        *_folder(account_id, folder_type, generation),
        FolderCursor.backfill_exhausted.is_(False)).values(
            backfill_exhausted=True))


def record_uidvalidity(db_session, account_id, folder_type, uidvalidity):
    """Remember the id-space marker the folder's cursors are valid for."""
    if uidvalidity is None:
        return False
    return _execute(db_session, update(FolderCursor).where(
        *_folder(account_id, folder_type),
        FolderCursor.uidvalidity.is_(None)).values(uidvalidity=uidvalidity))


def reset_folder(db_session, account_id, folder_type, generation,
                 uidvalidity=None):
    """
    The remote reassigned the folder's ids: forget both cursors, reopen its
    backfill and start a new generation. Only the first of several passes
    noticing the same reset gets True; the account's summary cursors are
    left alone.

    """
    reset = _execute(db_session, update(FolderCursor).where(
        *_folder(account_id, folder_type, generation)).values(
            forward_cursor=None,
            backfill_cursor=None,
            backfill_exhausted=False,
            uidvalidity=uidvalidity,
            generation=generation + 1))
    if reset:
        log.warning('remote ids reassigned; folder cursors reset',
                    account_id=account_id, folder=folder_type,
                    generation=generation + 1, uidvalidity=uidvalidity)
    return reset


def touch(db_session, account_id, folder_type, direction, when=None):
    """Record that `direction` completed a pass over the folder."""
    when = when or datetime.utcnow()
    column = 'last_forward_sync_at' if direction == 'forward' \
        else 'last_backfill_at'
    _execute(db_session, update(FolderCursor).where(
        FolderCursor.account_id == account_id,
        FolderCursor.folder_type == folder_type).values({column: when}))


def touch_account(db_session, account_id, direction, when=None):
    """Liveness: `direction` completed a pass without transient failures."""
    when = when or datetime.utcnow()
    column = 'last_forward_sync_at' if direction == 'forward' \
        else 'last_backfill_at'
    _execute(db_session, update(Account).where(
        Account.id == account_id).values({column: when}))


def all_exhausted(db_session, account_id, folder_types):
    """
    True if every folder in `folder_types` that has been seeded has nothing
    left to backfill. Folders without a cursor (never resolvable) don't hold
    up completion.

    """
    remaining = db_session.query(FolderCursor.id).filter(
        FolderCursor.account_id == account_id,
        FolderCursor.folder_type.in_(list(folder_types)),
        FolderCursor.forward_cursor.isnot(None),
        FolderCursor.backfill_exhausted.is_(False)).first()
    return remaining is None


def folder_generation(account_id, folder_type):
    """The folder's current generation, or None if it has no cursor yet."""
    with session_scope(account_id) as db_session:
        row = db_session.query(FolderCursor.generation).filter(
            FolderCursor.account_id == account_id,
            FolderCursor.folder_type == folder_type).first()
    return row[0] if row is not None else None
