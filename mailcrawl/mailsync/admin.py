"""
Operator actions. These are plain data changes on the account; the crawlers
pick them up on their next pass.

"""
from sqlalchemy import delete

from mailcrawl.log import get_logger
from mailcrawl.models import Account, Message, SyncLease
from mailcrawl.models.session import session_scope
from mailcrawl.providers import provider_info, FOLDER_TYPES, PRIMARY_FOLDER
from mailcrawl.mailsync.exc import AccountNotFound
from mailcrawl.mailsync.backends.imap.pool import dispose_pool
from mailcrawl.mailsync.state import (SyncStatus, SyncEvent, apply_event,
                                      clear_sync_progress)
log = get_logger()


def _get(db_session, account_id):
    account = db_session.get(Account, account_id)
    if account is None:
        raise AccountNotFound(account_id)
    return account


def register_account(email_address, provider, credentials,
                     disabled_folders=None):
    """
    Create the account in Pending, or update the credentials of an existing
    account with the same address and provider. Returns the account id.

    Raises NotSupportedError for an unknown provider.

    """
    provider_info(provider)
    with session_scope() as db_session:
        account = db_session.query(Account).filter(
            Account.email_address == email_address,
            Account.provider == provider).first()
        if account is None:
            account = Account(provider=provider,
                              sync_status=SyncStatus.pending)
            account.email_address = email_address
            account.disabled_folders = list(disabled_folders or [])
            db_session.add(account)
            log.info('registered account', email=email_address,
                     provider=provider)
        else:
            log.info('updating credentials of existing account',
                     account_id=account.id)
        account.credentials = dict(credentials or {})
        db_session.flush()
        return account.id


def reset_account(account_id, purge_messages=False):
    """
    Send the account back to Pending with all crawl progress forgotten, so
    the watchdog seeds it again. Works from any state; this is the only way
    out of Error.

    Messages already stored are kept unless `purge_messages` is set; the
    dedup store keeps the re-seed from duplicating them.

    """
    with session_scope(account_id) as db_session:
        account = _get(db_session, account_id)
        clear_sync_progress(account)
        account.update_sync_error(None)
        apply_event(account, SyncEvent.operator_reset)
        if purge_messages:
            db_session.execute(delete(Message).where(
                Message.account_id == account_id))
    log.info('account reset', account_id=account_id,
             purged_messages=purge_messages)


def list_sync_status(account_id=None):
    """Status summaries for one account, or for all of them."""
    with session_scope(account_id) as db_session:
        query = db_session.query(Account)
        if account_id is not None:
            _get(db_session, account_id)
            query = query.filter(Account.id == account_id)
        return [account.status_summary
                for account in query.order_by(Account.id)]


def set_folder_enabled(account_id, folder_type, enabled):
    """
    Include or exclude a logical folder type from sync. The primary folder
    can't be disabled.

    A newly enabled folder is seeded by the next forward pass. Re-enabling a
    folder whose history wasn't fully backfilled reopens the account's
    backfill.

    """
    if folder_type not in FOLDER_TYPES:
        raise ValueError('Unknown folder type {!r}'.format(folder_type))
    if folder_type == PRIMARY_FOLDER and not enabled:
        raise ValueError("The {} folder can't be disabled".format(
            PRIMARY_FOLDER))

    with session_scope(account_id) as db_session:
        account = _get(db_session, account_id)
        disabled = [f for f in (account.disabled_folders or [])
                    if f != folder_type]
        if not enabled:
            disabled.append(folder_type)
        account.disabled_folders = disabled

        cursor = account.folder_cursor(folder_type)
        if enabled and account.backfill_complete and cursor is not None \
                and cursor.forward_cursor is not None \
                and not cursor.backfill_exhausted:
            account.backfill_complete = False
            if account.sync_status == SyncStatus.active:
                apply_event(account, SyncEvent.backfill_reopened)
    log.info('folder sync setting changed', account_id=account_id,
             folder=folder_type, enabled=enabled)


def delete_account(account_id):
    """Delete the account with its messages, cursors, leases and open
    connections."""
    with session_scope(account_id) as db_session:
        account = _get(db_session, account_id)
        db_session.execute(delete(Message).where(
            Message.account_id == account_id))
        db_session.execute(delete(SyncLease).where(
            SyncLease.account_id == account_id))
        db_session.delete(account)
    dispose_pool(account_id)
    log.info('account deleted', account_id=account_id)
