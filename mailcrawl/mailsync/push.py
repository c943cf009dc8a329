"""
Push intake: turn a provider change notification into an immediate forward
pass.

The notification only says that *something* changed for an address; the
change marker is logged but otherwise unused, since the forward pass works
out what's new from the cursors. That's also why a notification racing the
scheduled poll is harmless: both go through the same lease, cursors and dedup
store.

"""
from mailcrawl.log import get_logger
from mailcrawl.models import Account
from mailcrawl.models.session import session_scope
from mailcrawl.mailsync.service import SyncOrchestrator
from mailcrawl.mailsync.state import CRAWLABLE
log = get_logger()

_orchestrator = None


def default_orchestrator():
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SyncOrchestrator()
    return _orchestrator


def handle_notification(address, change_marker=None, orchestrator=None):
    """
    Start a forward pass for the account with email address `address`,
    without waiting for it.

    Returns the spawned greenlet, or None if the notification was ignored
    (unknown address, or an account that isn't syncing).

    """
    if not isinstance(address, str) or not address.strip():
        log.info('ignoring push notification without address',
                 change_marker=change_marker)
        return None

    with session_scope() as db_session:
        account = db_session.query(Account).filter(
            Account.email_address == address.strip()).first()
        if account is None:
            log.info('push notification for unknown account',
                     address=address, change_marker=change_marker)
            return None
        account_id = account.id
        crawlable = account.sync_status in CRAWLABLE
        status = account.sync_status.value

    if not crawlable:
        log.info('push notification for account not syncing',
                 account_id=account_id, sync_status=status,
                 change_marker=change_marker)
        return None

    log.info('push notification; triggering forward pass',
             account_id=account_id, change_marker=change_marker)
    orchestrator = orchestrator or default_orchestrator()
    return orchestrator.trigger_forward_async(account_id)
