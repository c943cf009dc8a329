"""
Upsert-by-uniqueness-key for message records.

A message is matched first on (account, remote id, folder, generation),
then on (account, provider id) when the provider has one. A match is
updated in place; only a miss creates a record. The generation is the folder
cursor's: after the remote reassigns its ids, old rows can't be mistaken
for the new messages that now carry their ids.

"""
from sqlalchemy.exc import IntegrityError

from mailcrawl.models import Message
from mailcrawl.models.session import session_scope
from mailcrawl.log import get_logger
log = get_logger()

SEEN_FLAG = '\\Seen'
FLAGGED_FLAG = '\\Flagged'


def _find(db_session, account_id, folder_type, raw, generation):
    message = db_session.query(Message).filter(
        Message.account_id == account_id,
        Message.remote_id == raw.remote_id,
        Message.folder == folder_type,
        Message.generation == generation).first()
    if message is None and raw.provider_id is not None:
        message = db_session.query(Message).filter(
            Message.account_id == account_id,
            Message.provider_id == raw.provider_id).first()
    return message


def _apply(message, folder_type, raw):
    flags = list(raw.flags or [])
    message.flags = flags
    message.is_read = SEEN_FLAG in flags
    message.is_starred = FLAGGED_FLAG in flags
    if raw.labels is not None:
        message.labels = list(raw.labels)
    if raw.body is not None and message.body is None:
        message.body = raw.body
    if raw.size is not None:
        message.size = raw.size
    folders = list(message.folders or [])
    if folder_type not in folders:
        message.folders = folders + [folder_type]


def upsert_message(db_session, account_id, folder_type, raw, generation=0):
    """
    Insert or update the record for `raw`. Returns (message, created).

    """
    message = _find(db_session, account_id, folder_type, raw, generation)
    if message is not None:
        _apply(message, folder_type, raw)
        return message, False

    message = Message(account_id=account_id,
                      folder=folder_type,
                      remote_id=raw.remote_id,
                      generation=generation,
                      provider_id=raw.provider_id,
                      message_id_header=raw.message_id_header,
                      subject=raw.subject,
                      from_addr=raw.from_addr,
                      received_at=raw.received_at,
                      folders=[])
    _apply(message, folder_type, raw)
    db_session.add(message)
    # Make the new row visible to lookups for the rest of the batch (the
    # same provider id can come back twice in one fetch).
    db_session.flush()
    return message, True


def persist_messages(account_id, folder_type, raw_messages, generation=0):
    """
    Write a fetched batch in one transaction.

    A concurrent writer can insert one of the same keys between our lookup
    and our commit; the unique constraints turn that into an IntegrityError,
    and the batch is simply replayed, this time finding the other writer's
    rows.

    Returns
    -------
    (int, list)
        Number of records created, and the remote ids now persisted.

    """
    if not raw_messages:
        return 0, []
    for attempt in range(2):
        try:
            created = 0
            with session_scope(account_id) as db_session:
                for raw in raw_messages:
                    _, is_new = upsert_message(db_session, account_id,
                                               folder_type, raw, generation)
                    created += is_new
            return created, [raw.remote_id for raw in raw_messages]
        except IntegrityError:
            if attempt:
                raise
            log.info('Concurrent insert of the same messages; replaying batch',
                     account_id=account_id, folder=folder_type,
                     count=len(raw_messages))
