"""
The initial small fetch that makes a newly registered mailbox browsable.

Seeding fetches the newest SEED_COUNT messages of each enabled folder, with
bodies, and plants both cursors of the folder around them: the forward
crawler picks up from the newest, the backfill crawler works down from the
oldest. The primary folder is seeded first and on its own; if it can't be
seeded the account can't be synced at all.

"""
from mailcrawl.config import config
from mailcrawl.models.session import session_scope
from mailcrawl.providers import PRIMARY_FOLDER
from mailcrawl.mailsync import cursors
from mailcrawl.mailsync.crawler import Crawler, PassResult

DEFAULT_SEED_COUNT = 10


def seed_folder(crawler, plan, seed_count):
    """
    Seed one folder. Returns the number of message records created.

    Used by the Seeder, and by the forward crawler for a folder that was
    enabled after the account was seeded or whose remote ids were reassigned.

    """
    status = crawler.call(crawler.adapter.folder_status, plan.handle)
    identifiers = crawler.call(crawler.adapter.list_recent_identifiers,
                               plan.handle, seed_count)
    generation = cursors.get_or_create_folder_cursor(
        crawler.account_id, plan.folder_type, plan.handle.name)
    created, persisted = 0, []
    if identifiers:
        raw_messages = crawler.call(crawler.adapter.fetch_messages,
                                    plan.handle, sorted(identifiers), True)
        created, persisted = crawler.persist(plan.folder_type, raw_messages,
                                             generation)

    with session_scope(crawler.account_id) as db_session:
        if status is not None:
            cursors.record_uidvalidity(db_session, crawler.account_id,
                                       plan.folder_type, status.uidvalidity)
        if persisted:
            cursors.advance_forward(db_session, crawler.account_id,
                                    plan.folder_type, max(persisted),
                                    generation)
            cursors.retreat_backfill(db_session, crawler.account_id,
                                     plan.folder_type, min(persisted),
                                     generation)
        else:
            # Nothing here yet; the forward crawler takes everything above 0.
            cursors.advance_forward(db_session, crawler.account_id,
                                    plan.folder_type, 0, generation)
        if len(identifiers) < seed_count:
            # The newest N was the whole folder.
            cursors.mark_exhausted(db_session, crawler.account_id,
                                   plan.folder_type, generation)
        cursors.touch(db_session, crawler.account_id, plan.folder_type,
                      'forward')

    crawler.log.info('folder seeded', folder=plan.folder_type,
                     remote_folder=plan.handle.name, created=created,
                     listed=len(identifiers))
    return created


class Seeder(Crawler):
    """
    Raises
    ------
    FolderNotFound
        If the primary folder can't be resolved.
    TransientError, StructuralError
        If the primary folder couldn't be seeded.

    Failures of the other folders are reported in the PassResult; those
    folders get seeded by a later forward pass.

    """
    direction = 'seed'

    def __init__(self, account_id, adapter, lease=None, seed_count=None):
        Crawler.__init__(self, account_id, adapter, lease=lease)
        self.seed_count = seed_count or config.get('SEED_COUNT',
                                                   DEFAULT_SEED_COUNT)

    def seed_folder(self, plan):
        return seed_folder(self, plan, self.seed_count)

    def run(self):
        plans, missing = self.plan(self.enabled_folder_types())
        if PRIMARY_FOLDER in missing:
            raise missing[PRIMARY_FOLDER]
        primary, others = plans[0], plans[1:]
        assert primary.folder_type == PRIMARY_FOLDER, primary

        created = self.seed_folder(primary)
        results, failures, skipped = self.run_folders(others,
                                                      self.seed_folder)
        skipped.update(missing)
        return PassResult(self.direction, created + sum(results.values()),
                          failures, skipped, False, False)
