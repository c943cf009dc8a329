"""
The forward crawler: ingest whatever arrived above each folder's forward
cursor.

Finding the new ids is done with a small probe of the newest ids first, since
between two polls usually only a handful of messages arrive. Only if the whole
probe is new mail do we pay for listing the open range above the cursor.

The folder cursor advances to the highest id actually persisted, and only
once every batch of the pass has been written; if any fetch fails the cursor
stays where it was and the next pass redoes the work (the dedup store makes
that harmless).

If the remote has renumbered a folder (a new UIDVALIDITY, or a UIDNEXT at or
below the cursor, as when a mailbox is deleted and recreated) nothing above
the cursor would ever show up again. The folder's cursors are reset and it is
seeded again in place; its history is backfilled anew.

"""
from mailcrawl.config import config
from mailcrawl.models.session import session_scope
from mailcrawl.util.itert import chunk
from mailcrawl.mailsync import cursors
from mailcrawl.mailsync.crawler import Crawler, PassResult
from mailcrawl.mailsync.seed import seed_folder, DEFAULT_SEED_COUNT


class ForwardCrawler(Crawler):
    direction = 'forward'

    def __init__(self, account_id, adapter, lease=None):
        Crawler.__init__(self, account_id, adapter, lease=lease)
        self.probe_count = config.get('FORWARD_PROBE_COUNT', 20)
        self.batch_size = config.get('FORWARD_BATCH_SIZE', 50)
        self.seed_count = config.get('SEED_COUNT', DEFAULT_SEED_COUNT)

    def new_identifiers(self, handle, cursor):
        """Ids in the folder strictly above `cursor`, ascending."""
        recent = self.call(self.adapter.list_recent_identifiers, handle,
                           self.probe_count)
        newer = [i for i in recent if i > cursor]
        if recent and len(recent) >= self.probe_count and \
                len(newer) == len(recent):
            newer = self.call(self.adapter.list_identifiers_in_range, handle,
                              cursor + 1, None)
            newer = [i for i in newer if i > cursor]
        return sorted(newer)

    def ids_reassigned(self, cursor, status):
        if status is None:
            return False
        if cursor.uidvalidity is not None and status.uidvalidity is not None \
                and status.uidvalidity != cursor.uidvalidity:
            return True
        # Every id in the folder is below UIDNEXT.
        return status.uidnext is not None and \
            status.uidnext <= cursor.forward_cursor

    def sync_folder(self, plan, cursor):
        identifiers = self.new_identifiers(plan.handle, cursor.forward_cursor)
        created = 0
        persisted = []
        for batch in chunk(identifiers, self.batch_size):
            raw_messages = self.call(self.adapter.fetch_messages,
                                     plan.handle, list(batch), True)
            n, ids = self.persist(plan.folder_type, raw_messages,
                                  cursor.generation)
            created += n
            persisted.extend(ids)

        with session_scope(self.account_id) as db_session:
            if persisted:
                cursors.advance_forward(db_session, self.account_id,
                                        plan.folder_type, max(persisted),
                                        cursor.generation)
            cursors.touch(db_session, self.account_id, plan.folder_type,
                          self.direction)
        if identifiers:
            self.log.info('forward pass over folder', folder=plan.folder_type,
                          new=len(identifiers), created=created,
                          cursor=max(persisted) if persisted
                          else cursor.forward_cursor)
        return created

    def run(self):
        plans, missing = self.plan(self.enabled_folder_types())
        current = cursors.folder_cursors(self.account_id)
        seeded_now = []

        def sync(plan):
            cursor = current.get(plan.folder_type)
            if cursor is None or cursor.forward_cursor is None:
                # Enabled since the account was seeded.
                self.log.info('seeding newly enabled folder',
                              folder=plan.folder_type)
                created = seed_folder(self, plan, self.seed_count)
                seeded_now.append(plan.folder_type)
                return created
            status = self.call(self.adapter.folder_status, plan.handle)
            if self.ids_reassigned(cursor, status):
                self.log.warning('remote folder renumbered; seeding again',
                                 folder=plan.folder_type,
                                 cursor=cursor.forward_cursor,
                                 uidvalidity=status.uidvalidity,
                                 uidnext=status.uidnext)
                with session_scope(self.account_id) as db_session:
                    cursors.reset_folder(db_session, self.account_id,
                                         plan.folder_type, cursor.generation,
                                         status.uidvalidity)
                created = seed_folder(self, plan, self.seed_count)
                seeded_now.append(plan.folder_type)
                return created
            if cursor.uidvalidity is None and status is not None:
                with session_scope(self.account_id) as db_session:
                    cursors.record_uidvalidity(db_session, self.account_id,
                                               plan.folder_type,
                                               status.uidvalidity)
            return self.sync_folder(plan, cursor)

        results, failures, skipped = self.run_folders(plans, sync)
        skipped.update(missing)
        if not failures:
            with session_scope(self.account_id) as db_session:
                cursors.touch_account(db_session, self.account_id,
                                      self.direction)
        return PassResult(self.direction, sum(results.values()), failures,
                          skipped, False, bool(seeded_now))
