"""
The backfill crawler: walk each folder's history downward from its backfill
cursor, one small window per pass.

A window is the newest BACKFILL_CHUNK_SIZE ids strictly below the cursor.
It is found by listing bounded id ranges going down from the cursor,
BACKFILL_LIST_WINDOW ids at first and twice as many after each range that
didn't fill the window, so a pass never lists the whole history. When the
listing reaches id 1 with fewer than a window's worth of ids, the window is
the rest of the folder and the folder is exhausted. When every seeded,
enabled folder is exhausted the account's backfill is complete. A folder
whose history is an exact multiple of the chunk size therefore needs one
extra, empty pass to confirm there is nothing left.

"""
from mailcrawl.config import config
from mailcrawl.models.session import session_scope
from mailcrawl.mailsync import cursors
from mailcrawl.mailsync.crawler import Crawler, PassResult


class BackfillCrawler(Crawler):
    direction = 'backfill'

    def __init__(self, account_id, adapter, lease=None, chunk_size=None):
        Crawler.__init__(self, account_id, adapter, lease=lease)
        self.chunk_size = chunk_size or config.get('BACKFILL_CHUNK_SIZE', 100)
        self.include_body = config.get('BACKFILL_INCLUDE_BODY', True)
        self.list_window = max(self.chunk_size,
                               config.get('BACKFILL_LIST_WINDOW', 1000))

    def _floor(self, cursor):
        if cursor.backfill_cursor is not None:
            return cursor.backfill_cursor
        # Seeded empty: everything at or below the forward cursor is ours.
        return (cursor.forward_cursor or 0) + 1

    def next_window(self, handle, floor):
        """The newest `chunk_size` ids below `floor`, ascending."""
        found = set()
        high = floor - 1
        span = self.list_window
        while high >= 1 and len(found) < self.chunk_size:
            low = max(1, high - span + 1)
            listed = self.call(self.adapter.list_identifiers_in_range,
                               handle, low, high)
            found.update(i for i in listed if low <= i <= high)
            high = low - 1
            span *= 2
        return sorted(found)[-self.chunk_size:]

    def backfill_folder(self, plan, cursor):
        floor = self._floor(cursor)
        generation = cursor.generation
        window = self.next_window(plan.handle, floor)

        created, persisted = 0, []
        if window:
            raw_messages = self.call(self.adapter.fetch_messages, plan.handle,
                                     window, self.include_body)
            created, persisted = self.persist(plan.folder_type, raw_messages,
                                              generation)

        with session_scope(self.account_id) as db_session:
            if persisted:
                cursors.retreat_backfill(db_session, self.account_id,
                                         plan.folder_type, min(persisted),
                                         generation)
            elif window:
                # Listed but gone by the time we fetched; don't list them
                # forever.
                self.log.info('backfill window vanished before fetch',
                              folder=plan.folder_type, low=window[0],
                              high=window[-1])
                cursors.retreat_backfill(db_session, self.account_id,
                                         plan.folder_type, window[0],
                                         generation)
            exhausted = len(window) < self.chunk_size
            if exhausted:
                cursors.mark_exhausted(db_session, self.account_id,
                                       plan.folder_type, generation)
            cursors.touch(db_session, self.account_id, plan.folder_type,
                          self.direction)

        self.log.info('backfill pass over folder', folder=plan.folder_type,
                      window=len(window), created=created,
                      cursor=min(persisted) if persisted else floor,
                      exhausted=exhausted)
        return created

    def run(self):
        folder_types = self.enabled_folder_types()
        current = cursors.folder_cursors(self.account_id)
        remaining = [ft for ft in folder_types
                     if ft in current and
                     current[ft].forward_cursor is not None and
                     not current[ft].backfill_exhausted]

        created = 0
        failures, skipped = {}, {}
        if remaining:
            plans, missing = self.plan(remaining)
            results, failures, skipped = self.run_folders(
                plans,
                lambda plan: self.backfill_folder(plan,
                                                  current[plan.folder_type]))
            skipped.update(missing)
            created = sum(results.values())

        with session_scope(self.account_id) as db_session:
            completed = cursors.all_exhausted(db_session, self.account_id,
                                              folder_types)
            if not failures:
                cursors.touch_account(db_session, self.account_id,
                                      self.direction)
        return PassResult(self.direction, created, failures, skipped,
                          completed, False)
