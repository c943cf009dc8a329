import gevent
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from mailcrawl.config import config
from mailcrawl.log import get_logger
log = get_logger()


DB_POOL_SIZE = config.get('DB_POOL_SIZE') or 5
# Sane default of max overflow=5 if value missing in config.
DB_POOL_MAX_OVERFLOW = config.get('DB_POOL_MAX_OVERFLOW') or 5
DB_POOL_TIMEOUT = config.get('DB_POOL_TIMEOUT') or 60


# See
# https://github.com/PyMySQL/mysqlclient-python/blob/master/samples/waiter_gevent.py
def gevent_waiter(fd, hub=gevent.hub.get_hub()):
    hub.wait(hub.loop.io(fd, 1))


def engine(database_uri, pool_size=DB_POOL_SIZE,
           max_overflow=DB_POOL_MAX_OVERFLOW, pool_timeout=DB_POOL_TIMEOUT,
           echo=False):
    if database_uri.startswith('sqlite'):
        if database_uri in ('sqlite://', 'sqlite:///:memory:'):
            # An in-memory database only exists for the lifetime of its
            # connection, so every session has to share that one connection.
            return create_engine(database_uri, echo=echo,
                                 poolclass=StaticPool,
                                 connect_args={'check_same_thread': False})
        return create_engine(database_uri, echo=echo,
                             connect_args={'check_same_thread': False})

    connect_args = {'connect_timeout': 60}
    if database_uri.startswith('mysql+mysqldb'):
        connect_args.update(charset='utf8mb4', waiter=gevent_waiter)
    engine = create_engine(database_uri,
                           isolation_level='READ COMMITTED',
                           echo=echo,
                           pool_size=pool_size,
                           pool_timeout=pool_timeout,
                           pool_recycle=3600,
                           max_overflow=max_overflow,
                           connect_args=connect_args)

    @event.listens_for(engine, 'checkout')
    def receive_checkout(dbapi_connection, connection_record,
                         connection_proxy):
        log.debug('Connection checked out',
                  checkedout=connection_proxy._pool.checkedout())

    return engine


main_engine = engine(config.get_required('DATABASE_URI'))


def init_db(engine=None):
    """
    Make the tables.

    Safe to run repeatedly: tables that already exist are left alone.

    """
    from mailcrawl.models import MailSyncBase

    MailSyncBase.metadata.create_all(engine or main_engine)


def drop_db(engine=None):
    from mailcrawl.models import MailSyncBase

    MailSyncBase.metadata.drop_all(engine or main_engine)
