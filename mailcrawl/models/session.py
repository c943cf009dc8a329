import sys
import time
from contextlib import contextmanager

import gevent
from sqlalchemy.orm.session import Session
from sqlalchemy.exc import OperationalError

from mailcrawl.config import config
from mailcrawl.ignition import main_engine
from mailcrawl.log import get_logger
log = get_logger()


def new_session(engine=None):
    """Returns a session bound to the given engine."""
    return Session(bind=engine or main_engine, autoflush=True,
                   expire_on_commit=True)


@contextmanager
def session_scope(id_=None):
    """
    Provide a transactional scope around a series of operations.

    Takes care of rolling back failed transactions and closing the session
    when it goes out of scope.

    Note that sqlalchemy automatically starts a new database transaction when
    the session is created, and restarts a new transaction after every commit()
    on the session. Your database backend's transaction semantics are important
    here when reasoning about concurrency.

    Parameters
    ----------
    id_ : int, optional
        The account the session is opened on behalf of. Only used for
        logging.

    Yields
    ------
    Session
        The created session.

    """
    session = new_session()

    try:
        if config.get('LOG_DB_SESSIONS'):
            start_time = time.time()
            calling_frame = sys._getframe().f_back.f_back
            call_loc = '{}:{}'.format(calling_frame.f_globals.get('__name__'),
                                      calling_frame.f_lineno)
            logger = log.bind(session_id=id(session), call_loc=call_loc,
                              account_id=id_)
            logger.info('creating db_session')
        yield session
        session.commit()
    except (gevent.GreenletExit, gevent.Timeout):
        log.info('Invalidating connection on gevent exception', exc_info=True)
        session.invalidate()
        raise
    except BaseException as exc:
        try:
            session.rollback()
            raise
        except OperationalError:
            log.warn('Encountered OperationalError on rollback',
                     original_exception=type(exc))
            raise exc
    finally:
        if config.get('LOG_DB_SESSIONS'):
            lifetime = time.time() - start_time
            logger.info('closing db_session', lifetime=lifetime)
        session.close()
