import functools
import random
import socket
import ssl
import time

import gevent

from mailcrawl.log import get_logger, log_uncaught_errors
log = get_logger()

BACKOFF_DELAY = 30  # seconds to wait before retrying after a failure
TRANSIENT_NETWORK_ERRS = (socket.timeout, socket.error, ssl.SSLError)


def backoff(attempt, base_delay, max_delay=None):
    """
    Capped exponential backoff with jitter: `base_delay * 2 ** attempt`,
    never more than `max_delay`, plus up to a quarter of that again so that
    many greenlets failing together don't retry together.

    """
    delay = base_delay * (2 ** attempt)
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay + random.uniform(0, delay / 4.0)


def retry(func, retry_classes=None, fail_classes=None, exc_callback=None,
          backoff_delay=BACKOFF_DELAY, max_delay=None, horizon=None):
    """
    Executes the callable func, retrying on uncaught exceptions matching the
    class filters.

    Arguments
    ---------
    func : function
    exc_callback : function, optional
        Function to execute if an exception is raised within func. The exception
        is passed as the first argument. (e.g., log something)
    retry_classes: list of Exception subclasses, optional
        Configures what to retry on. If specified, func is retried only if one
        of these exceptions is raised. Default is to retry on all exceptions.
    fail_classes: list of Exception subclasses, optional
        Configures what not to retry on. If specified, func is /not/ retried if
        one of these exceptions is raised.
    backoff_delay: number
        Delay before the first retry; doubles after every failed attempt.
    max_delay: number, optional
        Upper bound on a single delay.
    horizon: number, optional
        Give up, re-raising the last exception, once retrying would take the
        total time spent past this many seconds.
    """
    if (fail_classes and retry_classes and
            set(fail_classes).intersection(retry_classes)):
        raise ValueError("Can't include exception classes in both fail_on and "
                         "retry_on")

    def should_retry_on(exc):
        if fail_classes and isinstance(exc, tuple(fail_classes)):
            return False
        if retry_classes and not isinstance(exc, tuple(retry_classes)):
            return False
        return True

    @functools.wraps(func)
    def wrapped(*args, **kwargs):
        start = time.time()
        waited = 0
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except gevent.GreenletExit:
                # GreenletExit isn't actually a subclass of Exception.
                # This is also considered to be a successful execution
                # (somebody intentionally killed the greenlet).
                raise
            except Exception as e:
                if not should_retry_on(e):
                    raise
                if exc_callback is not None:
                    exc_callback(e)
                delay = backoff(attempt, backoff_delay, max_delay)
                # Sleeps may be patched out, so count them as well as the
                # wall clock.
                spent = max(time.time() - start, waited)
                if horizon is not None and spent + delay > horizon:
                    raise

            gevent.sleep(delay)
            waited += delay
            attempt += 1

    return wrapped


def retry_with_logging(func, logger=None, retry_classes=None,
                       fail_classes=None, account_id=None, provider=None,
                       backoff_delay=BACKOFF_DELAY, max_delay=None,
                       horizon=None):

    # Shared between invocations of the callback.
    occurrences = [0]

    def callback(e):
        if isinstance(e, TRANSIENT_NETWORK_ERRS):
            occurrences[0] += 1
            if occurrences[0] < 20:
                return
        else:
            occurrences[0] = 1

        log_uncaught_errors(logger, account_id=account_id, provider=provider,
                            occurrences=occurrences[0])

    return retry(func, exc_callback=callback, retry_classes=retry_classes,
                 fail_classes=fail_classes, backoff_delay=backoff_delay,
                 max_delay=max_delay, horizon=horizon)()


def call_with_timeout(seconds, exc, func, *args, **kwargs):
    """
    Run `func`, raising `exc` in its place if it hasn't returned after
    `seconds`.

    """
    with gevent.Timeout(seconds, exc):
        return func(*args, **kwargs)
