# utils/wallet_locks.py
import threading
from contextlib import contextmanager

from redis.exceptions import LockError

from utils.errors import ClaimInProgress
from utils.log import get_logger

logger = get_logger("wallet_locks")


class LocalWalletLocks:
    """One exclusive lane per wallet inside a single process."""

    def __init__(self, blocking_timeout=30):
        self.blocking_timeout = blocking_timeout
        self._guard = threading.Lock()
        # wallet -> [lock, holders + waiters]
        self._locks = {}

    def _checkout(self, wallet):
        with self._guard:
            entry = self._locks.get(wallet)
            if entry is None:
                entry = self._locks[wallet] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, wallet):
        with self._guard:
            entry = self._locks[wallet]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[wallet]

    @contextmanager
    def lane(self, wallet):
        lock = self._checkout(wallet)
        try:
            if not lock.acquire(timeout=self.blocking_timeout):
                logger.warning(f"[lane] {wallet} busy for {self.blocking_timeout}s")
                raise ClaimInProgress()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(wallet)


class RedisWalletLocks:
    """
    Exclusive lane per wallet shared by every worker process.

    `timeout` bounds how long a crashed holder can keep the lane. A live holder renews it
    every `timeout / 3` seconds from a background thread, so slow claims keep the lane.
    """

    def __init__(self, redis_conn, timeout=120, blocking_timeout=30, prefix="claim-lane"):
        self.redis = redis_conn
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.prefix = prefix

    def _renew(self, lock, wallet, stop):
        while not stop.wait(self.timeout / 3):
            try:
                lock.reacquire()
            except LockError as e:
                logger.error(f"[lane] lost lock for {wallet} while held: {e}")
                return

    @contextmanager
    def lane(self, wallet):
        # Not thread-local: the renewal thread must see the token
        lock = self.redis.lock(f"{self.prefix}:{wallet}", timeout=self.timeout,
                               blocking_timeout=self.blocking_timeout, thread_local=False)
        if not lock.acquire():
            logger.warning(f"[lane] {wallet} busy for {self.blocking_timeout}s")
            raise ClaimInProgress()

        stop = threading.Event()
        renewer = threading.Thread(target=self._renew, args=(lock, wallet, stop), daemon=True)
        renewer.start()
        try:
            yield
        finally:
            stop.set()
            renewer.join()
            try:
                lock.release()
            except LockError:
                # Expired anyway; claim intents only move by conditional status updates
                logger.error(f"[lane] lock for {wallet} expired before release")
