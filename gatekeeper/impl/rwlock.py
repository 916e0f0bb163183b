import threading
from contextlib import contextmanager


class ReadWriteLock:
    """
    Lets any number of readers in at once, or a single writer. Used for the local override tables,
    which are read on every evaluation and written rarely.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0

    def rlock(self):
        with self._cond:
            self._readers += 1

    def runlock(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def lock(self):
        """Blocks until no reader holds the lock, then keeps the underlying mutex until :func:`unlock()`."""
        self._cond.acquire()
        self._cond.wait_for(lambda: self._readers == 0)

    def unlock(self):
        self._cond.release()

    @contextmanager
    def read(self):
        self.rlock()
        try:
            yield self
        finally:
            self.runlock()

    @contextmanager
    def write(self):
        self.lock()
        try:
            yield self
        finally:
            self.unlock()
