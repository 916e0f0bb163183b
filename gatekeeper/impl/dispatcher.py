import time
from concurrent.futures import CancelledError, Future
from threading import Lock
from typing import List

from gatekeeper.errors import RequestTimeoutError
from gatekeeper.impl.repeating_task import RepeatingTask
from gatekeeper.impl.util import log


class _Entry:
    __slots__ = ['source', 'target', 'deadline', 'timeout']

    def __init__(self, source: Future, target: Future, deadline: float, timeout: float):
        self.source = source
        self.target = target
        self.deadline = deadline
        self.timeout = timeout


class RequestDispatcher:
    """
    Puts a deadline on in-flight operations. :func:`enqueue()` returns a future that a periodic
    sweep completes with the outcome of the wrapped operation, or fails with
    :class:`gatekeeper.errors.RequestTimeoutError` once the deadline passes. Expiring an entry does
    not cancel the underlying operation; its eventual outcome is discarded.
    """

    def __init__(self, sweep_interval: float = 0.2):
        self.__lock = Lock()
        self.__entries = []  # type: List[_Entry]
        self.__task = RepeatingTask('gatekeeper.dispatcher', sweep_interval, sweep_interval, self._sweep)
        self.__task.start()

    def enqueue(self, future: Future, timeout: float) -> Future:
        """
        :param future: the operation being waited on
        :param timeout: seconds after which the returned future fails
        :return: a future that settles on the sweep after ``future`` completes or times out
        """
        target = Future()  # type: Future
        target.set_running_or_notify_cancel()
        with self.__lock:
            self.__entries.append(_Entry(future, target, time.monotonic() + timeout, timeout))
        return target

    @property
    def pending_count(self) -> int:
        with self.__lock:
            return len(self.__entries)

    def stop(self):
        """Stops the sweep. Entries still pending are failed with :class:`concurrent.futures.CancelledError`."""
        self.__task.stop()
        with self.__lock:
            remaining = self.__entries
            self.__entries = []
        for entry in remaining:
            if entry.source.done():
                _forward(entry)
            else:
                entry.target.set_exception(CancelledError())

    def _sweep(self):
        now = time.monotonic()
        settled = []  # type: List[_Entry]
        with self.__lock:
            kept = []
            for entry in self.__entries:
                if entry.source.done() or now >= entry.deadline:
                    settled.append(entry)
                else:
                    kept.append(entry)
            self.__entries = kept
        for entry in settled:
            if entry.source.done():
                _forward(entry)
            else:
                log.debug("Request expired after %s seconds" % entry.timeout)
                entry.target.set_exception(RequestTimeoutError(entry.timeout))


def _forward(entry: _Entry):
    source = entry.source
    if source.cancelled():
        entry.target.set_exception(CancelledError())
        return
    error = source.exception()
    if error is not None:
        entry.target.set_exception(error)
    else:
        entry.target.set_result(source.result())
