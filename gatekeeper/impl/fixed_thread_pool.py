import queue
from threading import Event, Lock, Thread
from typing import Callable

from gatekeeper.impl.util import log

_STOP = object()


class FixedThreadPool:
    """
    A fixed number of worker threads. A job is refused, rather than queued, when every worker is
    busy; the exposure logger uses that to keep at most ``size`` log uploads in flight.
    """

    def __init__(self, size: int, name: str):
        self._size = size
        self._lock = Lock()
        self._busy_count = 0
        self._idle = Event()
        self._jobs = queue.Queue()  # type: queue.Queue
        for i in range(size):
            worker = Thread(target=self._run_worker, name="%s.%d" % (name, i + 1))
            worker.daemon = True
            worker.start()

    def execute(self, job: Callable) -> bool:
        """Schedules ``job`` and returns True, or returns False if all workers are busy."""
        with self._lock:
            if self._busy_count >= self._size:
                return False
            self._busy_count += 1
        self._jobs.put(job)
        return True

    def wait(self):
        """Blocks until no worker is running a job."""
        while True:
            with self._lock:
                if self._busy_count == 0:
                    return
                self._idle.clear()
            self._idle.wait()

    def stop(self):
        """Lets each worker exit once the jobs already queued have run."""
        for _ in range(self._size):
            self._jobs.put(_STOP)

    def _run_worker(self):
        while True:
            job = self._jobs.get(block=True)
            if job is _STOP:
                return
            try:
                job()
            except Exception:
                log.warning('Unhandled exception in event flush worker', exc_info=True)
            with self._lock:
                self._busy_count -= 1
                self._idle.set()
