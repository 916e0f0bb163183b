import time
from threading import Event, Thread
from typing import Callable

from gatekeeper.impl.util import log


class RepeatingTask:
    """
    Calls a function at a fixed interval on a daemon thread. The sync loops, the exposure flush
    timer and the request dispatcher sweep are all built on this.
    """

    def __init__(self, label: str, interval: float, initial_delay: float, callable: Callable):
        """
        Creates the task, but does not start the worker thread yet.

        :param label: prefix for the worker thread's name
        :param interval: time in seconds from the start of one invocation to the start of the next
        :param initial_delay: time in seconds to wait before the first invocation
        :param callable: the function to execute repeatedly
        """
        self.__label = label
        self.__interval = interval
        self.__initial_delay = initial_delay
        self.__action = callable
        self.__stop = Event()
        self.__thread = Thread(target=self._run, name=f"{label}.repeating")
        self.__thread.daemon = True

    @property
    def label(self) -> str:
        return self.__label

    @property
    def stopped(self) -> bool:
        return self.__stop.is_set()

    def start(self):
        self.__thread.start()

    def stop(self):
        """
        Tells the worker thread to exit after the current invocation. It cannot be restarted.
        """
        self.__stop.set()

    def _run(self):
        if self.__initial_delay > 0 and self.__stop.wait(self.__initial_delay):
            return
        while not self.__stop.is_set():
            deadline = time.time() + self.__interval
            try:
                self.__action()
            except Exception as e:
                log.exception("Unexpected exception in %s task: %s" % (self.__label, e))
            remaining = deadline - time.time()
            if remaining > 0:
                self.__stop.wait(remaining)
