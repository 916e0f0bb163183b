"""
Implementation details of the exposure logging component.
"""

import queue
from collections import namedtuple
from threading import Event, Lock, Thread
from typing import List, Optional

from expiringdict import ExpiringDict

from gatekeeper.errors import RequestTimeoutError
from gatekeeper.evaluation import EvaluationResult
from gatekeeper.impl.events.event_buffer import EventBuffer
from gatekeeper.impl.events.event_factory import EventFactory
from gatekeeper.impl.events.event_validator import validate_event
from gatekeeper.impl.events.types import LogEvent
from gatekeeper.impl.fixed_thread_pool import FixedThreadPool
from gatekeeper.impl.network import NetworkClient
from gatekeeper.impl.repeating_task import RepeatingTask
from gatekeeper.impl.util import UnsuccessfulResponseException, http_error_description, log
from gatekeeper.interfaces import EventProcessor
from gatekeeper.user import User

__MAX_FLUSH_THREADS__ = 5
__DEDUPER_CAPACITY__ = 100000

EventProcessorMessage = namedtuple('EventProcessorMessage', ['type', 'param'])


class EventPayloadSendTask:
    def __init__(self, network: NetworkClient, config, events: List[LogEvent], timeout: Optional[float] = None):
        self._network = network
        self._config = config
        self._events = events
        self._timeout = timeout

    def run(self):
        description = "%d events" % len(self._events)
        try:
            body = {'events': [e.to_dict() for e in self._events], 'statsigMetadata': self._network.metadata()}
            log.debug("Sending %s" % description)
            self._network.post(self._config.log_event_uri, body, retries=self._config.post_logs_retry_limit, timeout=self._timeout)
        except RequestTimeoutError:
            log.warning("Gave up waiting for delivery of %s after %s seconds" % (description, self._timeout))
        except UnsuccessfulResponseException as e:
            log.warning("Received %s posting %s; the events were dropped" % (http_error_description(e.status), description))
        except Exception as e:
            log.warning("Failed to post %s; the events were dropped: %s" % (description, e))


class EventDispatcher:
    """
    Runs the main loop of the exposure logger on its own thread: it buffers events from the inbox
    and hands batches to the flush workers.
    """

    def __init__(self, inbox: queue.Queue, config, network: NetworkClient):
        self._inbox = inbox
        self._config = config
        self._network = network
        self._outbox = EventBuffer(config.event_queue_capacity)
        self._flush_workers = FixedThreadPool(__MAX_FLUSH_THREADS__, "gatekeeper.events.flush")

        self._main_thread = Thread(target=self._run_main_loop, name="gatekeeper.events.processor")
        self._main_thread.daemon = True
        self._main_thread.start()

    def _run_main_loop(self):
        log.info("Starting exposure logger")
        while True:
            try:
                message = self._inbox.get(block=True)
                if message.type == 'event':
                    self._process_event(message.param)
                elif message.type == 'flush':
                    self._trigger_flush()
                elif message.type == 'flush_sync':
                    reply, timeout = message.param
                    self._trigger_flush(timeout)
                    self._flush_workers.wait()
                    reply.set()
                elif message.type == 'test_sync':
                    self._flush_workers.wait()
                    message.param.set()
                elif message.type == 'stop':
                    self._do_shutdown()
                    message.param.set()
                    return
            except Exception:
                log.error('Unhandled exception in exposure logger', exc_info=True)

    def _process_event(self, event: LogEvent):
        self._outbox.add_event(event)
        if len(self._outbox) >= self._config.logging_max_buffer_size:
            self._trigger_flush()

    def _trigger_flush(self, timeout: Optional[float] = None):
        dropped = self._outbox.get_and_clear_dropped_count()
        if dropped > 0:
            log.warning("%d exposures were dropped because the event queue was full" % dropped)
        events = self._outbox.get_events()
        if len(events) == 0:
            return
        task = EventPayloadSendTask(self._network, self._config, events, timeout)
        if self._flush_workers.execute(task.run):
            # handed off to a flush worker
            self._outbox.clear()

    def _do_shutdown(self):
        self._trigger_flush()
        self._flush_workers.stop()
        self._flush_workers.wait()


class ExposureLogger(EventProcessor):
    """
    Builds exposure events from evaluation results, drops repeats of the same exposure seen within
    the dedupe interval, and delivers the rest in batches.
    """

    def __init__(self, config, network: NetworkClient, dispatcher_class=None):
        self._config = config
        self._inbox = queue.Queue(config.event_queue_capacity)  # type: queue.Queue
        self._inbox_full = False
        self._factory = EventFactory()
        self._deduper = ExpiringDict(max_len=__DEDUPER_CAPACITY__, max_age_seconds=config.dedupe_interval)
        self._flush_timer = RepeatingTask("gatekeeper.events.flush", config.logging_interval, config.logging_interval, self.flush)
        self._flush_timer.start()

        self._close_lock = Lock()
        self._closed = False

        (dispatcher_class or EventDispatcher)(self._inbox, config, network)

    def log_gate_exposure(self, user: User, gate_name: str, result: EvaluationResult, is_manual: bool = False):
        self.send_event(self._factory.new_gate_exposure(user, gate_name, result, is_manual))

    def log_config_exposure(self, user: User, config_name: str, result: EvaluationResult, is_manual: bool = False):
        self.send_event(self._factory.new_config_exposure(user, config_name, result, is_manual))

    def log_layer_exposure(self, user: User, layer_name: str, parameter_name: str, result: EvaluationResult, is_manual: bool = False):
        self.send_event(self._factory.new_layer_exposure(user, layer_name, parameter_name, result, is_manual))

    def log_custom_event(self, user: Optional[User], event_name: str, value=None, metadata: Optional[dict] = None):
        self.send_event(self._factory.new_custom_event(user, event_name, value, metadata))

    def send_event(self, event: LogEvent):
        if not self._is_unique(event):
            return
        self._post_to_inbox(EventProcessorMessage('event', validate_event(event)))

    def flush(self):
        self._post_to_inbox(EventProcessorMessage('flush', None))

    def flush_sync(self, timeout: Optional[float] = None):
        """
        Flushes the buffered events and waits until they have been delivered or dropped.

        :param timeout: seconds to wait for the delivery request before giving up on it
        """
        reply = Event()
        self._inbox.put(EventProcessorMessage('flush_sync', (reply, timeout)))
        reply.wait()

    def stop(self):
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        log.info("Stopping exposure logger")
        self._flush_timer.stop()
        # blocks if the inbox is full, since the stop message must not be lost
        self._post_message_and_wait('stop')

    def _is_unique(self, event: LogEvent) -> bool:
        key = event.dedup_key
        if key is None:
            return True
        if self._deduper.get(key) is not None:
            return False
        self._deduper[key] = True
        return True

    def _post_to_inbox(self, message):
        try:
            self._inbox.put(message, block=False)
        except queue.Full:
            if not self._inbox_full:
                self._inbox_full = True
                log.warning("Exposures are being produced faster than they can be processed; some will be dropped")

    # Used only in tests
    def _wait_until_inactive(self):
        self._post_message_and_wait('test_sync')

    def _post_message_and_wait(self, type):
        reply = Event()
        self._inbox.put(EventProcessorMessage(type, reply))
        reply.wait()

    # These magic methods allow use of the "with" block in tests
    def __enter__(self):
        return self

    def __exit__(self, type, value, traceback):
        self.stop()
