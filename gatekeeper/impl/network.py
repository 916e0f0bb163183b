import json
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Event, Lock
from typing import Any, Dict, Optional

import urllib3

from gatekeeper.errors import LocalModeNetworkError, TooManyRequestsError
from gatekeeper.impl.dispatcher import RequestDispatcher
from gatekeeper.impl.http import SDK_TYPE, _http_factory, _request_headers
from gatekeeper.impl.retry_delay import DefaultBackoffStrategy, DefaultJitterStrategy, RetryDelayStrategy
from gatekeeper.impl.util import RETRYABLE_STATUSES, http_error_description, log, throw_if_unsuccessful_response
from gatekeeper.version import VERSION

MAX_RETRY_DELAY = 30.0
JITTER_RATIO = 0.5

_NETWORK_WORKERS = 8


class LeakyBucket:
    """Counts in-flight requests per URL and refuses new ones once ``capacity`` is reached."""

    def __init__(self, capacity: int):
        self.__capacity = capacity
        self.__lock = Lock()
        self.__in_flight = {}  # type: Dict[str, int]

    def acquire(self, url: str):
        with self.__lock:
            count = self.__in_flight.get(url, 0)
            if count >= self.__capacity:
                raise TooManyRequestsError(url)
            self.__in_flight[url] = count + 1

    def release(self, url: str):
        with self.__lock:
            count = self.__in_flight.get(url, 0) - 1
            if count > 0:
                self.__in_flight[url] = count
            else:
                self.__in_flight.pop(url, None)

    def in_flight(self, url: str) -> int:
        with self.__lock:
            return self.__in_flight.get(url, 0)


class NetworkClient:
    """
    Sends JSON requests to the server with retries and per-URL throttling.

    :func:`post()` and :func:`get()` block the calling thread; the ``_async`` variants run the
    request on a worker pool and return a :class:`concurrent.futures.Future`. When a timeout is
    given, the future is bounded by the :class:`RequestDispatcher`.
    """

    def __init__(self, config, session_id: Optional[str] = None, http=None, dispatcher: Optional[RequestDispatcher] = None):
        """
        :param config: the client configuration
        :param session_id: identifies this client instance to the server; generated if omitted
        :param http: a urllib3 ``PoolManager`` or compatible object; created from the config if omitted
        :param dispatcher: bounds requests made with a timeout; created if omitted
        """
        self.__config = config
        self.__session_id = session_id or str(uuid.uuid4())
        self.__http_factory = _http_factory(config, self.__session_id)
        self.__http = http or self.__http_factory.create_pool_manager(10, config.api)
        self.__owns_dispatcher = dispatcher is None
        self.__dispatcher = dispatcher or RequestDispatcher(config.dispatcher_sweep_interval)
        self.__executor = ThreadPoolExecutor(max_workers=_NETWORK_WORKERS, thread_name_prefix='gatekeeper.network')
        self.__bucket = LeakyBucket(config.max_concurrent_requests)
        self.__closed = Event()

    @property
    def session_id(self) -> str:
        return self.__session_id

    @property
    def leaky_bucket(self) -> LeakyBucket:
        return self.__bucket

    def metadata(self) -> dict:
        """The ``statsigMetadata`` object included in every request body."""
        return {'sdkType': SDK_TYPE, 'sdkVersion': VERSION, 'sessionID': self.__session_id}

    def post(self, url: str, body: Any, retries: int = 0, backoff: Optional[float] = None, timeout: Optional[float] = None):
        """
        Sends ``body`` as JSON and returns the urllib3 response.

        :param retries: how many times to retry after a retryable status or a transport error
        :param backoff: delay in seconds before the first retry; defaults to ``Config.backoff_base``
        :param timeout: overall deadline in seconds, including retries
        :raises UnsuccessfulResponseException: for a final status of 400 or above
        """
        if timeout is None:
            return self._request('POST', url, body, None, retries, backoff)
        return self.post_async(url, body, retries, backoff, timeout).result()

    def get(self, url: str, headers: Optional[dict] = None, timeout: Optional[float] = None):
        if timeout is None:
            return self._request('GET', url, None, headers, 0, None)
        return self.get_async(url, headers, timeout).result()

    def post_async(self, url: str, body: Any, retries: int = 0, backoff: Optional[float] = None, timeout: Optional[float] = None) -> Future:
        return self._submit(timeout, 'POST', url, body, None, retries, backoff)

    def get_async(self, url: str, headers: Optional[dict] = None, timeout: Optional[float] = None) -> Future:
        return self._submit(timeout, 'GET', url, None, headers, 0, None)

    def close(self):
        """Interrupts retry waits and releases the worker pool without waiting for requests in flight."""
        self.__closed.set()
        if self.__owns_dispatcher:
            self.__dispatcher.stop()
        self.__executor.shutdown(wait=False)

    def _submit(self, timeout: Optional[float], *args) -> Future:
        future = self.__executor.submit(self._request, *args)
        if timeout is None:
            return future
        return self.__dispatcher.enqueue(future, timeout)

    def _request(self, method: str, url: str, body: Any, headers: Optional[dict], retries: int, backoff: Optional[float]):
        if self.__config.local_mode:
            raise LocalModeNetworkError()
        self.__bucket.acquire(url)
        try:
            return self._request_with_retries(method, url, body, headers, retries, backoff)
        finally:
            self.__bucket.release(url)

    def _request_with_retries(self, method: str, url: str, body: Any, headers: Optional[dict], retries: int, backoff: Optional[float]):
        delays = self._retry_delays(backoff)
        attempt = 0
        while True:
            try:
                response = self._send(method, url, body, headers)
            except (urllib3.exceptions.HTTPError, OSError) as e:
                if attempt >= retries or self.__closed.is_set():
                    raise
                log.warning("Error sending %s request to %s (will retry): %s" % (method, url, e))
            else:
                if response.status not in RETRYABLE_STATUSES or attempt >= retries or self.__closed.is_set():
                    throw_if_unsuccessful_response(response)
                    return response
                log.warning("Received %s for %s %s (will retry)" % (http_error_description(response.status), method, url))
            attempt += 1
            self.__closed.wait(delays.next_retry_delay())

    def _retry_delays(self, backoff: Optional[float]) -> RetryDelayStrategy:
        base = self.__config.backoff_base if backoff is None else backoff
        return RetryDelayStrategy(base, DefaultBackoffStrategy(MAX_RETRY_DELAY), DefaultJitterStrategy(JITTER_RATIO))

    def _send(self, method: str, url: str, body: Any, headers: Optional[dict]):
        request_headers = _request_headers(self.__http_factory.base_headers)
        if headers:
            request_headers.update(headers)
        data = None
        if body is not None:
            request_headers['Content-Type'] = 'application/json'
            data = json.dumps(body, separators=(',', ':'))
        log.debug("Sending %s request to %s" % (method, url))
        response = self.__http.request(method, url, headers=request_headers, timeout=self.__http_factory.timeout, body=data, retries=1)
        log.debug("Received status %d from %s" % (response.status, url))
        return response
