"""
This submodule contains the :class:`Config` class for custom configuration of the client.

Note that the same class can also be imported from the ``gatekeeper.client`` submodule.
"""

from typing import Any, Callable, Optional, Union

from gatekeeper.impl.util import log
from gatekeeper.interfaces import DataAdapter, StickyBucketStore

DEFAULT_API = 'https://statsigapi.net/v1'

ID_LIST_INIT_STRATEGIES = ('await', 'lazy', 'none')


class HTTPConfig:
    """Advanced HTTP configuration options for the client.

    This class groups together HTTP/HTTPS-related configuration properties that rarely need to be changed.
    If you need to set these, construct an ``HTTPConfig`` instance and pass it as the ``http`` parameter when
    you construct the main :class:`Config`.
    """

    def __init__(
        self,
        connect_timeout: float = 10,
        read_timeout: float = 15,
        http_proxy: Optional[str] = None,
        ca_certs: Optional[str] = None,
        disable_ssl_verification: bool = False,
    ):
        """
        :param connect_timeout: The connect timeout for network connections in seconds.
        :param read_timeout: The read timeout for network connections in seconds.
        :param http_proxy: Use a proxy when connecting to the server. This is the full URI of the
          proxy; for example: http://my-proxy.com:1234. Setting this parameter will override any proxy
          specified by the ``http_proxy``/``https_proxy`` environment variables.
        :param ca_certs: If using a custom certificate authority, set this to the file path of the
          certificate bundle.
        :param disable_ssl_verification: If true, completely disables SSL verification and certificate
          verification for secure requests. This is unsafe and should not be used in a production environment.
        """
        self.__connect_timeout = connect_timeout
        self.__read_timeout = read_timeout
        self.__http_proxy = http_proxy
        self.__ca_certs = ca_certs
        self.__disable_ssl_verification = disable_ssl_verification

    @property
    def connect_timeout(self) -> float:
        return self.__connect_timeout

    @property
    def read_timeout(self) -> float:
        return self.__read_timeout

    @property
    def http_proxy(self) -> Optional[str]:
        return self.__http_proxy

    @property
    def ca_certs(self) -> Optional[str]:
        return self.__ca_certs

    @property
    def disable_ssl_verification(self) -> bool:
        return self.__disable_ssl_verification


class Config:
    """Configuration options for the client.

    To use these options, create an instance of ``Config`` and pass it to the
    :class:`gatekeeper.client.GatekeeperClient` constructor.
    """

    def __init__(
        self,
        server_secret: str,
        api: str = DEFAULT_API,
        api_for_download_config_specs: Optional[str] = None,
        environment_tier: Optional[str] = None,
        bootstrap_values: Optional[Union[str, dict]] = None,
        rules_updated_callback: Optional[Callable[[str, int], None]] = None,
        evaluation_callback: Optional[Callable[[str, str, Any], None]] = None,
        local_mode: bool = False,
        init_timeout: float = 3,
        rulesets_sync_interval: float = 10,
        id_lists_sync_interval: float = 60,
        logging_interval: float = 60,
        logging_max_buffer_size: int = 1000,
        event_queue_capacity: int = 10000,
        dedupe_interval: float = 60,
        post_logs_retry_limit: int = 5,
        backoff_base: float = 1,
        max_concurrent_requests: int = 1000,
        dispatcher_sweep_interval: float = 0.2,
        sticky_bucket_store: Optional[StickyBucketStore] = None,
        data_adapter: Optional[DataAdapter] = None,
        init_strategy_for_id_lists: str = 'await',
        user_agent_parser: Optional[Callable[[str], Optional[dict]]] = None,
        ip_country_lookup: Optional[Callable[[str], Optional[str]]] = None,
        disable_all_logging: bool = False,
        http: HTTPConfig = HTTPConfig(),
    ):
        """
        :param server_secret: The server secret key for your project. This is always required.
        :param api: The base URL for all requests. Most users should use the default value.
        :param api_for_download_config_specs: An alternative base URL used only for fetching rulesets.
        :param environment_tier: The environment tier (such as "production" or "staging") that is added to
          every user which does not already declare one.
        :param bootstrap_values: A ruleset payload, as a JSON string or an already decoded dictionary,
          that is applied synchronously at startup instead of waiting for the first network fetch.
        :param rules_updated_callback: A function called with the raw JSON ruleset and its sync time
          whenever new rulesets are applied from the network, for maintaining an external cache.
        :param evaluation_callback: A function called once for every evaluation, with the kind of entity
          ("gate", "config", "experiment" or "layer"), its name and the result object.
        :param local_mode: If true, no network requests are made; only bootstrap values and local
          overrides are used.
        :param init_timeout: The maximum number of seconds the client constructor waits for the first
          ruleset fetch. The fetch continues in the background if it takes longer.
        :param rulesets_sync_interval: The number of seconds between ruleset fetches. The minimum is 1.
        :param id_lists_sync_interval: The number of seconds between ID list syncs. The minimum is 1.
        :param logging_interval: The number of seconds between scheduled flushes of exposure events.
        :param logging_max_buffer_size: The number of buffered events that triggers an immediate flush.
        :param event_queue_capacity: The maximum number of events held in memory; events beyond this
          are dropped with a warning.
        :param dedupe_interval: The number of seconds during which an identical exposure is only logged once.
        :param post_logs_retry_limit: How many times a failed event delivery is retried before the batch
          is dropped.
        :param backoff_base: The delay in seconds before the first retry of a failed request. The delay
          doubles on every further retry.
        :param max_concurrent_requests: The number of requests to a single URL which may be in flight at
          once; further requests fail immediately.
        :param dispatcher_sweep_interval: How often, in seconds, pending requests are checked for
          completion or expiry.
        :param sticky_bucket_store: An implementation of
          :class:`gatekeeper.interfaces.StickyBucketStore` used to persist experiment assignments.
        :param data_adapter: An implementation of :class:`gatekeeper.interfaces.DataAdapter` that rulesets
          and ID lists are loaded from at startup and saved to after every download. It takes precedence
          over ``bootstrap_values``.
        :param init_strategy_for_id_lists: How ID lists are loaded at startup: "await" makes the constructor
          wait for them along with the rulesets, "lazy" loads them in the background, and "none" never
          syncs them.
        :param user_agent_parser: A function that parses a user agent string into a dictionary with any of
          the keys ``os_name``, ``os_version``, ``browser_name`` and ``browser_version``.
        :param ip_country_lookup: A function that maps an IP address to a country code.
        :param disable_all_logging: If true, no exposure or custom events are sent.
        :param http: Optional properties for customizing the client's HTTP/HTTPS behavior. See
          :class:`HTTPConfig`.
        """
        self.__server_secret = server_secret
        self.__api = api.rstrip('/')
        self.__api_for_download_config_specs = api_for_download_config_specs.rstrip('/') if api_for_download_config_specs else None
        self.__environment_tier = environment_tier
        self.__bootstrap_values = bootstrap_values
        self.__rules_updated_callback = rules_updated_callback
        self.__evaluation_callback = evaluation_callback
        self.__local_mode = local_mode
        self.__init_timeout = init_timeout
        self.__rulesets_sync_interval = max(rulesets_sync_interval, 1.0)
        self.__id_lists_sync_interval = max(id_lists_sync_interval, 1.0)
        self.__logging_interval = logging_interval
        self.__logging_max_buffer_size = logging_max_buffer_size
        self.__event_queue_capacity = event_queue_capacity
        self.__dedupe_interval = dedupe_interval
        self.__post_logs_retry_limit = post_logs_retry_limit
        self.__backoff_base = backoff_base
        self.__max_concurrent_requests = max_concurrent_requests
        self.__dispatcher_sweep_interval = dispatcher_sweep_interval
        self.__sticky_bucket_store = sticky_bucket_store
        self.__data_adapter = data_adapter
        self.__init_strategy_for_id_lists = init_strategy_for_id_lists
        self.__user_agent_parser = user_agent_parser
        self.__ip_country_lookup = ip_country_lookup
        self.__disable_all_logging = disable_all_logging
        self.__http = http

    @property
    def server_secret(self) -> str:
        return self.__server_secret

    @property
    def api(self) -> str:
        return self.__api

    @property
    def download_config_specs_uri(self) -> str:
        return (self.__api_for_download_config_specs or self.__api) + '/download_config_specs'

    @property
    def get_id_lists_uri(self) -> str:
        return self.__api + '/get_id_lists'

    @property
    def log_event_uri(self) -> str:
        return self.__api + '/log_event'

    @property
    def environment_tier(self) -> Optional[str]:
        return self.__environment_tier

    @property
    def bootstrap_values(self) -> Optional[Union[str, dict]]:
        return self.__bootstrap_values

    @property
    def rules_updated_callback(self) -> Optional[Callable[[str, int], None]]:
        return self.__rules_updated_callback

    @property
    def evaluation_callback(self) -> Optional[Callable[[str, str, Any], None]]:
        return self.__evaluation_callback

    @property
    def local_mode(self) -> bool:
        return self.__local_mode

    @property
    def init_timeout(self) -> float:
        return self.__init_timeout

    @property
    def rulesets_sync_interval(self) -> float:
        return self.__rulesets_sync_interval

    @property
    def id_lists_sync_interval(self) -> float:
        return self.__id_lists_sync_interval

    @property
    def logging_interval(self) -> float:
        return self.__logging_interval

    @property
    def logging_max_buffer_size(self) -> int:
        return self.__logging_max_buffer_size

    @property
    def event_queue_capacity(self) -> int:
        return self.__event_queue_capacity

    @property
    def dedupe_interval(self) -> float:
        return self.__dedupe_interval

    @property
    def post_logs_retry_limit(self) -> int:
        return self.__post_logs_retry_limit

    @property
    def backoff_base(self) -> float:
        return self.__backoff_base

    @property
    def max_concurrent_requests(self) -> int:
        return self.__max_concurrent_requests

    @property
    def dispatcher_sweep_interval(self) -> float:
        return self.__dispatcher_sweep_interval

    @property
    def sticky_bucket_store(self) -> Optional[StickyBucketStore]:
        return self.__sticky_bucket_store

    @property
    def data_adapter(self) -> Optional[DataAdapter]:
        return self.__data_adapter

    @property
    def init_strategy_for_id_lists(self) -> str:
        return self.__init_strategy_for_id_lists

    @property
    def user_agent_parser(self) -> Optional[Callable[[str], Optional[dict]]]:
        return self.__user_agent_parser

    @property
    def ip_country_lookup(self) -> Optional[Callable[[str], Optional[str]]]:
        return self.__ip_country_lookup

    @property
    def disable_all_logging(self) -> bool:
        return self.__disable_all_logging

    @property
    def http(self) -> HTTPConfig:
        return self.__http

    def _validate(self):
        if not self.local_mode and (not isinstance(self.server_secret, str) or not self.server_secret.startswith('secret-')):
            log.warning("Server secret is missing or does not start with 'secret-'.")
        if self.logging_max_buffer_size > self.event_queue_capacity:
            log.warning("logging_max_buffer_size is larger than event_queue_capacity; events will be dropped before a flush is triggered.")
        if self.init_strategy_for_id_lists not in ID_LIST_INIT_STRATEGIES:
            log.warning("Unknown init_strategy_for_id_lists %r; using 'await'" % self.init_strategy_for_id_lists)
            self.__init_strategy_for_id_lists = 'await'
        if self.bootstrap_values is not None and self.data_adapter is not None:
            log.error("Both bootstrap_values and data_adapter were provided; the bootstrap values will be ignored")


__all__ = ['Config', 'HTTPConfig']
