"""
This submodule contains the client class that provides most of the package's functionality.
"""

import threading
import time
from typing import Any, Callable, Optional

from gatekeeper.config import Config
from gatekeeper.errors import InvalidArgumentError, UninitializedError
from gatekeeper.evaluation import DynamicConfig, FeatureGate, Layer
from gatekeeper.impl.datasource.spec_requester import SpecRequesterImpl
from gatekeeper.impl.datasource.spec_store import SpecStore
from gatekeeper.impl.evaluator import Evaluator
from gatekeeper.impl.events.event_processor import ExposureLogger
from gatekeeper.impl.network import NetworkClient
from gatekeeper.impl.sticky import StickyAssignmentHandler
from gatekeeper.impl.stubs import NullEventProcessor
from gatekeeper.impl.util import log
from gatekeeper.interfaces import SpecRequester
from gatekeeper.user import User


class GatekeeperClient:
    """The client object that evaluates gates, configs, experiments and layers and logs exposures.

    Create one instance per server secret and reuse it for the lifetime of the application. Each
    instance owns its own background threads, so several may coexist in one process.

    Client instances are thread-safe.
    """

    def __init__(self, config: Config, http=None, spec_requester: Optional[SpecRequester] = None, event_processor=None):
        """Constructs a new client and waits up to ``config.init_timeout`` seconds for rulesets.

        :param config: the client configuration
        :param http: optional urllib3 ``PoolManager``-compatible object for all requests
        :param spec_requester: optional replacement for the component that fetches rulesets and ID lists
        :param event_processor: optional replacement for the exposure logger
        """
        self._config = config
        self._config._validate()
        self._closed = False
        self._close_lock = threading.Lock()

        self._network = NetworkClient(config, http=http)
        self._sticky = StickyAssignmentHandler(config.sticky_bucket_store)

        if event_processor is not None:
            self._event_processor = event_processor
        elif config.local_mode or config.disable_all_logging:
            self._event_processor = NullEventProcessor()
        else:
            self._event_processor = ExposureLogger(config, self._network)

        ready = threading.Event()
        self._store = SpecStore(config, spec_requester or SpecRequesterImpl(config, self._network), ready)
        self._evaluator = Evaluator(lambda: self._store.snapshot, self._sticky, config.user_agent_parser, config.ip_country_lookup)

        if config.local_mode:
            log.info("Started Gatekeeper client in local mode")

        self._store.start()
        self._wait_for_initialization(ready)

        if self.is_initialized():
            log.info("Started Gatekeeper client: OK")
        else:
            log.warning("Initialization timeout exceeded for Gatekeeper client or an error occurred. Evaluations may return default values until rulesets are synced.")

    def _wait_for_initialization(self, ready: threading.Event):
        timeout = self._config.init_timeout
        await_id_lists = self._config.init_strategy_for_id_lists == 'await'
        if timeout <= 0 or (ready.is_set() and (not await_id_lists or self._store.id_lists_ready.is_set())):
            return
        log.info("Waiting up to %s seconds for Gatekeeper client to initialize..." % timeout)
        deadline = time.time() + timeout
        ready.wait(timeout)
        if await_id_lists:
            self._store.id_lists_ready.wait(max(deadline - time.time(), 0))

    def close(self):
        """Stops the background tasks, flushes pending exposures and releases network resources.

        Calls made after this raise :class:`gatekeeper.errors.UninitializedError`.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        log.info("Closing Gatekeeper client..")
        self._store.stop()
        self._event_processor.stop()
        self._network.close()

    # These magic methods allow a client object to be automatically cleaned up by the "with" scope operator
    def __enter__(self):
        return self

    def __exit__(self, type, value, traceback):
        self.close()

    def is_initialized(self) -> bool:
        """Returns true if rulesets have been applied, from the server or from bootstrap values, or if the client is in local mode."""
        return self._config.local_mode or self._store.initialized

    def flush(self, timeout: Optional[float] = None):
        """
        Delivers all pending exposures and events, and waits for delivery to finish.

        :param timeout: seconds after which delivery is abandoned and the pending events are dropped;
          with no timeout the call waits for the delivery request and its retries
        """
        self._check_open()
        self._event_processor.flush_sync(timeout)

    def sync_config_specs(self) -> bool:
        """Fetches rulesets immediately instead of waiting for the next scheduled sync."""
        self._check_open()
        return self._store.sync_config_specs()

    def sync_id_lists(self):
        """Fetches ID lists immediately instead of waiting for the next scheduled sync."""
        self._check_open()
        self._store.sync_id_lists()

    # Evaluation

    def check_gate(self, user: User, gate_name: str, disable_exposure_logging: bool = False) -> bool:
        """Returns true if ``user`` passes the named feature gate.

        :param user: the user to evaluate
        :param gate_name: the name of the gate
        :param disable_exposure_logging: if true, no exposure is logged for this check
        """
        return self.get_feature_gate(user, gate_name, disable_exposure_logging).value

    def get_feature_gate(self, user: User, gate_name: str, disable_exposure_logging: bool = False) -> FeatureGate:
        user = self._normalize_user(user, gate_name)
        result = self._evaluator.check_gate(user, gate_name)
        if not disable_exposure_logging:
            self._event_processor.log_gate_exposure(user, gate_name, result)
        gate = FeatureGate(gate_name, result)
        self._notify_evaluation('gate', gate_name, gate)
        return gate

    def get_config(self, user: User, config_name: str, disable_exposure_logging: bool = False) -> DynamicConfig:
        """Evaluates a dynamic config. Experiments evaluated this way never use sticky assignments."""
        return self._get_config(user, config_name, None, disable_exposure_logging, 'config')

    def get_experiment(self, user: User, experiment_name: str, user_persisted_values: Optional[dict] = None, disable_exposure_logging: bool = False) -> DynamicConfig:
        """Evaluates an experiment.

        :param user_persisted_values: the user's sticky assignments, as returned by
          :func:`get_user_persisted_values()`; if omitted, any stored assignment is discarded
        """
        return self._get_config(user, experiment_name, user_persisted_values, disable_exposure_logging, 'experiment')

    def get_layer(self, user: User, layer_name: str, user_persisted_values: Optional[dict] = None, disable_exposure_logging: bool = False) -> Layer:
        """Evaluates a layer. An exposure is logged for each parameter the first time it is read from the result."""
        user = self._normalize_user(user, layer_name)
        result = self._evaluator.get_layer(user, layer_name, user_persisted_values)
        on_exposure = None  # type: Optional[Callable[[Layer, str], None]]
        if not disable_exposure_logging:
            on_exposure = lambda layer, parameter_name: self._event_processor.log_layer_exposure(user, layer_name, parameter_name, result)
        layer = Layer(layer_name, result, on_exposure)
        self._notify_evaluation('layer', layer_name, layer)
        return layer

    def get_experiment_layer(self, experiment_name: str) -> Optional[str]:
        """Returns the name of the layer that an experiment belongs to, or None if it is not part of a layer."""
        self._check_open()
        return self._store.snapshot.get_experiment_layer(experiment_name)

    def get_user_persisted_values(self, user: User, id_type: str = 'userID') -> dict:
        """Loads the user's sticky assignments from the configured sticky bucket store, keyed by experiment or layer name."""
        self._check_open()
        return self._sticky.load(user, id_type) or {}

    def _get_config(self, user: User, name: str, persisted_values: Optional[dict], disable_exposure_logging: bool, kind: str) -> DynamicConfig:
        user = self._normalize_user(user, name)
        result = self._evaluator.get_config(user, name, persisted_values)
        if not disable_exposure_logging:
            self._event_processor.log_config_exposure(user, name, result)
        config = DynamicConfig(name, result)
        self._notify_evaluation(kind, name, config)
        return config

    # Manual exposures

    def manually_log_gate_exposure(self, user: User, gate_name: str):
        user = self._normalize_user(user, gate_name)
        result = self._evaluator.check_gate(user, gate_name)
        self._event_processor.log_gate_exposure(user, gate_name, result, is_manual=True)

    def manually_log_config_exposure(self, user: User, config_name: str):
        user = self._normalize_user(user, config_name)
        result = self._evaluator.get_config(user, config_name)
        self._event_processor.log_config_exposure(user, config_name, result, is_manual=True)

    def manually_log_layer_parameter_exposure(self, user: User, layer_name: str, parameter_name: str):
        user = self._normalize_user(user, layer_name)
        result = self._evaluator.get_layer(user, layer_name)
        self._event_processor.log_layer_exposure(user, layer_name, parameter_name, result, is_manual=True)

    # Custom events

    def log_event(self, user: User, event_name: str, value: Any = None, metadata: Optional[dict] = None):
        """Records a custom event for the user.

        :param event_name: the name of the event; names longer than 64 characters are trimmed
        :param value: optional string or number associated with the event
        :param metadata: optional dictionary of additional properties
        """
        user = self._normalize_user(user, event_name)
        if metadata is not None and not isinstance(metadata, dict):
            raise InvalidArgumentError("metadata must be a dict")
        self._event_processor.log_custom_event(user, event_name, value, metadata)

    # Local overrides

    def override_gate(self, gate_name: str, value: bool, user_id: Optional[str] = None):
        """Forces the gate to ``value`` for the given user or custom ID, or for everyone if ``user_id`` is omitted."""
        self._evaluator.override_gate(gate_name, value, user_id)

    def override_config(self, config_name: str, value: dict, user_id: Optional[str] = None):
        self._evaluator.override_config(config_name, value, user_id)

    def override_experiment(self, experiment_name: str, value: dict, user_id: Optional[str] = None):
        self._evaluator.override_config(experiment_name, value, user_id)

    def override_layer(self, layer_name: str, value: dict, user_id: Optional[str] = None):
        self._evaluator.override_layer(layer_name, value, user_id)

    def remove_gate_override(self, gate_name: str, user_id: Optional[str] = None):
        self._evaluator.remove_gate_override(gate_name, user_id)

    def remove_config_override(self, config_name: str, user_id: Optional[str] = None):
        self._evaluator.remove_config_override(config_name, user_id)

    def remove_layer_override(self, layer_name: str, user_id: Optional[str] = None):
        self._evaluator.remove_layer_override(layer_name, user_id)

    def clear_all_gate_overrides(self):
        self._evaluator.clear_all_gate_overrides()

    def clear_all_config_overrides(self):
        self._evaluator.clear_all_config_overrides()

    def clear_all_layer_overrides(self):
        self._evaluator.clear_all_layer_overrides()

    # Helpers

    def _check_open(self):
        if self._closed:
            raise UninitializedError()

    def _normalize_user(self, user: User, name: str) -> User:
        self._check_open()
        if not isinstance(name, str) or name == '':
            raise InvalidArgumentError("Must pass a non-empty name")
        if not isinstance(user, User):
            raise InvalidArgumentError("Must pass a gatekeeper.User")
        if not user.identifiable:
            raise InvalidArgumentError("A user must have a user_id or at least one non-empty custom ID")
        return user.with_environment_tier(self._config.environment_tier)

    def _notify_evaluation(self, kind: str, name: str, result: Any):
        callback = self._config.evaluation_callback
        if callback is None:
            return
        try:
            callback(kind, name, result)
        except Exception as e:
            log.exception("Error in evaluation_callback: %s" % e)


__all__ = ['GatekeeperClient', 'Config']
