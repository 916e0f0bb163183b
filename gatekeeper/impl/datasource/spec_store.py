"""
Holds the current rulesets and ID lists, and keeps them in sync with the server.
"""

import json
import time
from threading import Event, Lock
from typing import Any, Dict, FrozenSet, Iterable, Optional

from gatekeeper.evaluation import EvaluationReason
from gatekeeper.impl.model.snapshot import IDList, Snapshot
from gatekeeper.impl.repeating_task import RepeatingTask
from gatekeeper.impl.util import (UnsuccessfulResponseException,
                                  check_if_error_is_recoverable_and_log,
                                  current_time_millis, http_error_message,
                                  is_http_error_recoverable, log)
from gatekeeper.interfaces import (ID_LISTS_KEY, RULESETS_KEY, DataAdapter,
                                   SpecRequester, id_list_key)

# how long ruleset syncs may keep failing before the rulesets are reported as outdated
OUTDATED_WARNING_THRESHOLD = 120

# url and file ID of ID lists loaded from a data adapter
ADAPTER_SOURCE = 'bootstrap'


class SpecStore:
    """
    Owns the current :class:`Snapshot`. Readers call :func:`snapshot` once per evaluation; the
    sync tasks publish replacements by assigning a new snapshot, never by modifying one.

    If the configuration has a :class:`gatekeeper.interfaces.DataAdapter`, the initial rulesets and
    ID lists are read from it, and everything downloaded afterwards is written back to it.
    """

    def __init__(self, config, requester: SpecRequester, ready: Event):
        """
        :param config: the client configuration
        :param requester: fetches rulesets and ID lists
        :param ready: set once rulesets are first applied, or when syncing fails unrecoverably
        """
        self._config = config
        self._requester = requester
        self._ready = ready
        self._adapter = config.data_adapter  # type: Optional[DataAdapter]
        self.__id_lists_ready = Event()
        self.__snapshot = Snapshot.empty()
        self.__update_lock = Lock()
        self.__id_list_lock = Lock()
        self.__last_success = time.time()
        self.__failure_count = 0
        self.__rulesets_task = None  # type: Optional[RepeatingTask]
        self.__id_lists_task = None  # type: Optional[RepeatingTask]

    @property
    def snapshot(self) -> Snapshot:
        return self.__snapshot

    @property
    def initialized(self) -> bool:
        return self.__snapshot.initialized

    @property
    def id_lists_ready(self) -> Event:
        """Set once the first ID list sync has finished, or immediately if ID lists are not synced."""
        return self.__id_lists_ready

    @property
    def failure_count(self) -> int:
        """The number of ruleset syncs that have failed since the last successful one."""
        return self.__failure_count

    def start(self):
        if self._adapter is not None:
            self._initialize_adapter()
            loaded = self._load_rulesets_from_adapter()
        else:
            loaded = self._apply_bootstrap()
        if loaded:
            self._ready.set()

        strategy = self._config.init_strategy_for_id_lists
        id_lists_loaded = False
        if strategy != 'none' and self._adapter is not None:
            id_lists_loaded = self._load_id_lists_from_adapter()
        if strategy == 'none' or id_lists_loaded:
            self.__id_lists_ready.set()

        if self._config.local_mode:
            log.info("Local mode is enabled; rulesets and ID lists will not be synced")
            self._ready.set()
            self.__id_lists_ready.set()
            return

        interval = self._config.rulesets_sync_interval
        log.info("Starting ruleset sync with interval: %s" % interval)
        self.__rulesets_task = RepeatingTask("gatekeeper.datasource.rulesets", interval, interval if loaded else 0, self.sync_config_specs)
        self.__rulesets_task.start()
        if strategy != 'none':
            id_interval = self._config.id_lists_sync_interval
            self.__id_lists_task = RepeatingTask("gatekeeper.datasource.id_lists", id_interval, id_interval if id_lists_loaded else 0, self.sync_id_lists)
            self.__id_lists_task.start()

    def stop(self):
        log.info("Stopping ruleset and ID list sync")
        for task in (self.__rulesets_task, self.__id_lists_task):
            if task is not None:
                task.stop()
        if self._adapter is not None:
            try:
                self._adapter.shutdown()
            except Exception as e:
                log.exception("Error shutting down data adapter: %s" % e)

    # Rulesets

    def sync_config_specs(self) -> bool:
        """Fetches and applies rulesets once. Returns True if a new snapshot was published."""
        if self._polls_adapter_for(RULESETS_KEY):
            return self._load_rulesets_from_adapter()
        try:
            payload = self._requester.get_config_specs(self.__snapshot.time)
        except UnsuccessfulResponseException as e:
            message = http_error_message(e.status, "ruleset sync request")
            if is_http_error_recoverable(e.status):
                log.warning(message)
            else:
                log.error(message)
                self._ready.set()  # stops a waiting client; syncing continues in case the key is fixed
            self._record_failure()
            return False
        except Exception as e:
            log.exception("Error: Exception encountered when syncing rulesets. %s" % e)
            self._record_failure()
            return False

        if isinstance(payload, dict) and not payload.get('has_updates'):
            self._record_success()
            return False
        applied = self._apply_payload(payload, EvaluationReason.NETWORK)
        if applied is None:
            self._record_failure()
            return False
        self._record_success()
        if applied:
            self._adapter_set(RULESETS_KEY, json.dumps(payload), self.__snapshot.time)
            if not self._ready.is_set():
                log.info("Rulesets initialized ok")
                self._ready.set()
        return applied

    def _apply_bootstrap(self) -> bool:
        values = self._config.bootstrap_values
        if values is None:
            return False
        if isinstance(values, str):
            try:
                values = json.loads(values)
            except ValueError as e:
                log.warning("Ignoring bootstrap values that are not valid JSON: %s" % e)
                return False
        if self._apply_payload(values, EvaluationReason.BOOTSTRAP):
            log.info("Rulesets initialized from bootstrap values")
            return True
        log.warning("Bootstrap values did not contain usable rulesets")
        return False

    def _load_rulesets_from_adapter(self) -> bool:
        raw = self._adapter_get(RULESETS_KEY)
        if raw is None:
            return False
        try:
            values = json.loads(raw)
        except ValueError as e:
            log.warning("Ignoring rulesets from data adapter that are not valid JSON: %s" % e)
            return False
        if self._apply_payload(values, EvaluationReason.DATA_ADAPTER):
            log.info("Rulesets loaded from data adapter")
            return True
        return False


    def _apply_payload(self, payload: Any, reason: EvaluationReason) -> Optional[bool]:
        """
        Publishes a snapshot built from ``payload`` if it is newer than the current one. Returns
        True if published, False if the payload was not newer, or None if it was invalid.
        """
        with self.__update_lock:
            current = self.__snapshot
            try:
                snapshot = Snapshot.from_payload(payload, reason, current, current_time_millis())
            except ValueError as e:
                log.warning("Ignoring invalid ruleset payload: %s" % e)
                return None
            if snapshot is None:
                log.warning("Ignoring ruleset payload without updates")
                return None
            if current.time != 0 and snapshot.time <= current.time:
                log.debug("Ignoring rulesets with time %d, not newer than %d" % (snapshot.time, current.time))
                return False
            self.__snapshot = snapshot

        callback = self._config.rules_updated_callback
        if callback is not None:
            try:
                callback(json.dumps(payload), snapshot.time)
            except Exception as e:
                log.exception("Error in rules_updated_callback: %s" % e)
        return True

    def _record_success(self):
        self.__last_success = time.time()
        self.__failure_count = 0

    def _record_failure(self):
        self.__failure_count += 1
        elapsed = time.time() - self.__last_success
        if elapsed > OUTDATED_WARNING_THRESHOLD:
            log.warning("Rulesets have not been updated for %d seconds (%d failed syncs); evaluations may be outdated" % (elapsed, self.__failure_count))


    # ID lists

    def sync_id_lists(self):
        """Fetches the ID list index and downloads any new content, then publishes the result."""
        try:
            if self._polls_adapter_for(ID_LISTS_KEY) and self._load_id_lists_from_adapter():
                return
            self._sync_id_lists_from_network()
        finally:
            self.__id_lists_ready.set()

    def _sync_id_lists_from_network(self):
        with self.__id_list_lock:
            try:
                lookup = self._requester.get_id_list_lookup()
            except UnsuccessfulResponseException as e:
                check_if_error_is_recoverable_and_log("syncing ID lists", e.status, None, "will retry")
                return
            except Exception as e:
                log.exception("Error: Exception encountered when syncing ID lists. %s" % e)
                return
            if not isinstance(lookup, dict):
                log.warning("Ignoring ID list index that is not an object")
                return

            current = self.__snapshot.id_lists
            updated = {}  # type: Dict[str, IDList]
            for name, entry in lookup.items():
                id_list = self._sync_id_list(name, entry, current.get(name))
                if id_list is not None:
                    updated[name] = id_list

            with self.__update_lock:
                self.__snapshot = self.__snapshot.with_id_lists(updated)
        if self._adapter is not None:
            self._save_id_lists_to_adapter(updated)

    def _sync_id_list(self, name: str, entry: Any, existing: Optional[IDList]) -> Optional[IDList]:
        if not isinstance(entry, dict):
            return existing
        url = entry.get('url')
        file_id = entry.get('fileID')
        creation_time = entry.get('creationTime') or 0
        size = entry.get('size') or 0
        if not isinstance(url, str) or not url or not file_id:
            return existing
        if existing is not None and creation_time < existing.creation_time:
            return existing

        if existing is None or existing.file_id != file_id or size < existing.read_bytes:
            id_list = IDList(name, url, file_id, creation_time)
        else:
            id_list = existing
        if size <= id_list.read_bytes:
            return id_list
        return self._download_id_list(id_list)

    def _download_id_list(self, id_list: IDList) -> Optional[IDList]:
        try:
            length, text = self._requester.get_id_list_content(id_list.url, id_list.read_bytes)
        except Exception as e:
            log.warning("Failed to download ID list %s: %s" % (id_list.name, e))
            return id_list

        ids = _apply_id_list_changes(id_list.ids, text)
        if ids is None:
            log.warning("ID list %s is corrupt and will be downloaded again" % id_list.name)
            return None
        return id_list.with_content(id_list.read_bytes + length, ids)

    def _load_id_lists_from_adapter(self) -> bool:
        raw = self._adapter_get(ID_LISTS_KEY)
        if raw is None:
            return False
        try:
            names = json.loads(raw)
        except ValueError as e:
            log.warning("Ignoring ID list index from data adapter that is not valid JSON: %s" % e)
            return False
        if isinstance(names, dict):
            names = list(names.keys())
        if not isinstance(names, list):
            log.warning("Ignoring ID list index from data adapter that is not a list")
            return False

        loaded = {}  # type: Dict[str, IDList]
        for name in names:
            text = self._adapter_get(id_list_key(name))
            if text is None:
                continue
            ids = _apply_id_list_changes(frozenset(), text)
            if ids is None:
                log.warning("Ignoring corrupt ID list %s from data adapter" % name)
                continue
            loaded[name] = IDList(name, ADAPTER_SOURCE, ADAPTER_SOURCE, 0, 0, ids)
        with self.__id_list_lock, self.__update_lock:
            self.__snapshot = self.__snapshot.with_id_lists(loaded)
        log.info("Loaded %d ID lists from data adapter" % len(loaded))
        return True

    def _save_id_lists_to_adapter(self, id_lists: Dict[str, IDList]):
        for name, id_list in id_lists.items():
            self._adapter_set(id_list_key(name), ''.join('+%s\n' % unit_id for unit_id in sorted(id_list.ids)))
        self._adapter_set(ID_LISTS_KEY, json.dumps(sorted(id_lists.keys())))

    # Data adapter

    def _initialize_adapter(self):
        try:
            self._adapter.initialize()
        except Exception as e:
            log.exception("Error initializing data adapter: %s" % e)

    def _polls_adapter_for(self, key: str) -> bool:
        if self._adapter is None:
            return False
        try:
            return self._adapter.supports_polling_updates_for(key)
        except Exception as e:
            log.exception("Error querying data adapter: %s" % e)
            return False

    def _adapter_get(self, key: str) -> Optional[str]:
        if self._adapter is None:
            return None
        try:
            return self._adapter.get(key)
        except Exception as e:
            log.exception("Error reading %s from data adapter: %s" % (key, e))
            return None

    def _adapter_set(self, key: str, value: str, sync_time: int = 0):
        if self._adapter is None:
            return
        try:
            self._adapter.set(key, value, sync_time)
        except Exception as e:
            log.exception("Error writing %s to data adapter: %s" % (key, e))


def _apply_id_list_changes(ids: Iterable[str], text: str) -> Optional[FrozenSet[str]]:
    """
    Applies the ``+id`` and ``-id`` lines of an ID list file to ``ids``. Returns None if the text
    does not look like ID list content.
    """
    if text and text[0] not in ('+', '-'):
        return None
    result = set(ids)
    for line in text.splitlines():
        line = line.strip()
        if len(line) <= 1:
            continue
        op, unit_id = line[0], line[1:]
        if op == '+':
            result.add(unit_id)
        elif op == '-':
            result.discard(unit_id)
    return frozenset(result)
