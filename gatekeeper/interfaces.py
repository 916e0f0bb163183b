"""
This submodule contains interfaces for pluggable components of the client.

Most applications will not need to implement any of these; they exist so that a persistent
store for sticky experiment assignments can be supplied, and so that the default components
can be replaced in tests.
"""

from abc import ABCMeta, abstractmethod
from typing import Optional


class StickyBucketStore(metaclass=ABCMeta):
    """
    Interface for a key/value store that remembers which experiment group a unit was assigned to,
    so that the same unit keeps its assignment even when the rules of the experiment change.

    Keys are composed of a unit ID and the name of its ID type, in the form ``"<unitID>:<idType>"``.
    Each key maps to a dictionary of experiment name to the stored assignment, which the client
    treats as opaque JSON-compatible data.

    Implementations may raise exceptions; the client logs and ignores them, behaving as if nothing
    had been persisted.
    """

    @abstractmethod
    def load(self, key: str) -> Optional[dict]:
        """
        Returns all stored assignments for a unit, keyed by experiment name.

        :param key: the unit key
        :return: a dictionary of experiment name to stored values, or None if there are none
        """

    @abstractmethod
    def save(self, key: str, experiment: str, data: dict):
        """
        Stores the assignment of a unit for one experiment, replacing any previous value.

        :param key: the unit key
        :param experiment: the experiment (or layer) name
        :param data: the values to store
        """

    @abstractmethod
    def delete(self, key: str, experiment: str):
        """
        Removes the assignment of a unit for one experiment. Deleting a value that does not exist
        should have no effect.

        :param key: the unit key
        :param experiment: the experiment (or layer) name
        """


class EventProcessor(metaclass=ABCMeta):
    """
    Interface for the component that buffers exposure events and sends them to the server.
    The default implementation can be replaced for testing purposes.
    """

    @abstractmethod
    def send_event(self, event):
        """
        Processes an event to be sent at some point.
        """

    @abstractmethod
    def flush(self):
        """
        Specifies that any buffered events should be sent as soon as possible, rather than waiting
        for the next flush interval. This method is asynchronous; calling ``stop()`` will
        synchronously deliver any events that were not yet delivered prior to shutting down.
        """

    @abstractmethod
    def stop(self):
        """
        Shuts down the event processor after first delivering all pending events.
        """


class SpecRequester(metaclass=ABCMeta):
    """
    Interface for the component that retrieves rulesets and ID lists from the server. The default
    implementation can be replaced for testing purposes.
    """

    @abstractmethod
    def get_config_specs(self, since_time: int) -> dict:
        """
        Fetches the ruleset payload.

        :param since_time: the sync time of the rulesets currently held, or 0
        :return: the decoded JSON payload
        """

    @abstractmethod
    def get_id_list_lookup(self) -> dict:
        """
        Fetches the index of ID lists, keyed by list name.
        """

    @abstractmethod
    def get_id_list_content(self, url: str, start: int):
        """
        Fetches the portion of an ID list file beginning at byte offset ``start``.

        :return: a tuple of the number of bytes received and the decoded text
        """


class DataAdapter(metaclass=ABCMeta):
    """
    Interface for an external store of rulesets and ID lists, such as a cache shared between
    processes. When one is configured, the client loads its initial data from the adapter instead
    of the network, and writes everything it downloads back to it.

    Values are strings: the raw ruleset JSON under :data:`RULESETS_KEY`, a JSON list of ID list
    names under :data:`ID_LISTS_KEY`, and the ``+id`` lines of each list under the key returned by
    :func:`id_list_key`.
    """

    @abstractmethod
    def initialize(self):
        """
        Prepares the adapter for use. Called once before the first :func:`get`.
        """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """
        Returns the value stored under ``key``, or None if there is none.
        """

    @abstractmethod
    def set(self, key: str, value: str, time: int = 0):
        """
        Stores a value.

        :param key: one of the adapter keys
        :param value: the serialized value
        :param time: the sync time of the rulesets the value came with, or 0
        """

    @abstractmethod
    def shutdown(self):
        """
        Releases any resources held by the adapter. Called when the client is closed.
        """

    def supports_polling_updates_for(self, key: str) -> bool:
        """
        Returns true if the scheduled syncs for ``key`` should read from this adapter instead of
        the network, for deployments where a separate process keeps the adapter up to date.
        """
        return False


RULESETS_KEY = 'gatekeeper.rulesets'
ID_LISTS_KEY = 'gatekeeper.id_lists'


def id_list_key(name: str) -> str:
    return ID_LISTS_KEY + '::' + name


__all__ = ['StickyBucketStore', 'EventProcessor', 'SpecRequester', 'DataAdapter', 'RULESETS_KEY', 'ID_LISTS_KEY', 'id_list_key']
