from typing import Optional

from gatekeeper.evaluation import EvaluationResult
from gatekeeper.impl.util import log
from gatekeeper.interfaces import StickyBucketStore
from gatekeeper.user import User


def sticky_key(user: User, id_type: Optional[str]) -> Optional[str]:
    """Returns the storage key ``<unitID>:<idType>``, or None if the user has no such unit id."""
    id_type = id_type or 'userID'
    unit_id = user.get_unit_id(id_type)
    if unit_id is None or unit_id == '':
        return None
    return "%s:%s" % (unit_id, id_type)


class StickyAssignmentHandler:
    """
    Wraps the application's :class:`gatekeeper.interfaces.StickyBucketStore`. Any exception from
    the store is logged and swallowed, so that a storage outage degrades to normal evaluation.
    Without a store, every operation does nothing.
    """

    def __init__(self, store: Optional[StickyBucketStore]):
        self.__store = store

    @property
    def enabled(self) -> bool:
        return self.__store is not None

    def load(self, user: User, id_type: Optional[str]) -> Optional[dict]:
        key = sticky_key(user, id_type)
        if self.__store is None or key is None:
            return None
        try:
            values = self.__store.load(key)
        except Exception as e:
            log.exception("Failed to load sticky assignments for %s: %s" % (key, e))
            return None
        if values is not None and not isinstance(values, dict):
            log.warning("Ignoring sticky assignments for %s: expected a dict but got %s" % (key, values.__class__.__name__))
            return None
        return values

    def save(self, user: User, id_type: Optional[str], name: str, result: EvaluationResult):
        key = sticky_key(user, id_type)
        if self.__store is None or key is None:
            return
        try:
            self.__store.save(key, name, result.to_sticky_values())
        except Exception as e:
            log.exception("Failed to save sticky assignment %s for %s: %s" % (name, key, e))

    def delete(self, user: User, id_type: Optional[str], name: str):
        key = sticky_key(user, id_type)
        if self.__store is None or key is None:
            return
        try:
            self.__store.delete(key, name)
        except Exception as e:
            log.exception("Failed to delete sticky assignment %s for %s: %s" % (name, key, e))
