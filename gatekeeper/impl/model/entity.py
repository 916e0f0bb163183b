import json
from typing import Any, List, Optional, Union

# This file provides support for our data model classes.
#
# ConfigSpec is the top-level model class and subclasses ModelEntity: it is decoded from the
# dict that corresponds to the JSON representation, the constructor of each class validates the
# individual properties it captures, and the ModelEntity constructor keeps the original dict so
# that it can be inspected or re-serialized.
#
# Lower-level classes such as Rule and Condition are not derived from ModelEntity because they
# never need to be serialized outside of their enclosing ConfigSpec.
#
# All model classes use the opt_ and req_ functions so that JSON values of the wrong type cause
# the whole ruleset payload to be rejected, rather than reaching evaluation where they would
# cause errors that are harder to diagnose.


def opt_type(data: dict, name: str, desired_type) -> Any:
    value = data.get(name)
    if value is not None and not isinstance(value, desired_type):
        raise ValueError('error in ruleset data: property "%s" should be type %s but was %s"' % (name, desired_type, value.__class__))
    return value


def opt_bool(data: dict, name: str) -> bool:
    return opt_type(data, name, bool) is True


def opt_dict(data: dict, name: str) -> Optional[dict]:
    return opt_type(data, name, dict)


def opt_int(data: dict, name: str) -> Optional[int]:
    return opt_type(data, name, int)


def opt_number(data: dict, name: str) -> Optional[Union[int, float]]:
    value = data.get(name)
    if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
        raise ValueError('error in ruleset data: property "%s" should be a number but was %s"' % (name, value.__class__))
    return value


def opt_list(data: dict, name: str) -> list:
    return opt_type(data, name, list) or []


def opt_str(data: dict, name: str) -> Optional[str]:
    return opt_type(data, name, str)


def opt_str_list(data: dict, name: str) -> Optional[List[str]]:
    value = opt_type(data, name, list)
    return None if value is None else validate_list_type(value, name, str)


def req_type(data: dict, name: str, desired_type) -> Any:
    value = opt_type(data, name, desired_type)
    if value is None:
        raise ValueError('error in ruleset data: required property "%s" is missing' % name)
    return value


def req_dict_list(data: dict, name: str) -> list:
    return validate_list_type(req_list(data, name), name, dict)


def req_list(data: dict, name: str) -> list:
    return req_type(data, name, list)


def req_str(data: dict, name: str) -> str:
    return req_type(data, name, str)


def validate_list_type(items: list, name: str, desired_type) -> list:
    for item in items:
        if not isinstance(item, desired_type):
            raise ValueError('error in ruleset data: property %s should be an array of %s but an item was %s' % (name, desired_type, item.__class__))
    return items


class ModelEntity:
    def __init__(self, data: dict):
        self._data = data

    def to_json_dict(self):
        return self._data

    def get(self, attribute, default=None) -> Any:
        return self._data.get(attribute, default)

    def __getitem__(self, attribute) -> Any:
        return self._data[attribute]

    def __contains__(self, attribute) -> bool:
        return attribute in self._data

    def __eq__(self, other) -> bool:
        return self.__class__ == other.__class__ and self._data == other._data

    def __repr__(self) -> str:
        return json.dumps(self._data, separators=(',', ':'))
