"""
This submodule defines the :class:`User` type, the subject of every evaluation.
"""

from typing import Any, Dict, Optional, Union

from gatekeeper.impl.util import get_case_insensitive

# top-level attributes, keyed by their wire name
_TOP_LEVEL_FIELDS = {
    'userID': 'user_id',
    'email': 'email',
    'ip': 'ip',
    'userAgent': 'user_agent',
    'country': 'country',
    'locale': 'locale',
    'appVersion': 'app_version',
}

_FIELD_ALIASES = {k.lower(): v for k, v in _TOP_LEVEL_FIELDS.items()}
_FIELD_ALIASES.update({v: v for v in _TOP_LEVEL_FIELDS.values()})


class User:
    """
    A collection of attributes describing the subject of an evaluation.

    A user must have at least one identifier: either a ``user_id`` or a non-empty value in
    ``custom_ids``. Evaluations use one of these identifiers (chosen by the ID type of each rule)
    as the unit for percentage rollouts.

    ``private_attributes`` may be used in rule conditions but are never included in events.
    """

    __slots__ = ['_user_id', '_custom_ids', '_email', '_ip', '_user_agent', '_country', '_locale', '_app_version', '_custom', '_private_attributes', '_environment']

    def __init__(
        self,
        user_id: Optional[Union[str, int]] = None,
        custom_ids: Optional[Dict[str, str]] = None,
        email: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        country: Optional[str] = None,
        locale: Optional[str] = None,
        app_version: Optional[str] = None,
        custom: Optional[Dict[str, Any]] = None,
        private_attributes: Optional[Dict[str, Any]] = None,
        environment: Optional[Dict[str, str]] = None,
    ):
        self._user_id = user_id
        self._custom_ids = dict(custom_ids) if custom_ids else {}
        self._email = email
        self._ip = ip
        self._user_agent = user_agent
        self._country = country
        self._locale = locale
        self._app_version = app_version
        self._custom = dict(custom) if custom else {}
        self._private_attributes = dict(private_attributes) if private_attributes else {}
        self._environment = dict(environment) if environment else {}

    @classmethod
    def from_dict(cls, data: dict) -> 'User':
        """Creates a user from its JSON representation, as produced by :func:`to_dict()`."""
        return User(
            user_id=data.get('userID'),
            custom_ids=data.get('customIDs'),
            email=data.get('email'),
            ip=data.get('ip'),
            user_agent=data.get('userAgent'),
            country=data.get('country'),
            locale=data.get('locale'),
            app_version=data.get('appVersion'),
            custom=data.get('custom'),
            private_attributes=data.get('privateAttributes'),
            environment=data.get('statsigEnvironment'),
        )

    @property
    def user_id(self) -> Optional[Union[str, int]]:
        return self._user_id

    @property
    def custom_ids(self) -> Dict[str, str]:
        return self._custom_ids

    @property
    def email(self) -> Optional[str]:
        return self._email

    @property
    def ip(self) -> Optional[str]:
        return self._ip

    @property
    def user_agent(self) -> Optional[str]:
        return self._user_agent

    @property
    def country(self) -> Optional[str]:
        return self._country

    @property
    def locale(self) -> Optional[str]:
        return self._locale

    @property
    def app_version(self) -> Optional[str]:
        return self._app_version

    @property
    def custom(self) -> Dict[str, Any]:
        return self._custom

    @property
    def private_attributes(self) -> Dict[str, Any]:
        return self._private_attributes

    @property
    def environment(self) -> Dict[str, str]:
        return self._environment

    @property
    def identifiable(self) -> bool:
        """True if the user has a non-empty user ID or at least one non-empty custom ID."""
        if isinstance(self._user_id, bool):
            return False
        if isinstance(self._user_id, (int, float)) or (isinstance(self._user_id, str) and self._user_id != ''):
            return True
        return any(v is not None and v != '' for v in self._custom_ids.values())

    def get_unit_id(self, id_type: Optional[str]) -> Optional[str]:
        """
        Returns the identifier used for bucketing with the given ID type. The type "userID"
        (in any case) selects the user ID; any other type selects the matching custom ID.
        """
        if isinstance(id_type, str) and id_type.lower() != 'userid':
            value = get_case_insensitive(self._custom_ids, id_type)
        else:
            value = self._user_id
        return None if value is None else str(value)

    def get_field(self, field: Optional[str]) -> Any:
        """
        Looks up an attribute by name for rule conditions: first the built-in attributes, then
        ``custom``, then ``private_attributes``. Names are matched as given and in lower case.
        """
        if field is None:
            return None
        attr = _FIELD_ALIASES.get(field) or _FIELD_ALIASES.get(field.lower())
        if attr is not None:
            value = getattr(self, '_' + attr)
            if value is not None:
                return value
        for source in (self._custom, self._private_attributes):
            value = source.get(field)
            if value is None:
                value = source.get(field.lower())
            if value is not None:
                return value
        return None

    def get_environment_field(self, field: Optional[str]) -> Any:
        if field is None:
            return None
        return get_case_insensitive(self._environment, field)

    def with_environment_tier(self, tier: Optional[str]) -> 'User':
        """
        Returns this user with the environment tier filled in, unless the user already declares
        an environment or no tier is given.
        """
        if tier is None or self._environment:
            return self
        return User(
            user_id=self._user_id,
            custom_ids=self._custom_ids,
            email=self._email,
            ip=self._ip,
            user_agent=self._user_agent,
            country=self._country,
            locale=self._locale,
            app_version=self._app_version,
            custom=self._custom,
            private_attributes=self._private_attributes,
            environment={'tier': tier},
        )

    def to_dict(self, include_private: bool = False) -> dict:
        """
        Returns the JSON representation of the user, omitting empty attributes. Private
        attributes are omitted unless ``include_private`` is true.
        """
        out = {}  # type: Dict[str, Any]
        for wire_name, attr in _TOP_LEVEL_FIELDS.items():
            value = getattr(self, '_' + attr)
            if value is not None:
                out[wire_name] = value
        if self._custom_ids:
            out['customIDs'] = dict(self._custom_ids)
        if self._custom:
            out['custom'] = dict(self._custom)
        if self._environment:
            out['statsigEnvironment'] = dict(self._environment)
        if include_private and self._private_attributes:
            out['privateAttributes'] = dict(self._private_attributes)
        return out

    def __eq__(self, other) -> bool:
        return isinstance(other, User) and self.to_dict(True) == other.to_dict(True)

    def __repr__(self) -> str:
        return "User(%s)" % self.to_dict()


__all__ = ['User']
