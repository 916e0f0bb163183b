import logging
import time
from typing import Any, Optional

log = logging.getLogger('gatekeeper.util')


def current_time_millis() -> int:
    return int(time.time() * 1000)


# Statuses which are worth retrying for any request; everything else at or above
# 400 is reported to the caller immediately.
RETRYABLE_STATUSES = frozenset([408, 500, 502, 503, 504, 522, 524, 599])

_RECOVERABLE_CLIENT_STATUSES = [400, 408, 429]


class UnsuccessfulResponseException(Exception):
    def __init__(self, status):
        super(UnsuccessfulResponseException, self).__init__("HTTP error %d" % status)
        self._status = status

    @property
    def status(self):
        return self._status


def throw_if_unsuccessful_response(resp):
    if resp.status >= 400:
        raise UnsuccessfulResponseException(resp.status)


def is_http_error_recoverable(status):
    if status >= 400 and status < 500:
        return status in _RECOVERABLE_CLIENT_STATUSES  # all other 4xx besides these are unrecoverable
    return True  # all other errors are recoverable


def http_error_description(status):
    return "HTTP error %d%s" % (status, " (invalid server secret)" if (status == 401 or status == 403) else "")


def http_error_message(status, context, retryable_message="will retry"):
    return "Received %s for %s - %s" % (http_error_description(status), context, retryable_message if is_http_error_recoverable(status) else "giving up permanently")


def check_if_error_is_recoverable_and_log(error_context, status_code, error_desc, recoverable_message):
    if status_code and (error_desc is None):
        error_desc = http_error_description(status_code)
    if status_code and not is_http_error_recoverable(status_code):
        log.error("Error %s (giving up permanently): %s" % (error_context, error_desc))
        return False
    log.warning("Error %s (%s): %s" % (error_context, recoverable_message, error_desc))
    return True


def get_case_insensitive(data: Optional[dict], key: str) -> Any:
    """
    Looks up a key in a dict, falling back to a case-insensitive match. Returns None if the
    dict is absent or has no matching key.
    """
    if not isinstance(data, dict) or not isinstance(key, str):
        return None
    if key in data:
        return data[key]
    lowered = key.lower()
    for k, v in data.items():
        if isinstance(k, str) and k.lower() == lowered:
            return v
    return None
