"""
Exceptions raised by the Gatekeeper client.

Only caller misuse is raised out of evaluation calls; the remaining exception types are used
inside the network layer and surface through logging or through futures returned by
:class:`gatekeeper.impl.network.NetworkClient`.
"""


class GatekeeperError(Exception):
    """Base class for all errors raised by this package."""


class InvalidArgumentError(GatekeeperError):
    """Raised synchronously when a call is made with an empty name or an unidentifiable user."""


class UninitializedError(GatekeeperError):
    """Raised when the client is used after it has been closed."""

    def __init__(self, message: str = "The client has been closed"):
        super().__init__(message)


class TooManyRequestsError(GatekeeperError):
    """Raised when too many requests to the same URL are already in flight."""

    def __init__(self, url: str):
        super().__init__("Too many requests to %s are in flight" % url)
        self.url = url


class LocalModeNetworkError(GatekeeperError):
    """Raised for any network request attempted while the client is in local mode."""

    def __init__(self):
        super().__init__("No network requests are made in local mode")


class RequestTimeoutError(GatekeeperError):
    """Raised when a dispatched request does not complete before its deadline."""

    def __init__(self, timeout: float):
        super().__init__("Request timed out after %s seconds" % timeout)
        self.timeout = timeout


__all__ = ['GatekeeperError', 'InvalidArgumentError', 'UninitializedError', 'TooManyRequestsError', 'LocalModeNetworkError', 'RequestTimeoutError']
