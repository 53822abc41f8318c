class DestinationProxyError(Exception):
    """Base class for errors reported to the command line as a single line."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class FormatError(DestinationProxyError):
    """The route does not look like a deployed proxy route."""


class AuthenticationError(DestinationProxyError):
    """Platform login or session reuse failed."""


class DiscoveryError(DestinationProxyError):
    """A route, an app or a service binding could not be found."""


class ConfigError(DestinationProxyError):
    """The forwarder was started without the configuration it needs."""


class TokenError(DestinationProxyError):
    """Token validation or token fetch failed for a proxied request."""
