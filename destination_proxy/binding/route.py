import re

from destination_proxy.errors import FormatError

ROUTE_REGION_PATTERN = re.compile(r"\.cfapps\.([\w-]+)\.hana\.ondemand\.com")
ROUTE_HOST_PATTERN = re.compile(r"^(https?://)?([^.]+)")
ROUTE_TARGET_PATTERN = re.compile(r"^(https?://)?([^/]+)/?$")


def get_region(route: str) -> str:
    match = ROUTE_REGION_PATTERN.search(route)
    if not match:
        raise FormatError(f"Invalid route format: {route}")
    return match.group(1)


def get_cloud_foundry_url(route: str, service: str) -> str:
    """Platform endpoint of ``service`` (e.g. ``api``) in the route's region."""
    return f"https://{service}.cf.{get_region(route)}.hana.ondemand.com"


def get_app_host(route: str) -> str:
    """First DNS label of the route, which is the app's route host."""
    match = ROUTE_HOST_PATTERN.match(route)
    if not match or not match.group(2):
        raise FormatError("Invalid host")
    return match.group(2)


def get_target(route: str) -> str:
    """
    Base URL the forwarder sends requests to.

    A bare host (optionally with scheme and trailing slash) is forced to https;
    a route carrying a path is kept as given.
    """
    return ROUTE_TARGET_PATTERN.sub(r"https://\2", route)
