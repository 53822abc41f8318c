from typing import Any, Dict, List, Optional

from destination_proxy.binding.platform import AuthContext
from destination_proxy.errors import AuthenticationError, DiscoveryError


class FakePlatform:
    """In-memory platform recording the calls the binder makes."""

    def __init__(
        self,
        bindings: Optional[Dict[str, Dict[str, Any]]] = None,
        catalog: Optional[List[Dict[str, Any]]] = None,
        app_guid: Optional[str] = "app-guid",
        login_error: bool = False,
    ):
        self.bindings = bindings or {}
        self.catalog = catalog or []
        self.app_guid = app_guid
        self.login_error = login_error
        self.calls: List[tuple] = []

    async def login(self, route: str) -> AuthContext:
        self.calls.append(("login", route))
        if self.login_error:
            raise AuthenticationError("CF SSO login failed.")
        return AuthContext(base_url="https://api.cf.eu10.hana.ondemand.com", authorization="bearer cf")

    async def find_app_guid(self, route: str, auth: AuthContext) -> str:
        self.calls.append(("find_app_guid", route))
        if not self.app_guid:
            raise DiscoveryError(f"No route found for {route}")
        return self.app_guid

    async def fetch_service_credentials(
        self, service_name: str, app_guid: str, auth: AuthContext
    ) -> Dict[str, Any]:
        self.calls.append(("fetch_service_credentials", service_name, app_guid))
        if service_name not in self.bindings:
            raise DiscoveryError(
                f"Bindings for {service_name} not found. Check the deployed proxy for errors"
            )
        return self.bindings[service_name]

    async def fetch_destination_catalog(
        self, credentials: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        self.calls.append(("fetch_destination_catalog", credentials.get("uri")))
        return self.catalog
