"""
Access to the cloud platform the deployed proxy runs on.

The binder only talks to the platform through the ``Platform`` protocol so it
can be exercised without a real Cloud Foundry landscape or ``cf`` executable.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx

from destination_proxy.binding.route import get_app_host, get_cloud_foundry_url
from destination_proxy.errors import AuthenticationError, DiscoveryError
from destination_proxy.utils import mask_token
from destination_proxy.vars import (
    AUTH_ALLOW_UNSAFE_CERT,
    CF_COMMAND,
    DESTINATION_ATTRIBUTES,
)

logger = logging.getLogger("uvicorn.error")

SUBACCOUNT_DESTINATIONS_PATH = "/destination-configuration/v1/subaccountDestinations"


@dataclass(frozen=True)
class AuthContext:
    base_url: str
    authorization: str

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": self.authorization}


class Platform(Protocol):
    async def login(self, route: str) -> AuthContext: ...

    async def find_app_guid(self, route: str, auth: AuthContext) -> str: ...

    async def fetch_service_credentials(
        self, service_name: str, app_guid: str, auth: AuthContext
    ) -> Dict[str, Any]: ...

    async def fetch_destination_catalog(
        self, credentials: Dict[str, Any]
    ) -> List[Dict[str, Any]]: ...


class CloudFoundryPlatform:
    """Platform backed by the ``cf`` CLI session and the Cloud Foundry v3 API."""

    def __init__(
        self,
        cf_command: str = CF_COMMAND,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.cf_command = cf_command
        self.transport = transport
        self.verify = not AUTH_ALLOW_UNSAFE_CERT

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, verify=self.verify, **kwargs)

    async def _run_cf(self, *args: str, capture: bool = True) -> str:
        stdout = asyncio.subprocess.PIPE if capture else None
        process = await asyncio.create_subprocess_exec(
            self.cf_command, *args, stdout=stdout
        )
        out, _ = await process.communicate()
        if process.returncode != 0:
            raise AuthenticationError(
                f"'{self.cf_command} {' '.join(args)}' exited with {process.returncode}"
            )
        return out.decode("utf-8").strip() if out else ""

    async def _oauth_token(self) -> str:
        token = await self._run_cf("oauth-token")
        if not token.lower().startswith("bearer"):
            raise AuthenticationError("No valid token found, need to re-authenticate.")
        return token

    async def login(self, route: str) -> AuthContext:
        api_url = get_cloud_foundry_url(route, "api")
        logger.info("Checking CF authentication...")
        try:
            token = await self._oauth_token()
            logger.info("CF authentication successful.")
            return AuthContext(base_url=api_url, authorization=token)
        except (AuthenticationError, OSError) as e:
            logger.debug(f"Session reuse failed: {e}")
            logger.warning("Not logged in. Initiating SSO login...")

        try:
            await self._run_cf("login", "-a", api_url, "--sso", capture=False)
            token = await self._oauth_token()
        except (AuthenticationError, OSError) as e:
            logger.debug(f"SSO login failed: {e}")
            raise AuthenticationError("CF SSO login failed.")
        logger.info("Successfully logged in via SSO.")
        return AuthContext(base_url=api_url, authorization=token)

    async def find_app_guid(self, route: str, auth: AuthContext) -> str:
        host = get_app_host(route)
        logger.info(f"Fetching app details for {route}...")
        async with self._client(base_url=auth.base_url, headers=auth.headers) as client:
            try:
                response = await client.get(
                    "/v3/routes", params={"hosts": host, "per_page": 1}
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(
                    mask_token(
                        f"API request failed: {e.response.status_code} - {e.response.text}",
                        auth.authorization,
                    )
                )
                raise DiscoveryError("Failed to fetch routes from Cloud Foundry API")
            except httpx.HTTPError as e:
                logger.error(f"No response received: {e}")
                raise DiscoveryError("Failed to fetch routes from Cloud Foundry API")

        try:
            return response.json()["resources"][0]["destinations"][0]["app"]["guid"]
        except (KeyError, IndexError, TypeError, ValueError):
            raise DiscoveryError(f"No route found for {host}")

    async def fetch_service_credentials(
        self, service_name: str, app_guid: str, auth: AuthContext
    ) -> Dict[str, Any]:
        logger.info(f"Fetching service credentials for {service_name}...")
        async with self._client(base_url=auth.base_url, headers=auth.headers) as client:
            try:
                response = await client.get(
                    "/v3/service_credential_bindings",
                    params={
                        "app_guids": app_guid,
                        "service_instance_names": service_name,
                        "type": "app",
                    },
                )
                response.raise_for_status()
                resources = response.json().get("resources") or []
                if not resources:
                    raise DiscoveryError(
                        f"Bindings for {service_name} not found. Check the deployed proxy for errors"
                    )
                details_url = resources[0]["links"]["details"]["href"]
                details = await client.get(details_url)
                details.raise_for_status()
                return details.json()["credentials"]
            except httpx.HTTPError as e:
                logger.error(f"Service binding lookup for {service_name} failed: {e}")
                raise DiscoveryError(
                    f"Failed to fetch credentials for {service_name} from Cloud Foundry API"
                )
            except (KeyError, TypeError, ValueError):
                raise DiscoveryError(f"Malformed binding details for {service_name}")

    async def fetch_destination_catalog(
        self, credentials: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """
        Read the subaccount destinations visible to the destination service binding.

        Authenticates with a client-credentials exchange against the identity
        endpoint embedded in the binding (``url``), then queries the
        destination service (``uri``). Only ``Name`` plus the configured extra
        attributes are selected.
        """
        try:
            uri = credentials["uri"]
            url = credentials["url"]
            client_id = credentials["clientid"]
            client_secret = credentials["clientsecret"]
        except KeyError as e:
            raise DiscoveryError(f"Destination service credentials lack {e.args[0]}")

        select = ",".join(["Name", *DESTINATION_ATTRIBUTES])
        async with self._client() as client:
            try:
                token_response = await client.post(
                    f"{url.rstrip('/')}/oauth/token",
                    data={"grant_type": "client_credentials"},
                    auth=(client_id, client_secret),
                )
                token_response.raise_for_status()
                access_token = token_response.json()["access_token"]

                response = await client.get(
                    f"{uri.rstrip('/')}{SUBACCOUNT_DESTINATIONS_PATH}",
                    params={"$select": select},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                response.raise_for_status()
                catalog = response.json()
            except httpx.HTTPError as e:
                logger.error(mask_token(f"Destination catalog request failed: {e}", client_secret))
                raise DiscoveryError("Failed to read subaccount destinations")
            except (KeyError, ValueError):
                raise DiscoveryError("Unexpected response from the destination service")

        if not isinstance(catalog, list):
            raise DiscoveryError("Unexpected response from the destination service")
        return catalog
