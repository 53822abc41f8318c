import logging
from pathlib import Path
from typing import Optional, Union

from destination_proxy.binding.artifact import DestinationBinding, build_env, write_env
from destination_proxy.binding.platform import CloudFoundryPlatform, Platform
from destination_proxy.binding.route import get_cloud_foundry_url, get_target
from destination_proxy.vars import (
    DESTINATION_INSTANCE_NAME,
    PROXY_HOST,
    UAA_INSTANCE_NAME,
)

logger = logging.getLogger("uvicorn.error")


async def build_binding_env(
    route: str,
    port: int,
    platform: Platform,
    uaa_instance_name: str = UAA_INSTANCE_NAME,
    destination_instance_name: str = DESTINATION_INSTANCE_NAME,
) -> str:
    """Discover credentials and destinations behind ``route`` and render the artifact."""
    auth = await platform.login(route)
    app_guid = await platform.find_app_guid(route, auth)

    uaa_credentials = await platform.fetch_service_credentials(
        uaa_instance_name, app_guid, auth
    )
    logger.info(f"Credentials for {uaa_instance_name} obtained")

    destination_credentials = await platform.fetch_service_credentials(
        destination_instance_name, app_guid, auth
    )
    logger.info("Reading subaccount destinations...")
    catalog = await platform.fetch_destination_catalog(destination_credentials)
    destinations = []
    for entry in catalog:
        if not isinstance(entry, dict) or not entry.get("Name"):
            logger.warning(f"Skipping destination without a name: {entry}")
            continue
        destinations.append(DestinationBinding.from_catalog_entry(entry, PROXY_HOST, port))
    logger.info(
        f"Destinations available: {', '.join(d.name for d in destinations)}"
    )

    return build_env(
        uaa_credentials, destinations, get_target(route), uaa_instance_name
    )


async def bind(
    route: str,
    port: int,
    env_path: Union[str, Path],
    platform: Optional[Platform] = None,
) -> Path:
    """
    Generate a binding artifact for the deployed proxy at ``route``.

    The artifact is written only after every discovery step succeeded; an
    existing artifact in ``env_path`` is never overwritten.
    """
    # Fails on a malformed route before any login or network call
    api_url = get_cloud_foundry_url(route, "api")
    logger.info(f"Login to CF API endpoint: {api_url}")

    env = await build_binding_env(route, port, platform or CloudFoundryPlatform())
    return write_env(env, env_path)
