import json
import os
from typing import Any, Dict, Mapping, Optional, Union

from destination_proxy.errors import ConfigError


def parse_vcap_services(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        raise ConfigError("Variable VCAP_SERVICES not found. Run bind first")
    try:
        services = json.loads(raw)
    except ValueError:
        raise ConfigError("Variable VCAP_SERVICES is not valid JSON")
    if not isinstance(services, dict):
        raise ConfigError("Variable VCAP_SERVICES must be a JSON object")
    return services


def service_credentials(
    name: str, vcap_services: Union[str, Mapping[str, Any], None] = None
) -> Dict[str, Any]:
    """
    Credentials of the bound service instance called ``name``.

    Every service label is searched, the way the platform's own environment
    helpers resolve a binding by instance name.
    """
    if vcap_services is None:
        vcap_services = os.environ.get("VCAP_SERVICES")
    if not isinstance(vcap_services, Mapping):
        vcap_services = parse_vcap_services(vcap_services)

    for instances in vcap_services.values():
        for instance in instances or []:
            if isinstance(instance, dict) and instance.get("name") == name:
                credentials = instance.get("credentials")
                if not isinstance(credentials, dict):
                    raise ConfigError(f"Service instance {name} has no credentials")
                return credentials
    raise ConfigError(f"No service instance {name} found in VCAP_SERVICES")
