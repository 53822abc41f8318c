import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from destination_proxy.errors import ConfigError
from destination_proxy.oauth.credentials import service_credentials
from destination_proxy.vars import TARGET_VARIABLE, TIMEOUT_VARIABLE, UAA_INSTANCE_NAME

logger = logging.getLogger("uvicorn.error")


def parse_timeout(raw: Optional[str]) -> Optional[float]:
    """Upstream timeout in seconds; empty, zero or negative means unbounded."""
    if not raw or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"Variable {TIMEOUT_VARIABLE} must be a number of seconds, got {raw!r}")
    return value if value > 0 else None


@dataclass(frozen=True)
class ForwarderConfig:
    """Startup configuration of the forwarder, read once from the environment."""

    target: str
    uaa_credentials: Dict[str, Any]
    destinations: List[Dict[str, Any]] = field(default_factory=list)
    timeout: Optional[float] = None

    @classmethod
    def from_environ(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        uaa_instance_name: str = UAA_INSTANCE_NAME,
    ) -> "ForwarderConfig":
        if environ is None:
            environ = os.environ

        target = (environ.get(TARGET_VARIABLE) or "").strip()
        if not target:
            raise ConfigError(f"Variable {TARGET_VARIABLE} not found. Run bind first")

        uaa_credentials = service_credentials(
            uaa_instance_name, environ.get("VCAP_SERVICES")
        )

        destinations: List[Dict[str, Any]] = []
        raw_destinations = environ.get("destinations")
        if raw_destinations:
            try:
                destinations = json.loads(raw_destinations)
            except ValueError:
                logger.warning("Ignoring unreadable destinations variable")

        return cls(
            target=target.rstrip("/"),
            uaa_credentials=uaa_credentials,
            destinations=destinations,
            timeout=parse_timeout(environ.get(TIMEOUT_VARIABLE)),
        )

    @property
    def destination_names(self) -> List[str]:
        return [
            d["name"] for d in self.destinations if isinstance(d, dict) and "name" in d
        ]
