"""
The configuration artifact shared between ``bind`` and ``run``.

The artifact is a dotenv file with three variables: ``VCAP_SERVICES`` holding a
synthetic XSUAA binding, ``destinations`` listing each subaccount destination
as a synthetic ``http://<name>.dest`` URL routed through the local proxy, and
``CFDP_TARGET`` with the deployed proxy's base URL.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

from dotenv import load_dotenv

from destination_proxy.vars import TARGET_VARIABLE

logger = logging.getLogger("uvicorn.error")

ENV_FILE_NAME = ".env"
ENV_FILE_PATTERN = re.compile(r"^(\.\d+)?\.env$")

ROUTING_KEYS = ("name", "url", "proxyHost", "proxyPort")


@dataclass(frozen=True)
class DestinationBinding:
    name: str
    proxy_host: str
    proxy_port: int
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return f"http://{self.name}.dest"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "url": self.url,
            "proxyHost": self.proxy_host,
            "proxyPort": self.proxy_port,
        }
        for key, value in self.extra.items():
            if key not in ROUTING_KEYS:
                data[key] = value
        return data

    @classmethod
    def from_catalog_entry(
        cls, entry: Dict[str, Any], proxy_host: str, proxy_port: int
    ) -> "DestinationBinding":
        extra = {k: v for k, v in entry.items() if k != "Name"}
        return cls(
            name=entry["Name"], proxy_host=proxy_host, proxy_port=proxy_port, extra=extra
        )


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def build_env(
    uaa_credentials: Dict[str, Any],
    destinations: Iterable[DestinationBinding],
    target: str,
    uaa_instance_name: str,
) -> str:
    vcap_services = {
        "xsuaa": [
            {
                "label": "xsuaa",
                "plan": "broker",
                "name": uaa_instance_name,
                "tags": ["xsuaa"],
                "credentials": uaa_credentials,
            }
        ]
    }
    return (
        f"VCAP_SERVICES={_dumps(vcap_services)}\n"
        f"destinations={_dumps([d.to_dict() for d in destinations])}\n"
        f"{TARGET_VARIABLE}={target}"
    )


def candidate_file_names():
    yield ENV_FILE_NAME
    index = 0
    while True:
        index += 1
        yield f".{index}{ENV_FILE_NAME}"


def write_env(env: str, env_path: Union[str, Path]) -> Path:
    """
    Write the artifact into ``env_path`` without touching existing artifacts.

    The first free name of ``.env``, ``.1.env``, ``.2.env``, ... wins. Files are
    created exclusively, so a name taken between the check and the write is
    skipped instead of truncated.
    """
    directory = Path(env_path).resolve()
    for file_name in candidate_file_names():
        path = directory / file_name
        if path.exists():
            continue
        try:
            with open(path, "x", encoding="utf-8") as f:
                f.write(env)
        except FileExistsError:
            continue
        logger.info(f"File {path} created with binding parameters")
        return path


def _artifact_index(name: str) -> int:
    match = ENV_FILE_PATTERN.match(name)
    return int(match.group(1)[1:]) if match.group(1) else 0


def find_env_files(env_path: Union[str, Path]) -> List[Path]:
    """Artifacts in ``env_path``, most recently bound first."""
    directory = Path(env_path).resolve()
    names = [p.name for p in directory.iterdir() if ENV_FILE_PATTERN.match(p.name)]
    return [directory / name for name in sorted(names, key=_artifact_index, reverse=True)]


def load_env_files(env_path: Union[str, Path]) -> List[Path]:
    """
    Load every artifact in ``env_path``.

    Variables already set are kept, so the process environment wins over any
    file and a newer artifact wins over an older one.
    """
    paths = find_env_files(env_path)
    for path in paths:
        load_dotenv(path)
    if not paths:
        logger.warning(f"No binding files found in {Path(env_path).resolve()}")
    return paths
