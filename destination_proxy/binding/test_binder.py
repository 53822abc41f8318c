import json

import pytest

from destination_proxy.binding.binder import bind
from destination_proxy.errors import AuthenticationError, DiscoveryError, FormatError
from destination_proxy.utils_tests.fake_platform import FakePlatform
from destination_proxy.vars import DESTINATION_INSTANCE_NAME, UAA_INSTANCE_NAME

ROUTE = "myorg-dev-cf-destination-proxy.cfapps.eu10.hana.ondemand.com"

DESTINATION_CREDENTIALS = {
    "uri": "https://destination-configuration.cfapps.eu10.hana.ondemand.com",
    "url": "https://tenant.authentication.eu10.hana.ondemand.com",
    "clientid": "sb-destination",
    "clientsecret": "destination-secret",
}


@pytest.fixture
def platform(uaa_credentials):
    return FakePlatform(
        bindings={
            UAA_INSTANCE_NAME: uaa_credentials,
            DESTINATION_INSTANCE_NAME: DESTINATION_CREDENTIALS,
        },
        catalog=[{"Name": "billing"}, {"Name": "crm", "Type": "HTTP"}],
    )


def read_env(path) -> dict:
    return dict(line.split("=", 1) for line in path.read_text().split("\n"))


@pytest.mark.asyncio
async def test_bind_writes_artifact(tmp_path, platform, uaa_credentials):
    path = await bind(ROUTE, port=9000, env_path=tmp_path, platform=platform)

    assert path == tmp_path / ".env"
    variables = read_env(path)
    assert variables["CFDP_TARGET"] == f"https://{ROUTE}"

    vcap = json.loads(variables["VCAP_SERVICES"])
    assert vcap["xsuaa"][0]["name"] == UAA_INSTANCE_NAME
    assert vcap["xsuaa"][0]["credentials"] == uaa_credentials

    destinations = json.loads(variables["destinations"])
    assert destinations == [
        {"name": "billing", "url": "http://billing.dest", "proxyHost": "http://127.0.0.1", "proxyPort": 9000},
        {
            "name": "crm",
            "url": "http://crm.dest",
            "proxyHost": "http://127.0.0.1",
            "proxyPort": 9000,
            "Type": "HTTP",
        },
    ]


@pytest.mark.asyncio
async def test_bind_discovery_order(tmp_path, platform):
    await bind(ROUTE, port=8887, env_path=tmp_path, platform=platform)

    assert platform.calls == [
        ("login", ROUTE),
        ("find_app_guid", ROUTE),
        ("fetch_service_credentials", UAA_INSTANCE_NAME, "app-guid"),
        ("fetch_service_credentials", DESTINATION_INSTANCE_NAME, "app-guid"),
        ("fetch_destination_catalog", DESTINATION_CREDENTIALS["uri"]),
    ]


@pytest.mark.asyncio
async def test_repeated_binds_never_clobber(tmp_path, platform):
    first = await bind(ROUTE, port=8887, env_path=tmp_path, platform=platform)
    first_content = first.read_bytes()

    second = await bind(ROUTE, port=8888, env_path=tmp_path, platform=platform)
    third = await bind(ROUTE, port=8889, env_path=tmp_path, platform=platform)

    assert (first.name, second.name, third.name) == (".env", ".1.env", ".2.env")
    assert first.read_bytes() == first_content
    assert '"proxyPort":8889' in third.read_text()


@pytest.mark.asyncio
async def test_malformed_route_fails_before_any_platform_call(tmp_path, platform):
    with pytest.raises(FormatError):
        await bind("myproxy.example.com", port=8887, env_path=tmp_path, platform=platform)

    assert platform.calls == []
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_login_failure_writes_nothing(tmp_path, platform):
    platform.login_error = True

    with pytest.raises(AuthenticationError):
        await bind(ROUTE, port=8887, env_path=tmp_path, platform=platform)

    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_missing_binding_writes_nothing(tmp_path, uaa_credentials):
    platform = FakePlatform(bindings={UAA_INSTANCE_NAME: uaa_credentials})

    with pytest.raises(DiscoveryError) as exc_info:
        await bind(ROUTE, port=8887, env_path=tmp_path, platform=platform)

    assert f"Bindings for {DESTINATION_INSTANCE_NAME} not found" in exc_info.value.message
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_unknown_route_writes_nothing(tmp_path, platform):
    platform.app_guid = None

    with pytest.raises(DiscoveryError):
        await bind(ROUTE, port=8887, env_path=tmp_path, platform=platform)

    assert list(tmp_path.iterdir()) == []
