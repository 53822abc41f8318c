import os

import pytest

from destination_proxy.utils_tests.token_issuer import DummyTokenIssuer

BINDING_VARIABLES = ("VCAP_SERVICES", "destinations", "CFDP_TARGET")


@pytest.fixture(scope="session")
def token_issuer():
    """RSA-backed issuer shared by tests; key generation is slow."""
    return DummyTokenIssuer()


@pytest.fixture
def uaa_credentials(token_issuer):
    return token_issuer.credentials()


@pytest.fixture
def clean_binding_env():
    """Keep variables loaded from artifacts by a test out of the other tests."""
    saved = {name: os.environ.pop(name) for name in BINDING_VARIABLES if name in os.environ}
    yield
    for name in BINDING_VARIABLES:
        os.environ.pop(name, None)
    os.environ.update(saved)
