import time
from typing import Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


class DummyTokenIssuer:
    """Mints RS256 tokens the way an XSUAA tenant would sign them."""

    def __init__(self):
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.public_pem = (
            self.private_key.public_key()
            .public_bytes(
                serialization.Encoding.PEM,
                serialization.PublicFormat.SubjectPublicKeyInfo,
            )
            .decode("utf-8")
        )

    def issue(self, expires_in: Optional[int] = 3600, **claims) -> str:
        payload = {"client_id": "sb-proxy", "zid": "tenant", **claims}
        if expires_in is not None:
            payload["exp"] = int(time.time()) + expires_in
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    def credentials(self, **overrides) -> dict:
        credentials = {
            "clientid": "sb-proxy",
            "clientsecret": "proxy-secret",
            "url": "https://tenant.authentication.eu10.hana.ondemand.com",
            "uaadomain": "authentication.eu10.hana.ondemand.com",
            "verificationkey": self.public_pem,
            "xsappname": "proxy",
        }
        credentials.update(overrides)
        return credentials
