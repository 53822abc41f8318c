"""
The forwarder's single bearer token.

One ``TokenCache`` lives on the server state and is shared by every request.
Validity is not tracked locally: before each use the cached token is checked
by building a security context from it (signature and expiry against the
XSUAA credentials). An expired token is replaced by a fresh client-credentials
token.

There is no lock around check-then-fetch. Requests that observe an expired
token concurrently may each fetch a token; the last fetch to complete is the
one that stays cached. Every fetched token is valid, so the only cost is a
redundant request to the identity service.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
import jwt
from opentelemetry import trace

from destination_proxy.errors import TokenError
from destination_proxy.utils import mask_token, token_fingerprint
from destination_proxy.vars import AUTH_ALLOW_UNSAFE_CERT

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

TOKEN_ALGORITHMS = ["RS256"]


PEM_HEADER = "-----BEGIN PUBLIC KEY-----"
PEM_FOOTER = "-----END PUBLIC KEY-----"


def _normalize_pem(key: str) -> str:
    """XSUAA sometimes publishes the verification key without line breaks."""
    if "\n" in key or not key.startswith(PEM_HEADER):
        return key
    body = key[len(PEM_HEADER):].replace(PEM_FOOTER, "").strip()
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    return "\n".join([PEM_HEADER, *lines, PEM_FOOTER]) + "\n"


class TokenCache:
    def __init__(
        self,
        credentials: Dict[str, Any],
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        try:
            self.url = credentials["url"].rstrip("/")
            self.client_id = credentials["clientid"]
            self.client_secret = credentials["clientsecret"]
        except KeyError as e:
            raise TokenError(f"Identity service credentials lack {e.args[0]}")
        self.verification_key = credentials.get("verificationkey")
        self.http_client = http_client
        self.token: Optional[str] = None
        self.fetch_count = 0
        self._jwks_client: Optional[jwt.PyJWKClient] = None

    async def _signing_key(self, token: str):
        if self.verification_key:
            return _normalize_pem(self.verification_key)
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(f"{self.url}/token_keys")
        # PyJWKClient uses blocking urllib calls
        signing_key = await asyncio.to_thread(
            self._jwks_client.get_signing_key_from_jwt, token
        )
        return signing_key.key

    async def is_expired(self, token: Optional[str]) -> bool:
        """
        True when ``token`` is missing or expired, False when it is valid.

        Any other validation failure (bad signature, malformed token,
        unreachable key endpoint) is raised as ``TokenError``.
        """
        if not token:
            return True
        try:
            key = await self._signing_key(token)
            jwt.decode(
                token,
                key,
                algorithms=TOKEN_ALGORITHMS,
                options={"verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            return True
        except jwt.PyJWTError as e:
            raise TokenError(f"Token validation failed: {e}")
        except ValueError as e:
            raise TokenError(f"Token verification key is unusable: {e}")
        return False

    async def _request_token(self, client: httpx.AsyncClient) -> httpx.Response:
        return await client.post(
            f"{self.url}/oauth/token",
            data={"grant_type": "client_credentials", "client_id": self.client_id},
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )

    async def fetch(self) -> str:
        """Request a new client-credentials token from the identity service."""
        logger.info("Fetching new proxy token...")
        with tracer.start_as_current_span("token_refresh") as span:
            try:
                if self.http_client is not None:
                    response = await self._request_token(self.http_client)
                else:
                    async with httpx.AsyncClient(
                        verify=not AUTH_ALLOW_UNSAFE_CERT
                    ) as client:
                        response = await self._request_token(client)
            except httpx.HTTPError as e:
                span.set_attribute("token.error", "transport")
                raise TokenError(f"Token request failed: {e}")

            span.set_attribute("token.status_code", response.status_code)
            if response.status_code != 200:
                logger.error(
                    mask_token(
                        f"Failed to fetch token: {response.status_code} - {response.text}",
                        self.client_secret,
                    )
                )
                raise TokenError(f"Token request failed with status {response.status_code}")
            try:
                access_token = response.json()["access_token"]
            except (KeyError, ValueError):
                raise TokenError("Token response did not contain an access_token")

        self.fetch_count += 1
        logger.debug(f"Fetched proxy token {token_fingerprint(access_token)}")
        return access_token

    async def ensure_valid_token(self, current: Optional[str] = None) -> str:
        """
        Return a valid token, fetching and caching a new one when needed.

        ``current`` defaults to the cached token. The cached value is only
        replaced after a fetch completes.
        """
        token = self.token if current is None else current
        if await self.is_expired(token):
            token = await self.fetch()
            self.token = token
        return token
