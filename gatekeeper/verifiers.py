"""
Token verifier implementations.

HmacTokenVerifier checks tokens minted by the challenge endpoint with a
shared secret. HttpTokenVerifier asks an external attestation service.
"""

import hashlib
import hmac
import secrets
import time
from typing import Callable, Optional

import httpx

from gatekeeper.exceptions import TokenVerificationError
from gatekeeper.interfaces import TokenVerifier

# Matches the immunity time of a solved challenge at the edge.
DEFAULT_TOKEN_MAX_AGE_SECONDS = 300


class HmacTokenVerifier(TokenVerifier):
    """
    Verifier for self-issued tokens.

    Token format: "<issued_at>.<nonce>.<signature>" where signature is the
    hex HMAC-SHA256 of "<issued_at>.<nonce>" under the shared secret.
    """

    def __init__(
        self,
        secret: str,
        max_age_seconds: int = DEFAULT_TOKEN_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            secret: Shared signing secret
            max_age_seconds: How long an issued token stays valid
            clock: Time source, injectable for tests
        """
        if not secret:
            raise ValueError("HMAC token secret cannot be empty")
        if max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive")
        self._secret = secret.encode("utf-8")
        self._max_age_seconds = max_age_seconds
        self._clock = clock

    @property
    def name(self) -> str:
        return "hmac"

    @property
    def max_age_seconds(self) -> int:
        return self._max_age_seconds

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self) -> str:
        """Mint a token for a client that has just passed a challenge."""
        payload = f"{int(self._clock())}.{secrets.token_hex(8)}"
        return f"{payload}.{self._sign(payload)}"

    def verify(self, token: str) -> bool:
        parts = token.split(".")
        if len(parts) != 3:
            return False

        issued_at, nonce, signature = parts
        if not (issued_at.isascii() and issued_at.isdigit()) or not nonce:
            return False
        expected = self._sign(f"{issued_at}.{nonce}").encode("ascii")
        # Bytes, since compare_digest refuses non-ASCII str from raw headers
        if not hmac.compare_digest(expected, signature.encode("utf-8")):
            return False

        age = self._clock() - int(issued_at)
        # Tokens from the future are as suspicious as expired ones
        return 0 <= age <= self._max_age_seconds


class HttpTokenVerifier(TokenVerifier):
    """
    Verifier backed by an external attestation service.

    POSTs {"token": ...} to the service URL and expects {"valid": bool}.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 2.0,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        """
        Args:
            url: Verification endpoint
            timeout: Request timeout in seconds
            api_key: Optional bearer token for the service
            client: Pre-built httpx client (tests inject a MockTransport here)
        """
        self._url = url
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    @property
    def name(self) -> str:
        return "http"

    def verify(self, token: str) -> bool:
        try:
            response = self._client.post(self._url, json={"token": token})
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise TokenVerificationError(f"Token verification timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise TokenVerificationError(
                f"Token verification service error (status {e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise TokenVerificationError(f"Token verification service unreachable: {e}") from e
        except ValueError as e:
            raise TokenVerificationError(f"Token verification returned invalid JSON: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("valid"), bool):
            raise TokenVerificationError("Token verification response is missing boolean 'valid'")
        return data["valid"]

    def close(self) -> None:
        self._client.close()
