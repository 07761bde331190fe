"""
Locksmith credential manager.

Locksmith's metadata endpoints want a bearer token obtained through
Sign-In with Ethereum (EIP-4361): we build a sign-in message, sign it with
the relay's private key and exchange {message, signature} for an access
token at /v2/auth/login.

Tokens are valid for 24 hours on the server side. We cache each one for
23 hours so clock skew between us and Locksmith never leaves us holding a
token the server already considers expired.

Concurrency: refreshes are single-flight. The first caller that finds the
cache empty or expired takes an asyncio.Lock and signs in; callers arriving
meanwhile wait on the same lock and then reuse the fresh token instead of
signing in again.
"""

import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlparse

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct

from app.config import Settings
from app.models.locksmith import Credential

logger = logging.getLogger(__name__)

TOKEN_LIFETIME = timedelta(hours=24)
EXPIRY_MARGIN = timedelta(hours=1)

_SIGN_IN_STATEMENT = "Sign in to Unlock to read key metadata."


class AuthenticationError(Exception):
    """Signing or the sign-in exchange failed, or no signing key is configured."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_sign_in_message(
    address: str,
    origin: str,
    chain_id: int,
    nonce: str,
    issued_at: datetime,
) -> str:
    """
    Render an EIP-4361 sign-in message.

    The domain is the host[:port] of ``origin``; the URI is the origin itself.
    """
    parsed = urlparse(origin)
    domain = parsed.netloc or origin
    issued = issued_at.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    issued = issued.replace("+00:00", "Z")
    return (
        f"{domain} wants you to sign in with your Ethereum account:\n"
        f"{address}\n"
        f"\n"
        f"{_SIGN_IN_STATEMENT}\n"
        f"\n"
        f"URI: {origin}\n"
        f"Version: 1\n"
        f"Chain ID: {chain_id}\n"
        f"Nonce: {nonce}\n"
        f"Issued At: {issued}"
    )


class CredentialManager:
    """Owns one cached Locksmith credential and refreshes it on demand."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._settings = settings
        self._http = http_client
        self._clock = clock or _utcnow
        self._credential: Optional[Credential] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def login_url(self) -> str:
        return f"{self._settings.locksmith_url}/v2/auth/login"

    @property
    def has_credential(self) -> bool:
        """True while a non-expired credential is cached."""
        return self._cached() is not None

    def _cached(self) -> Optional[Credential]:
        credential = self._credential
        if credential is not None and credential.is_valid(self._clock()):
            return credential
        return None

    def invalidate(self) -> None:
        """Forget the cached credential; the next call signs in again."""
        self._credential = None

    async def get_valid_credential(self) -> Credential:
        """
        Return a credential that is valid right now.

        Signs in only when nothing is cached or the cached token has expired.

        Raises:
            AuthenticationError: if signing or the sign-in exchange fails
        """
        credential = self._cached()
        if credential is not None:
            return credential

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock
            credential = self._cached()
            if credential is not None:
                return credential
            return await self._sign_in()

    async def refresh(self) -> Credential:
        """Sign in again regardless of the cached credential."""
        async with self._refresh_lock:
            return await self._sign_in()

    def _account(self):
        key = self._settings.signer_private_key
        if not key:
            raise AuthenticationError("SIGNER_PRIVATE_KEY is not configured")
        try:
            return Account.from_key(key)
        except Exception as exc:
            raise AuthenticationError(f"Invalid SIGNER_PRIVATE_KEY: {exc}") from exc

    async def _sign_in(self) -> Credential:
        account = self._account()
        now = self._clock()
        message = build_sign_in_message(
            address=account.address,
            origin=self._settings.siwe_origin,
            chain_id=self._settings.network_id,
            nonce=secrets.token_hex(16),
            issued_at=now,
        )
        try:
            signed = account.sign_message(encode_defunct(text=message))
        except Exception as exc:
            raise AuthenticationError(f"Failed to sign sign-in message: {exc}") from exc
        signature = "0x" + bytes(signed.signature).hex()

        try:
            response = await self._http.post(
                self.login_url,
                json={"message": message, "signature": signature},
            )
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Sign-in request failed: {exc}") from exc

        if response.status_code >= 400:
            raise AuthenticationError(
                f"Sign-in rejected with HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise AuthenticationError("Sign-in response was not JSON") from exc

        token = body.get("accessToken") if isinstance(body, dict) else None
        if not token:
            raise AuthenticationError("Sign-in response did not include an accessToken")

        credential = Credential(
            token=token,
            expires_at=now + TOKEN_LIFETIME - EXPIRY_MARGIN,
        )
        self._credential = credential
        logger.info(f"Signed in to Locksmith; token cached until {credential.expires_at.isoformat()}")
        return credential
