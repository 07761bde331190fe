"""
WebSub subscription controller for the Locksmith hub.

Subscribing registers our callback for "key created" events on one lock:

  POST {LOCKSMITH_URL}/api/hooks/{network}/keys
  Content-Type: application/x-www-form-urlencoded

  hub.topic     {LOCKSMITH_URL}/api/hooks/{network}/keys?locks={lock}
  hub.callback  WEBHOOK_URL
  hub.mode      subscribe | unsubscribe
  hub.secret    UNLOCK_SECRET

The hub then confirms intent with a GET to the callback carrying
hub.challenge / hub.secret / hub.mode; verify_challenge() decides the answer.
"""

import logging
from typing import Optional

import httpx

from app.config import Settings
from app.models.locksmith import (
    SubscriptionRequest,
    VerificationChallenge,
    VerificationOutcome,
)

logger = logging.getLogger(__name__)

_VALID_MODES = ("subscribe", "unsubscribe")


class SubscriptionError(Exception):
    """The hub rejected a subscribe/unsubscribe call, or it could not be made."""


class SubscriptionConfigError(SubscriptionError):
    """Lock address, callback URL or shared secret is not configured."""


class SubscriptionController:
    """Subscribes the relay to the hub and answers the hub's handshake."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._http = http_client

    @property
    def hub_url(self) -> str:
        return f"{self._settings.locksmith_url}/api/hooks/{self._settings.network_id}/keys"

    @property
    def topic(self) -> Optional[str]:
        if not self._settings.lock_address:
            return None
        return f"{self.hub_url}?locks={self._settings.lock_address}"

    def build_request(self, mode: str) -> SubscriptionRequest:
        """
        Build the hub request for ``mode``.

        Raises:
            SubscriptionConfigError: if anything the hub needs is missing
        """
        s = self._settings
        if not s.lock_address or not s.webhook_url:
            raise SubscriptionConfigError("LOCK_ADDRESS and WEBHOOK_URL must be configured")
        if not s.unlock_secret:
            raise SubscriptionConfigError("UNLOCK_SECRET must be configured")
        return SubscriptionRequest(
            topic=self.topic,
            callback=s.webhook_url,
            mode=mode,
            secret=s.unlock_secret,
        )

    async def _send(self, mode: str) -> None:
        request = self.build_request(mode)
        try:
            response = await self._http.post(self.hub_url, data=request.to_form())
        except httpx.HTTPError as exc:
            raise SubscriptionError(f"Failed to {mode}: {exc!r}") from exc

        if response.status_code >= 400:
            raise SubscriptionError(f"Failed to {mode}: {response.text}")

        logger.info(f"Hub accepted {mode} for {request.topic} -> {request.callback}")

    async def subscribe(self) -> None:
        """Ask the hub to start delivering purchases of our lock."""
        await self._send("subscribe")

    async def unsubscribe(self) -> None:
        """Ask the hub to stop delivering purchases of our lock."""
        await self._send("unsubscribe")

    def verify_challenge(
        self,
        secret: Optional[str],
        mode: Optional[str],
        challenge: str,
    ) -> VerificationOutcome:
        """
        Answer the hub's intent-verification GET.

        The secret must match exactly before the mode is even looked at; a
        relay without a configured secret rejects every handshake.
        """
        request = VerificationChallenge(challenge=challenge or "", secret=secret, mode=mode)
        expected = self._settings.unlock_secret

        if not expected or request.secret != expected:
            logger.error("Invalid secret in hub verification request")
            return VerificationOutcome(status_code=400, body="Invalid secret")

        if request.mode in _VALID_MODES:
            logger.info(f"Hub {request.mode} verified")
            return VerificationOutcome(status_code=200, body=request.challenge)

        logger.warning(f"Hub verification with unsupported mode {request.mode!r}")
        return VerificationOutcome(status_code=400, body="Invalid mode")
