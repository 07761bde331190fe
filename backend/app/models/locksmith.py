"""
Pydantic models for the Locksmith (Unlock Protocol hub) side of the relay.

Models:
  Credential             - bearer token returned by the sign-in exchange
  SubscriptionRequest    - WebSub subscribe/unsubscribe request to the hub
  VerificationChallenge  - query parameters of the hub's GET handshake
  VerificationOutcome    - status + body the handshake endpoint responds with
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

HubMode = Literal["subscribe", "unsubscribe"]


class Credential(BaseModel):
    """A short-lived Locksmith access token and the moment we stop trusting it."""

    model_config = {"frozen": True}

    token: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class SubscriptionRequest(BaseModel):
    """
    Form body of a hub subscribe/unsubscribe call.

    Serialised with the WebSub field names (hub.topic, hub.callback, ...)
    via ``to_form()``.
    """

    topic: str
    callback: str
    mode: HubMode
    secret: str

    def to_form(self) -> dict[str, str]:
        return {
            "hub.topic": self.topic,
            "hub.callback": self.callback,
            "hub.mode": self.mode,
            "hub.secret": self.secret,
        }


class VerificationChallenge(BaseModel):
    """Intent-verification request sent by the hub (GET /unlock-webhook)."""

    challenge: str = ""
    secret: Optional[str] = None
    mode: Optional[str] = None


class VerificationOutcome(BaseModel):
    """What the handshake endpoint answers: 200 + echoed challenge, or 400."""

    status_code: int = Field(200)
    body: str = ""

    @property
    def accepted(self) -> bool:
        return self.status_code == 200
