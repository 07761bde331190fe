"""
Relay configuration.

Settings are read once from the environment (and a local .env file, if
present) and frozen. Components receive the Settings instance explicitly;
nothing reads os.environ after startup.

Environment variables
---------------------
UNLOCK_SECRET                 Shared secret used in the hub handshake.
LOCK_ADDRESS                  Lock (resource) address whose purchases we relay.
NETWORK_ID                    Chain id of the lock (default: 137, Polygon).
WEBHOOK_URL                   Public URL the hub calls back, e.g.
                              https://relay.example.com/unlock-webhook
LOCKSMITH_URL                 Base URL of the Unlock hub / auth / metadata API.
SIGNER_PRIVATE_KEY            Hex private key used for Sign-In with Ethereum.
SIWE_ORIGIN                   Origin written into the sign-in message.
ETHERMAIL_API_KEY             Mailing-list API key (bearer).
ETHERMAIL_LIST_ID             Mailing-list id buyers are added to.
ETHERMAIL_API_URL             Mailing-list contacts endpoint.
SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASS / SMTP_FROM
                              Mail transport for purchase notifications.
NOTIFICATION_EMAIL            Where purchase notifications are sent.
HTTP_TIMEOUT_SECONDS          Timeout applied to every outbound call.
AUTO_SUBSCRIBE                Subscribe to the hub on startup (default: true).
AUTO_SUBSCRIBE_DELAY_SECONDS  Delay before the startup subscribe (default: 2).
VERIFY_DELIVERY_SIGNATURE     Check X-Hub-Signature on POST deliveries
                              (default: false).
PORT                          Port used by the ``unlock-relay`` entry point.
"""

import logging
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_LOCKSMITH_URL = "https://locksmith.unlock-protocol.com"
DEFAULT_ETHERMAIL_API_URL = "https://hub-gateway.ethermail.io/v1/contacts"
DEFAULT_ETHERMAIL_LIST_ID = "68643cb440274653e00b93fa"

_TRUTHY = {"1", "true", "yes", "on"}


def _env(name: str) -> Optional[str]:
    """Return a stripped env var, treating empty strings as unset."""
    value = os.getenv(name, "").strip()
    return value or None


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in _TRUTHY


def _env_number(name: str, default, cast=int):
    value = _env(name)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError:
        logger.warning(f"Invalid value {value!r} for {name}; using {default}")
        return default


class Settings(BaseModel):
    """Static relay settings. Immutable once loaded."""

    model_config = {"frozen": True}

    unlock_secret: Optional[str] = None
    lock_address: Optional[str] = None
    network_id: int = 137
    webhook_url: Optional[str] = None
    locksmith_url: str = DEFAULT_LOCKSMITH_URL

    signer_private_key: Optional[str] = None
    siwe_origin: str = "https://app.unlock-protocol.com"

    ethermail_api_key: Optional[str] = None
    ethermail_list_id: str = DEFAULT_ETHERMAIL_LIST_ID
    ethermail_api_url: str = DEFAULT_ETHERMAIL_API_URL

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: Optional[str] = None
    notification_email: Optional[str] = None

    http_timeout_seconds: float = 10.0
    auto_subscribe: bool = True
    auto_subscribe_delay_seconds: float = 2.0
    verify_delivery_signature: bool = False
    port: int = 3000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build Settings from the current process environment."""
        return cls(
            unlock_secret=_env("UNLOCK_SECRET"),
            lock_address=_env("LOCK_ADDRESS"),
            network_id=_env_number("NETWORK_ID", 137),
            webhook_url=_env("WEBHOOK_URL"),
            locksmith_url=(_env("LOCKSMITH_URL") or DEFAULT_LOCKSMITH_URL).rstrip("/"),
            signer_private_key=_env("SIGNER_PRIVATE_KEY"),
            siwe_origin=_env("SIWE_ORIGIN") or "https://app.unlock-protocol.com",
            ethermail_api_key=_env("ETHERMAIL_API_KEY"),
            ethermail_list_id=_env("ETHERMAIL_LIST_ID") or DEFAULT_ETHERMAIL_LIST_ID,
            ethermail_api_url=_env("ETHERMAIL_API_URL") or DEFAULT_ETHERMAIL_API_URL,
            smtp_host=_env("SMTP_HOST"),
            smtp_port=_env_number("SMTP_PORT", 587),
            smtp_user=_env("SMTP_USER"),
            smtp_pass=_env("SMTP_PASS"),
            smtp_from=_env("SMTP_FROM"),
            notification_email=_env("NOTIFICATION_EMAIL"),
            http_timeout_seconds=_env_number("HTTP_TIMEOUT_SECONDS", 10.0, float),
            auto_subscribe=_env_bool("AUTO_SUBSCRIBE", True),
            auto_subscribe_delay_seconds=_env_number(
                "AUTO_SUBSCRIBE_DELAY_SECONDS", 2.0, float
            ),
            verify_delivery_signature=_env_bool("VERIFY_DELIVERY_SIGNATURE", False),
            port=_env_number("PORT", 3000),
        )

    @property
    def can_subscribe(self) -> bool:
        """True when the hub handshake has everything it needs."""
        return bool(self.lock_address and self.webhook_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide Settings, loading them on first use."""
    return Settings.from_env()
