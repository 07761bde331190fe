"""
Relay wiring.

A Relay owns every component for one lock configuration plus the shared
httpx client they use. The FastAPI app builds one at startup and closes it at
shutdown; tests build their own with fake transports.
"""

from typing import Optional

import httpx

from app.config import Settings
from app.services.credentials import CredentialManager
from app.services.event_processor import EventProcessor
from app.services.metadata import MetadataResolver
from app.services.notifier import Notifier, SendMail
from app.services.subscription import SubscriptionController


class Relay:
    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        send_mail: Optional[SendMail] = None,
    ):
        self.settings = settings
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        self.credentials = CredentialManager(settings, self.http)
        self.resolver = MetadataResolver(settings, self.credentials, self.http)
        self.subscriptions = SubscriptionController(settings, self.http)
        self.notifier = Notifier(settings, self.http, send_mail=send_mail)
        self.processor = EventProcessor(settings, self.resolver, self.notifier)

    async def aclose(self) -> None:
        """Close the httpx client if this Relay created it; a caller-supplied one stays open."""
        if self._owns_http:
            await self.http.aclose()
