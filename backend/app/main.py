"""
Unlock Relay API
FastAPI application that relays Unlock Protocol purchases to email and EtherMail.
"""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import Depends, FastAPI

from app.config import get_settings
from app.deps import get_relay
from app.routers import hooks, webhook
from app.services.relay import Relay
from app.services.subscription import SubscriptionError

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Unlock Relay",
    description="Relays Unlock Protocol key purchases to email notifications and EtherMail",
    version="0.1.0",
)

app.include_router(webhook.router, tags=["webhook"])
app.include_router(hooks.router, tags=["hooks"])


async def _subscribe_after(relay: Relay, delay: float) -> None:
    """Subscribe to the hub once the server has had a moment to come up."""
    await asyncio.sleep(delay)
    try:
        await relay.subscriptions.subscribe()
    except SubscriptionError as exc:
        logger.error(f"Error subscribing to webhooks: {exc}")
    except Exception:
        logger.exception("Unexpected error subscribing to webhooks")


@app.on_event("startup")
async def start_relay() -> None:
    """
    Build the Relay and, when configured, subscribe to the hub.

    Logs the webhook path, lock and network so operators can check the
    callback they registered matches what is running.
    """
    settings = get_settings()
    relay = Relay(settings)
    app.state.relay = relay
    app.state.subscribe_task = None

    logger.info(
        "Unlock relay started:\n"
        "  Webhook endpoint: /unlock-webhook\n"
        "  Lock Address:     %s\n"
        "  Network:          %s",
        settings.lock_address,
        settings.network_id,
    )

    if not settings.can_subscribe:
        logger.warning("Missing LOCK_ADDRESS or WEBHOOK_URL - manual subscription required")
    elif settings.auto_subscribe:
        app.state.subscribe_task = asyncio.create_task(
            _subscribe_after(relay, settings.auto_subscribe_delay_seconds)
        )


@app.on_event("shutdown")
async def stop_relay() -> None:
    task = getattr(app.state, "subscribe_task", None)
    if task is not None and not task.done():
        task.cancel()
    relay = getattr(app.state, "relay", None)
    if relay is not None:
        await relay.aclose()
    logger.info("Unlock relay shut down")


@app.get("/")
async def root(relay: Relay = Depends(get_relay)):
    settings = relay.settings
    return {
        "status": "Unlock Protocol Webhook Server",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "config": {
            "networkId": settings.network_id,
            "lockAddress": settings.lock_address,
            "webhookUrl": settings.webhook_url,
        },
        "credentialCached": relay.credentials.has_credential,
    }


@app.get("/health")
async def health():
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the app with uvicorn on PORT."""
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=get_settings().port)
