"""
Manual hub subscription endpoints (setup / debugging).

Endpoints:
  POST /subscribe    - subscribe the relay's callback to the lock's key events
  POST /unsubscribe  - remove that subscription

Both answer {"success": true, "message": ...} on success. Missing
configuration is a 400, a hub rejection or transport failure a 500, each
with {"success": false, "error": ...}.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.deps import get_relay
from app.services.relay import Relay
from app.services.subscription import SubscriptionConfigError, SubscriptionError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _run(relay: Relay, mode: str, success_message: str) -> JSONResponse:
    action = relay.subscriptions.subscribe if mode == "subscribe" else relay.subscriptions.unsubscribe
    try:
        await action()
    except SubscriptionConfigError as exc:
        logger.error(f"Cannot {mode}: {exc}")
        return JSONResponse({"success": False, "error": str(exc)}, status_code=400)
    except SubscriptionError as exc:
        logger.error(f"Hub {mode} failed: {exc}")
        return JSONResponse({"success": False, "error": str(exc)}, status_code=500)
    return JSONResponse({"success": True, "message": success_message})


@router.post("/subscribe")
async def subscribe(relay: Relay = Depends(get_relay)) -> JSONResponse:
    return await _run(relay, "subscribe", "Subscribed successfully")


@router.post("/unsubscribe")
async def unsubscribe(relay: Relay = Depends(get_relay)) -> JSONResponse:
    return await _run(relay, "unsubscribe", "Unsubscribed successfully")
