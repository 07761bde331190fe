"""
Unlock webhook router.

Endpoints:
  GET  /unlock-webhook  - WebSub intent verification (hub.challenge echo)
  POST /unlock-webhook  - purchase event delivery

The POST handler answers 200 for everything except unexpected internal
failures, so the hub does not retry deliveries whose side effects may have
partially happened already.

Delivery signatures
-------------------
The hub's GET handshake is secret-checked; POST deliveries are not by
default. With VERIFY_DELIVERY_SIGNATURE=true the X-Hub-Signature header must
carry the HMAC-SHA256 of the raw body keyed by UNLOCK_SECRET, either as
``sha256=<hex>`` or bare hex; anything else is rejected with 401.
"""

import hashlib
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.deps import get_relay
from app.services.relay import Relay

logger = logging.getLogger(__name__)

router = APIRouter()


def _verify_delivery_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
) -> None:
    """Raise 401 unless ``signature_header`` is the body's HMAC under ``secret``."""
    if not secret:
        logger.warning("VERIFY_DELIVERY_SIGNATURE is on but UNLOCK_SECRET is not set")
        raise HTTPException(status_code=401, detail="Webhook secret not configured")
    if not signature_header:
        raise HTTPException(status_code=401, detail="Missing webhook signature")

    provided = signature_header.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]

    computed = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(computed, provided.lower()):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")


@router.get("/unlock-webhook")
async def verify_intent(
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    secret: Optional[str] = Query(None, alias="hub.secret"),
    mode: Optional[str] = Query(None, alias="hub.mode"),
    relay: Relay = Depends(get_relay),
) -> PlainTextResponse:
    """Echo hub.challenge when the hub's secret and mode check out."""
    logger.info(f"Intent verification request: mode={mode!r}")
    outcome = relay.subscriptions.verify_challenge(secret, mode, challenge or "")
    return PlainTextResponse(outcome.body, status_code=outcome.status_code)


@router.post("/unlock-webhook")
async def receive_event(
    request: Request,
    relay: Relay = Depends(get_relay),
) -> JSONResponse:
    """
    Purchase event receiver.

    Malformed bodies are treated like events with nothing to extract and
    acknowledged with status "ignored".
    """
    raw_body = await request.body()

    if relay.settings.verify_delivery_signature:
        _verify_delivery_signature(
            raw_body,
            request.headers.get("x-hub-signature"),
            relay.settings.unlock_secret,
        )

    try:
        payload = json.loads(raw_body) if raw_body else None
    except ValueError:
        logger.warning("Webhook body is not valid JSON; ignoring")
        payload = None

    outcome = await relay.processor.handle(payload)

    if outcome.status == "error":
        return JSONResponse(
            {"status": "error", "detail": "Internal server error"},
            status_code=outcome.status_code,
        )
    return JSONResponse(outcome.model_dump(mode="json"), status_code=outcome.status_code)
