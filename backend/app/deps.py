"""
FastAPI dependencies.

Routers get the Relay built at startup through ``Depends(get_relay)``;
tests swap it with ``app.dependency_overrides[get_relay]``.
"""

from fastapi import HTTPException, Request

from app.services.relay import Relay


def get_relay(request: Request) -> Relay:
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(status_code=503, detail="Relay is not initialised")
    return relay
