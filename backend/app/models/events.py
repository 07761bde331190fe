"""
Pydantic models for purchase events and their fan-out.

An InboundEvent is the normalized view of one webhook delivery. Each of its
items is resolved into a BuyerRecord, which is what the notifier consumes.
None of these are persisted; they live for a single request.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel


class EventItem(BaseModel):
    """One purchased key inside a delivery."""

    item_id: str
    # Only the first transaction hash of the item is kept.
    transaction_ref: Optional[str] = None
    owner: Optional[str] = None


class InboundEvent(BaseModel):
    """Normalized webhook delivery."""

    resource_address: Optional[str] = None
    owner: Optional[str] = None
    items: list[EventItem] = []


class EventDetails(BaseModel):
    """
    Event block attached to a ticket lock.

    Dates and times are kept as the strings the metadata service returns
    (``2025-06-01`` / ``18:30``); formatting happens at render time.
    """

    name: Optional[str] = None
    start_date: Optional[str] = None
    start_time: Optional[str] = None
    end_date: Optional[str] = None
    end_time: Optional[str] = None
    timezone: Optional[str] = None
    address: Optional[str] = None
    is_in_person: bool = True
    url: Optional[str] = None


class BuyerRecord(BaseModel):
    """Resolved identity for the owner of one key."""

    item_id: str
    resource_address: Optional[str] = None
    network: int
    owner_address: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    newsletter_opt_in: Optional[bool] = None
    event_details: Optional[EventDetails] = None
    raw_metadata: dict[str, Any] = {}

    @property
    def has_identity(self) -> bool:
        """True when there is someone to tell us about (email or name)."""
        return bool(self.email or self.full_name)


class NotificationResult(BaseModel):
    """Outcome of the fan-out for one buyer. Never raised, always returned."""

    email_sent: bool = False
    mailing_list_enrolled: bool = False
    error: Optional[str] = None


class ItemOutcome(BaseModel):
    item_id: str
    transaction_ref: Optional[str] = None
    notified: bool = False
    notification: Optional[NotificationResult] = None


class ProcessOutcome(BaseModel):
    """
    Result of handling one delivery.

    status:
      ignored    - not our lock, or nothing to extract (HTTP 200)
      processed  - items were looked at; ``notified`` may be 0 (HTTP 200)
      error      - unexpected failure outside per-item handling (HTTP 500)
    """

    status: Literal["ignored", "processed", "error"]
    notified: int = 0
    items: list[ItemOutcome] = []
    reason: Optional[str] = None

    @property
    def status_code(self) -> int:
        return 500 if self.status == "error" else 200
