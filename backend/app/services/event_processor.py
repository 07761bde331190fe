"""
Purchase event processor.

Turns one raw webhook delivery from the hub into buyer notifications.

Payload shape (only the fields we read):

  {
    "lock":     "0xLockAddress",          # also accepted: "lockAddress"
    "owner":    "0xBuyer",                # also accepted: "keyOwner"
    "data": [
      {"tokenId": "5", "transactionHash": ["0xTX1", ...], "owner": "0xBuyer"},
      ...
    ]
  }

Deliveries for another lock are ignored before any item is touched. Items are
processed in payload order; one item failing never stops the next one.
handle() never raises.
"""

import logging
from typing import Any, Optional

from app.config import Settings
from app.models.events import EventItem, InboundEvent, ItemOutcome, ProcessOutcome
from app.services.metadata import MetadataResolver
from app.services.notifier import Notifier

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def _first_transaction_ref(entry: dict) -> Optional[str]:
    """
    First transaction hash of an item.

    Items can carry several hashes; only the first is used.
    """
    refs = entry.get("transactionHash")
    if refs is None:
        refs = entry.get("transactionsHash")
    if isinstance(refs, list):
        return _as_text(refs[0]) if refs else None
    return _as_text(refs)


def parse_event(payload: Any) -> InboundEvent:
    """
    Normalize a raw payload into an InboundEvent.

    Anything that isn't the expected shape contributes nothing: a non-dict
    payload yields an empty event, a non-list ``data`` yields no items, and
    entries without a token id are dropped.
    """
    if not isinstance(payload, dict):
        return InboundEvent()

    event_owner = _as_text(payload.get("owner")) or _as_text(payload.get("keyOwner"))
    lock = _as_text(payload.get("lock")) or _as_text(payload.get("lockAddress"))

    items: list[EventItem] = []
    data = payload.get("data")
    if isinstance(data, list):
        for entry in data:
            if not isinstance(entry, dict):
                continue
            item_id = (
                _as_text(entry.get("tokenId"))
                or _as_text(entry.get("keyId"))
                or _as_text(entry.get("id"))
            )
            if not item_id:
                continue
            items.append(
                EventItem(
                    item_id=item_id,
                    transaction_ref=_first_transaction_ref(entry),
                    owner=_as_text(entry.get("owner")) or event_owner,
                )
            )

    return InboundEvent(resource_address=lock, owner=event_owner, items=items)


def is_for_lock(event: InboundEvent, lock_address: Optional[str]) -> bool:
    """
    True unless the event names a lock other than ours (case-insensitive).

    Events that don't name a lock at all are accepted.
    """
    if not event.resource_address:
        return True
    if not lock_address:
        return False
    return event.resource_address.lower() == lock_address.lower()


class EventProcessor:
    """Filters, resolves and fans out one delivery at a time."""

    def __init__(self, settings: Settings, resolver: MetadataResolver, notifier: Notifier):
        self._settings = settings
        self._resolver = resolver
        self._notifier = notifier

    async def _process_item(self, item: EventItem) -> ItemOutcome:
        outcome = ItemOutcome(item_id=item.item_id, transaction_ref=item.transaction_ref)

        buyer = await self._resolver.resolve(item.item_id)
        if not buyer.has_identity:
            logger.info(f"Key {item.item_id}: no buyer email or name, nothing to notify")
            return outcome

        if not buyer.owner_address and item.owner:
            buyer = buyer.model_copy(update={"owner_address": item.owner})

        logger.info(
            f"New purchase: key {item.item_id}, buyer {buyer.owner_address or 'unknown'}, "
            f"tx {item.transaction_ref or 'unknown'}"
        )
        outcome.notification = await self._notifier.notify(buyer, item.transaction_ref)
        outcome.notified = True
        return outcome

    async def handle(self, payload: Any) -> ProcessOutcome:
        """
        Process one webhook delivery.

        Returns:
            ProcessOutcome with status "ignored", "processed" (with the number
            of buyers notified) or "error" for unexpected failures.
        """
        try:
            event = parse_event(payload)

            if not is_for_lock(event, self._settings.lock_address):
                logger.info(f"Event is for lock {event.resource_address}, not ours; ignoring")
                return ProcessOutcome(status="ignored", reason="resource_mismatch")

            if not event.items:
                logger.info("Event carried no keys; ignoring")
                return ProcessOutcome(status="ignored", reason="no_items")

            outcomes: list[ItemOutcome] = []
            for item in event.items:
                try:
                    outcomes.append(await self._process_item(item))
                except Exception:
                    logger.exception(f"Failed to process key {item.item_id}; continuing")
                    outcomes.append(
                        ItemOutcome(item_id=item.item_id, transaction_ref=item.transaction_ref)
                    )

            notified = sum(1 for o in outcomes if o.notified)
            logger.info(f"Processed {len(outcomes)} key(s), notified {notified} buyer(s)")
            return ProcessOutcome(status="processed", notified=notified, items=outcomes)

        except Exception as exc:
            logger.exception("Error processing webhook")
            return ProcessOutcome(status="error", reason=str(exc))
