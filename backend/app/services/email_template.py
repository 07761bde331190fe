"""
Purchase notification email rendering.

Produces the subject, HTML body and plain-text body for one buyer. Pure
functions only; sending lives in app.services.notifier.

Public API:
  explorer_tx_url(network, tx_hash) -> str
  format_event_time(date, time, tz) -> Optional[str]
  render_purchase_email(buyer, transaction_ref, now=None) -> RenderedEmail
"""

import html
import logging
from datetime import datetime, timezone
from typing import NamedTuple, Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.models.events import BuyerRecord, EventDetails

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Block explorers
# ---------------------------------------------------------------------------

# Chain id → explorer host. Unknown networks fall back to Etherscan.
EXPLORER_HOSTS: dict[int, str] = {
    1: "etherscan.io",
    10: "optimistic.etherscan.io",
    56: "bscscan.com",
    100: "gnosisscan.io",
    137: "polygonscan.com",
    8453: "basescan.org",
    42161: "arbiscan.io",
    42220: "celoscan.io",
    59144: "lineascan.build",
    84532: "sepolia.basescan.org",
    11155111: "sepolia.etherscan.io",
}
_DEFAULT_EXPLORER = "etherscan.io"

NETWORK_NAMES: dict[int, str] = {
    1: "Ethereum",
    10: "Optimism",
    56: "BNB Chain",
    100: "Gnosis",
    137: "Polygon",
    8453: "Base",
    42161: "Arbitrum",
    42220: "Celo",
    59144: "Linea",
    84532: "Base Sepolia",
    11155111: "Sepolia",
}


class RenderedEmail(NamedTuple):
    subject: str
    html: str
    text: str


def explorer_tx_url(network: int, tx_hash: str) -> str:
    host = EXPLORER_HOSTS.get(network, _DEFAULT_EXPLORER)
    return f"https://{host}/tx/{tx_hash}"


def network_label(network: int) -> str:
    name = NETWORK_NAMES.get(network)
    return f"{name} ({network})" if name else str(network)


# ---------------------------------------------------------------------------
# Event block
# ---------------------------------------------------------------------------

def format_event_time(
    date: Optional[str],
    time: Optional[str],
    tz: Optional[str],
) -> Optional[str]:
    """
    Format an event date/time pair in its own timezone.

    ``2025-06-01`` + ``18:30`` + ``America/New_York`` →
    ``Sunday, June 1, 2025 at 6:30 PM EDT``. Unparseable input is returned
    as-is rather than dropped.
    """
    if not date:
        return None

    zone = None
    if tz:
        try:
            zone = ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            logger.warning(f"Unknown event timezone {tz!r}")

    raw = f"{date} {time}".strip() if time else date
    try:
        if time:
            moment = datetime.strptime(f"{date} {time[:5]}", "%Y-%m-%d %H:%M")
        else:
            moment = datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        return f"{raw} {tz}".strip() if tz else raw

    day = f"{moment.strftime('%A, %B')} {moment.day}, {moment.year}"
    if not time:
        return f"{day} ({tz})" if tz else day

    hour = moment.hour % 12 or 12
    clock = f"{hour}:{moment.strftime('%M %p')}"
    if zone is not None:
        abbrev = moment.replace(tzinfo=zone).tzname() or tz
        return f"{day} at {clock} {abbrev}"
    suffix = f" {tz}" if tz else ""
    return f"{day} at {clock}{suffix}"


def _is_web_url(url: str) -> bool:
    return urlparse(url.strip()).scheme.lower() in ("http", "https")


def _event_rows(event: EventDetails) -> list[tuple[str, str, bool]]:
    """(label, value, is_link) rows for the event block."""
    rows: list[tuple[str, str, bool]] = []
    if event.name:
        rows.append(("Event", event.name, False))

    starts = format_event_time(event.start_date, event.start_time, event.timezone)
    if starts:
        rows.append(("Starts", starts, False))
    ends = format_event_time(
        event.end_date or event.start_date, event.end_time, event.timezone
    )
    if ends and (event.end_date or event.end_time):
        rows.append(("Ends", ends, False))

    if event.is_in_person:
        if event.address:
            rows.append(("Location", event.address, False))
    elif event.url:
        rows.append(("Join link", event.url, _is_web_url(event.url)))
    else:
        rows.append(("Location", "Virtual event", False))
    return rows


# ---------------------------------------------------------------------------
# Message
# ---------------------------------------------------------------------------

def render_purchase_email(
    buyer: BuyerRecord,
    transaction_ref: Optional[str],
    now: Optional[datetime] = None,
) -> RenderedEmail:
    """Render the purchase notification sent to the lock manager."""
    now = now or datetime.now(timezone.utc)
    event = buyer.event_details

    if event and event.name:
        subject = f"🎉 New ticket purchase: {' '.join(event.name.split())}"
    else:
        subject = "🎉 New NFT Purchase!"

    fields: list[tuple[str, str, Optional[str]]] = [
        ("Buyer Name", buyer.full_name or "Not provided", None),
        ("Buyer Email", buyer.email or "Not provided", None),
        ("Buyer Address", buyer.owner_address or "Unknown", None),
    ]
    if transaction_ref:
        fields.append(
            ("Transaction", transaction_ref, explorer_tx_url(buyer.network, transaction_ref))
        )
    else:
        fields.append(("Transaction", "Unknown", None))
    fields += [
        ("Key ID", buyer.item_id, None),
        ("Lock", buyer.resource_address or "Unknown", None),
        ("Network", network_label(buyer.network), None),
        ("Time", now.strftime("%Y-%m-%d %H:%M:%S %Z").strip(), None),
    ]
    if buyer.newsletter_opt_in is not None:
        fields.append(("Newsletter", "Opted in" if buyer.newsletter_opt_in else "Declined", None))

    html_lines = ["<h2>New NFT Purchase Notification</h2>"]
    text_lines = ["New NFT Purchase Notification", ""]
    for label, value, href in fields:
        safe = html.escape(value)
        if href:
            html_lines.append(
                f'<p><strong>{label}:</strong> '
                f'<a href="{html.escape(href)}" target="_blank">{safe}</a></p>'
            )
            text_lines.append(f"{label}: {value} ({href})")
        else:
            html_lines.append(f"<p><strong>{label}:</strong> {safe}</p>")
            text_lines.append(f"{label}: {value}")

    if event:
        html_lines.append("<hr>")
        html_lines.append("<h3>Event details</h3>")
        text_lines += ["", "Event details"]
        for label, value, is_link in _event_rows(event):
            safe = html.escape(value)
            if is_link:
                html_lines.append(
                    f'<p><strong>{label}:</strong> <a href="{safe}" target="_blank">{safe}</a></p>'
                )
            else:
                html_lines.append(f"<p><strong>{label}:</strong> {safe}</p>")
            text_lines.append(f"{label}: {value}")

    if buyer.email:
        html_lines.append("<hr>")
        html_lines.append("<p>The buyer is being added to your mailing list.</p>")
        text_lines += ["", "The buyer is being added to your mailing list."]

    return RenderedEmail(
        subject=subject,
        html="\n".join(html_lines),
        text="\n".join(text_lines),
    )
