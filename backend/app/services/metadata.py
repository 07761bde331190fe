"""
Key metadata resolver.

Looks up who owns a key through Locksmith's authenticated metadata endpoint:

  GET {LOCKSMITH_URL}/v2/api/metadata/{network}/locks/{lock}/keys/{token_id}

Response fields we read (everything else is kept in raw_metadata):

  owner / keyOwner           - wallet address of the key owner
  name                       - lock (event) name
  userMetadata.protected     - buyer-supplied fields only the lock manager sees
  userMetadata.public        - buyer-supplied fields anyone can see
  ticket                     - event block for ticket locks:
                                 event_start_date, event_start_time,
                                 event_end_date, event_end_time,
                                 event_timezone, event_address,
                                 event_is_in_person, event_url

Protected values win over public ones. resolve() never raises: any failure
yields a BuyerRecord with no identity fields, which callers read as
"nobody to notify".
"""

import logging
from typing import Any, Optional

import httpx

from app.config import Settings
from app.models.events import BuyerRecord, EventDetails
from app.services.credentials import AuthenticationError, CredentialManager

logger = logging.getLogger(__name__)

_EMAIL_KEYS = ("email", "emailAddress", "email_address")
_FULL_NAME_KEYS = ("fullname", "full_name", "fullName", "name")
_NEWSLETTER_KEYS = ("newsletter", "newsletter_opt_in", "newsletterOptIn", "subscribe", "opt_in")

_TRUE_STRINGS = {"true", "yes", "1", "on", "y"}
_FALSE_STRINGS = {"false", "no", "0", "off", "n", ""}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_of(sources: list[dict], keys: tuple[str, ...]) -> Optional[str]:
    """Return the first non-empty value for any of ``keys``, scanning sources in order."""
    for source in sources:
        for key in keys:
            value = _clean(source.get(key))
            if value:
                return value
    return None


def _parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _user_metadata_sources(metadata: dict) -> list[dict]:
    """Return [protected, public] user metadata dicts, skipping missing ones."""
    user_metadata = metadata.get("userMetadata")
    if not isinstance(user_metadata, dict):
        return []
    sources = []
    for section in ("protected", "public"):
        value = user_metadata.get(section)
        if isinstance(value, dict):
            sources.append(value)
    return sources


def extract_full_name(sources: list[dict]) -> Optional[str]:
    """
    Full name from user metadata.

    Accepts a single full-name field, or firstname + lastname pairs. Within
    each source the single field wins; protected beats public throughout.
    """
    for source in sources:
        name = _first_of([source], _FULL_NAME_KEYS)
        if name:
            return name
        first = _first_of([source], ("firstname", "first_name", "firstName"))
        last = _first_of([source], ("lastname", "last_name", "lastName"))
        combined = " ".join(part for part in (first, last) if part)
        if combined:
            return combined
    return None


def extract_event_details(metadata: dict) -> Optional[EventDetails]:
    """Parse the optional ``ticket`` block. Returns None when there is none."""
    ticket = metadata.get("ticket")
    if not isinstance(ticket, dict) or not ticket:
        return None

    in_person = _parse_bool(ticket.get("event_is_in_person"))
    return EventDetails(
        name=_clean(metadata.get("name")),
        start_date=_clean(ticket.get("event_start_date")),
        start_time=_clean(ticket.get("event_start_time")),
        end_date=_clean(ticket.get("event_end_date")),
        end_time=_clean(ticket.get("event_end_time")),
        timezone=_clean(ticket.get("event_timezone")),
        address=_clean(ticket.get("event_address")),
        is_in_person=True if in_person is None else in_person,
        url=_clean(ticket.get("event_url")),
    )


def parse_buyer_record(
    metadata: dict,
    item_id: str,
    resource_address: Optional[str],
    network: int,
) -> BuyerRecord:
    """Build a BuyerRecord from a metadata response body."""
    sources = _user_metadata_sources(metadata)

    newsletter = None
    for source in sources:
        for key in _NEWSLETTER_KEYS:
            if key in source:
                newsletter = _parse_bool(source[key])
                break
        if newsletter is not None:
            break

    return BuyerRecord(
        item_id=item_id,
        resource_address=resource_address,
        network=network,
        owner_address=_clean(metadata.get("owner") or metadata.get("keyOwner")),
        email=_first_of(sources, _EMAIL_KEYS),
        full_name=extract_full_name(sources),
        newsletter_opt_in=newsletter,
        event_details=extract_event_details(metadata),
        raw_metadata=metadata,
    )


class MetadataResolver:
    """Resolves a key id into the owner's identity for the configured lock."""

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialManager,
        http_client: httpx.AsyncClient,
    ):
        self._settings = settings
        self._credentials = credentials
        self._http = http_client

    def metadata_url(self, item_id: str) -> str:
        s = self._settings
        return (
            f"{s.locksmith_url}/v2/api/metadata/{s.network_id}"
            f"/locks/{s.lock_address}/keys/{item_id}"
        )

    def _empty(self, item_id: str) -> BuyerRecord:
        return BuyerRecord(
            item_id=item_id,
            resource_address=self._settings.lock_address,
            network=self._settings.network_id,
        )

    async def resolve(self, item_id: str) -> BuyerRecord:
        """
        Look up the buyer behind ``item_id``.

        Returns:
            A populated BuyerRecord, or an empty-identity one on any failure.
        """
        try:
            credential = await self._credentials.get_valid_credential()
        except AuthenticationError as exc:
            logger.error(f"Cannot resolve key {item_id}: authentication failed: {exc}")
            return self._empty(item_id)

        try:
            response = await self._http.get(
                self.metadata_url(item_id),
                headers={"Authorization": f"Bearer {credential.token}"},
            )
        except httpx.HTTPError as exc:
            logger.error(f"Metadata lookup for key {item_id} failed: {exc!r}")
            return self._empty(item_id)

        if response.status_code == 401:
            # Token revoked or rotated server-side; sign in again next time
            self._credentials.invalidate()

        if response.status_code >= 400:
            logger.error(
                f"Metadata lookup for key {item_id} returned HTTP {response.status_code}"
            )
            return self._empty(item_id)

        try:
            body = response.json()
        except ValueError:
            logger.error(f"Metadata for key {item_id} was not valid JSON")
            return self._empty(item_id)

        if not isinstance(body, dict):
            logger.error(f"Metadata for key {item_id} was not a JSON object")
            return self._empty(item_id)

        record = parse_buyer_record(
            body,
            item_id=item_id,
            resource_address=self._settings.lock_address,
            network=self._settings.network_id,
        )
        logger.info(
            f"Resolved key {item_id}: email={'yes' if record.email else 'no'}, "
            f"name={'yes' if record.full_name else 'no'}"
        )
        return record
