"""
Event processor tests.

Coverage:
  - parse_event: lock / owner / data extraction, malformed shapes
  - lock filtering (case-insensitive), ignored outcomes
  - per-item resolution, skip rules and failure isolation
  - end-to-end scenarios through real components with all outbound HTTP and
    SMTP faked, counting every outbound call
"""

import json
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from app.config import Settings
from app.models.events import BuyerRecord, NotificationResult
from app.services.event_processor import EventProcessor, is_for_lock, parse_event
from app.services.relay import Relay

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_payload(lock="0xAA", items=None) -> dict:
    if items is None:
        items = [{"tokenId": "5", "transactionHash": ["0xTX1"]}]
    payload = {"data": items}
    if lock is not None:
        payload["lock"] = lock
    return payload


def _buyer(item_id: str, email=None, full_name=None, owner=None) -> BuyerRecord:
    return BuyerRecord(
        item_id=item_id,
        resource_address="0xaa",
        network=137,
        email=email,
        full_name=full_name,
        owner_address=owner,
    )


def _make_processor(lock_address="0xaa", resolve=None, notify=None):
    resolver = Mock()
    resolver.resolve = resolve or AsyncMock(
        side_effect=lambda item_id: _buyer(item_id, email="a@b.com", full_name="A B")
    )
    notifier = Mock()
    notifier.notify = notify or AsyncMock(
        return_value=NotificationResult(email_sent=True, mailing_list_enrolled=True)
    )
    processor = EventProcessor(Settings(lock_address=lock_address), resolver, notifier)
    return processor, resolver, notifier


# ===========================================================================
# parse_event
# ===========================================================================

class TestParseEvent:
    def test_extracts_lock_owner_and_items_in_order(self):
        event = parse_event({
            "lock": "0xAA",
            "keyOwner": "0xBuyer",
            "data": [
                {"tokenId": 5, "transactionHash": ["0xTX1", "0xTX2"]},
                {"tokenId": "6", "transactionHash": ["0xTX3"], "owner": "0xOther"},
            ],
        })

        assert event.resource_address == "0xAA"
        assert event.owner == "0xBuyer"
        assert [i.item_id for i in event.items] == ["5", "6"]
        # Only the first transaction hash of an item is kept
        assert event.items[0].transaction_ref == "0xTX1"
        assert event.items[0].owner == "0xBuyer"
        assert event.items[1].owner == "0xOther"

    def test_accepts_alternate_field_names(self):
        event = parse_event({
            "lockAddress": "0xAA",
            "data": [{"tokenId": "1", "transactionsHash": ["0xTX9"]}],
        })

        assert event.resource_address == "0xAA"
        assert event.items[0].transaction_ref == "0xTX9"

    def test_string_transaction_hash(self):
        event = parse_event({"data": [{"tokenId": "1", "transactionHash": "0xTX"}]})

        assert event.items[0].transaction_ref == "0xTX"

    def test_missing_or_empty_transaction_hash(self):
        event = parse_event({"data": [{"tokenId": "1"}, {"tokenId": "2", "transactionHash": []}]})

        assert [i.transaction_ref for i in event.items] == [None, None]

    def test_entries_without_token_id_are_dropped(self):
        event = parse_event({"data": [{"transactionHash": ["0xTX"]}, "junk", {"tokenId": "3"}]})

        assert [i.item_id for i in event.items] == ["3"]

    @pytest.mark.parametrize("payload", [None, "text", 42, [], {"data": "nope"}, {"data": {}}])
    def test_malformed_payloads_yield_no_items(self, payload):
        assert parse_event(payload).items == []


class TestIsForLock:
    def test_case_insensitive_match(self):
        assert is_for_lock(parse_event({"lock": "0xAbC"}), "0xabc")

    def test_other_lock(self):
        assert not is_for_lock(parse_event({"lock": "0xAA"}), "0xBB")

    def test_event_without_lock_is_accepted(self):
        assert is_for_lock(parse_event({}), "0xBB")

    def test_unconfigured_lock_rejects_named_locks(self):
        assert not is_for_lock(parse_event({"lock": "0xAA"}), None)


# ===========================================================================
# EventProcessor.handle
# ===========================================================================

class TestHandle:
    """Orchestration with resolver and notifier mocked."""

    @pytest.mark.asyncio
    async def test_matching_lock_is_processed(self):
        processor, resolver, notifier = _make_processor(lock_address="0xaa")

        outcome = await processor.handle(_make_payload(lock="0xAA"))

        assert outcome.status == "processed"
        assert outcome.notified == 1
        assert outcome.status_code == 200
        resolver.resolve.assert_awaited_once_with("5")
        buyer, tx_ref = notifier.notify.await_args.args
        assert buyer.email == "a@b.com"
        assert tx_ref == "0xTX1"
        assert outcome.items[0].notification.mailing_list_enrolled is True

    @pytest.mark.asyncio
    async def test_other_lock_is_ignored_without_resolving(self):
        processor, resolver, notifier = _make_processor(lock_address="0xBB")

        outcome = await processor.handle(_make_payload(lock="0xAA"))

        assert outcome.status == "ignored"
        assert outcome.reason == "resource_mismatch"
        assert outcome.status_code == 200
        resolver.resolve.assert_not_awaited()
        notifier.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_items_is_ignored(self):
        processor, resolver, _ = _make_processor()

        outcome = await processor.handle(_make_payload(items=[]))

        assert outcome.status == "ignored"
        assert outcome.reason == "no_items"
        resolver.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, "not json", 7, {"lock": "0xaa", "data": "x"}])
    async def test_malformed_payload_is_ignored(self, payload):
        processor, _, _ = _make_processor()

        outcome = await processor.handle(payload)

        assert outcome.status == "ignored"

    @pytest.mark.asyncio
    async def test_buyer_without_identity_is_not_notified(self):
        resolve = AsyncMock(return_value=_buyer("5"))
        processor, _, notifier = _make_processor(resolve=resolve)

        outcome = await processor.handle(_make_payload())

        assert outcome.status == "processed"
        assert outcome.notified == 0
        notifier.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_name_only_buyer_is_notified(self):
        resolve = AsyncMock(return_value=_buyer("5", full_name="A B"))
        processor, _, notifier = _make_processor(resolve=resolve)

        outcome = await processor.handle(_make_payload())

        assert outcome.notified == 1
        notifier.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_owner_falls_back_to_payload_owner(self):
        resolve = AsyncMock(return_value=_buyer("5", email="a@b.com"))
        processor, _, notifier = _make_processor(resolve=resolve)
        payload = _make_payload()
        payload["owner"] = "0xFromPayload"

        await processor.handle(payload)

        buyer, _ = notifier.notify.await_args.args
        assert buyer.owner_address == "0xFromPayload"

    @pytest.mark.asyncio
    async def test_items_processed_in_order_and_failures_isolated(self):
        async def resolve(item_id):
            if item_id == "2":
                raise RuntimeError("boom")
            return _buyer(item_id, email=f"{item_id}@b.com")

        processor, resolver, notifier = _make_processor(resolve=AsyncMock(side_effect=resolve))
        items = [{"tokenId": str(i), "transactionHash": [f"0xTX{i}"]} for i in (1, 2, 3)]

        outcome = await processor.handle(_make_payload(items=items))

        assert outcome.status == "processed"
        assert outcome.notified == 2
        assert [c.args[0] for c in resolver.resolve.await_args_list] == ["1", "2", "3"]
        assert [o.notified for o in outcome.items] == [True, False, True]
        notified_ids = [c.args[0].item_id for c in notifier.notify.await_args_list]
        assert notified_ids == ["1", "3"]

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_stop_later_items(self):
        notify = AsyncMock(side_effect=[RuntimeError("smtp exploded"), NotificationResult()])
        processor, _, _ = _make_processor(notify=notify)
        items = [{"tokenId": "1"}, {"tokenId": "2"}]

        outcome = await processor.handle(_make_payload(items=items))

        assert outcome.status == "processed"
        assert notify.await_count == 2
        assert outcome.notified == 1

    @pytest.mark.asyncio
    async def test_unexpected_failure_outside_items_is_an_error(self):
        processor, _, _ = _make_processor()
        # A dict subclass whose .get explodes fails before the item loop
        class ExplodingDict(dict):
            def get(self, *args, **kwargs):
                raise RuntimeError("corrupt payload")

        outcome = await processor.handle(ExplodingDict(lock="0xaa"))

        assert outcome.status == "error"
        assert outcome.status_code == 500


# ===========================================================================
# End-to-end through real components
# ===========================================================================

class OutboundRecorder:
    """Fake Locksmith + EtherMail behind one MockTransport."""

    def __init__(self, metadata: dict | None = None, metadata_error: bool = False):
        self.metadata = metadata if metadata is not None else {
            "owner": "0xBuyer",
            "userMetadata": {"protected": {"email": "a@b.com", "fullname": "A B"}},
        }
        self.metadata_error = metadata_error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v2/auth/login":
            return httpx.Response(200, json={"accessToken": "tok"})
        if path.startswith("/v2/api/metadata/"):
            if self.metadata_error:
                raise httpx.ConnectError("metadata down", request=request)
            return httpx.Response(200, json=self.metadata)
        if request.url.host == "ethermail.test":
            return httpx.Response(200, json={})
        return httpx.Response(404)

    def paths(self, host: str) -> list[str]:
        return [r.url.path for r in self.requests if r.url.host == host]


def _make_relay(lock_address: str, recorder: OutboundRecorder):
    settings = Settings(
        lock_address=lock_address,
        network_id=137,
        locksmith_url="https://locksmith.test",
        signer_private_key=TEST_KEY,
        smtp_host="smtp.example.com",
        notification_email="owner@example.com",
        ethermail_api_key="em-key",
        ethermail_list_id="list-1",
        ethermail_api_url="https://ethermail.test/v1/contacts",
    )
    send_mail = AsyncMock()
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return Relay(settings, http_client=client, send_mail=send_mail), send_mail


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_case_different_lock_is_processed(self):
        recorder = OutboundRecorder()
        relay, send_mail = _make_relay("0xaa", recorder)

        outcome = await relay.processor.handle(_make_payload(lock="0xAA"))

        assert outcome.status == "processed"
        assert outcome.notified == 1
        send_mail.assert_awaited_once()
        enrollments = [r for r in recorder.requests if r.url.host == "ethermail.test"]
        assert len(enrollments) == 1
        assert json.loads(enrollments[0].content)["email"] == "a@b.com"

    @pytest.mark.asyncio
    async def test_other_lock_makes_no_outbound_calls(self):
        recorder = OutboundRecorder()
        relay, send_mail = _make_relay("0xBB", recorder)

        outcome = await relay.processor.handle(_make_payload(lock="0xAA"))

        assert outcome.status == "ignored"
        assert recorder.requests == []
        send_mail.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_metadata_network_error_is_absorbed(self):
        recorder = OutboundRecorder(metadata_error=True)
        relay, send_mail = _make_relay("0xaa", recorder)
        items = [{"tokenId": "5", "transactionHash": ["0xTX1"]}, {"tokenId": "6"}]

        outcome = await relay.processor.handle(_make_payload(lock="0xaa", items=items))

        assert outcome.status == "processed"
        assert outcome.notified == 0
        send_mail.assert_not_awaited()
        # Both items were attempted; one sign-in served both
        assert recorder.paths("locksmith.test").count("/v2/auth/login") == 1
        assert len([p for p in recorder.paths("locksmith.test") if p.startswith("/v2/api/metadata/")]) == 2

    @pytest.mark.asyncio
    async def test_email_less_buyer_gets_mail_but_no_enrollment(self):
        recorder = OutboundRecorder(metadata={"userMetadata": {"public": {"fullname": "A B"}}})
        relay, send_mail = _make_relay("0xaa", recorder)

        outcome = await relay.processor.handle(_make_payload(lock="0xaa"))

        assert outcome.notified == 1
        send_mail.assert_awaited_once()
        assert recorder.paths("ethermail.test") == []


class TestRelayClose:

    @pytest.mark.asyncio
    async def test_caller_supplied_client_stays_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(OutboundRecorder()))
        relay = Relay(Settings(), http_client=client)

        await relay.aclose()

        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_own_client_is_closed(self):
        relay = Relay(Settings())

        await relay.aclose()

        assert relay.http.is_closed is True
