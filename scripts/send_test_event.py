#!/usr/bin/env python3
"""
Dev helper: send a test purchase event to a running Unlock relay.

Builds a hub-style "key created" payload for the configured lock and POSTs it
to /unlock-webhook. With --handshake it instead performs the GET intent
verification the hub would send after a subscribe.

Usage
-----
# Basic: one key (tokenId 1) for LOCK_ADDRESS, targeting localhost:3000
python scripts/send_test_event.py

# Several keys in one delivery
python scripts/send_test_event.py --token-id 5 --token-id 6

# A lock other than ours (should come back "ignored")
python scripts/send_test_event.py --lock 0x0000000000000000000000000000000000000000

# Sign the body (for VERIFY_DELIVERY_SIGNATURE=true)
python scripts/send_test_event.py --sign

# Check the GET handshake echoes the challenge
python scripts/send_test_event.py --handshake

Environment / .env
------------------
LOCK_ADDRESS     Lock used in the payload unless --lock is given.
UNLOCK_SECRET    Shared secret for --sign and --handshake.
PORT             Relay port used for the default --url.
"""

import argparse
import hashlib
import hmac
import json
import os
import secrets
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------

def _build_payload(lock: str, owner: str, token_ids: list[str]) -> dict:
    """
    Build a hub delivery for ``token_ids`` of ``lock``.

    Each key gets its own random transaction hash.
    """
    return {
        "event": "key.created",
        "lock": lock,
        "owner": owner,
        "data": [
            {
                "tokenId": token_id,
                "owner": owner,
                "transactionHash": ["0x" + secrets.token_hex(32)],
            }
            for token_id in token_ids
        ],
    }


def _signature(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_event.py",
        description="Send a test purchase event (or hub handshake) to the Unlock relay.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_event.py
              python scripts/send_test_event.py --token-id 5 --token-id 6
              python scripts/send_test_event.py --handshake
              python scripts/send_test_event.py --url http://localhost:8000
        """),
    )
    parser.add_argument(
        "--url",
        default=f"http://localhost:{os.getenv('PORT', '3000')}",
        help="Relay base URL (default: http://localhost:$PORT or 3000)",
    )
    parser.add_argument(
        "--lock",
        default=os.getenv("LOCK_ADDRESS"),
        help="Lock address to put in the payload (default: LOCK_ADDRESS)",
    )
    parser.add_argument(
        "--owner",
        default="0x000000000000000000000000000000000000dEaD",
        help="Buyer wallet address",
    )
    parser.add_argument(
        "--token-id",
        dest="token_ids",
        action="append",
        metavar="ID",
        help="Key token id; repeat for several keys (default: 1)",
    )
    parser.add_argument(
        "--secret",
        default=os.getenv("UNLOCK_SECRET"),
        help="Shared secret (default: UNLOCK_SECRET)",
    )
    parser.add_argument(
        "--sign",
        action="store_true",
        help="Add an X-Hub-Signature header computed with the secret.",
    )
    parser.add_argument(
        "--handshake",
        action="store_true",
        help="Send the GET intent verification instead of an event.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the payload JSON without sending it.",
    )

    args = parser.parse_args()
    endpoint = f"{args.url.rstrip('/')}/unlock-webhook"

    if args.handshake:
        if not args.secret:
            print("ERROR: --handshake needs UNLOCK_SECRET or --secret.", file=sys.stderr)
            return 1
        challenge = secrets.token_urlsafe(16)
        params = {"hub.challenge": challenge, "hub.secret": args.secret, "hub.mode": "subscribe"}
        print(f"Endpoint : {endpoint}")
        print(f"Challenge: {challenge}")
        if args.dry_run:
            return 0
        response = httpx.get(endpoint, params=params)
        _print_response(response)
        if response.status_code != 200 or response.text != challenge:
            print("Challenge was not echoed back.", file=sys.stderr)
            return 1
        return 0

    if not args.lock:
        print("ERROR: No lock address. Set LOCK_ADDRESS or pass --lock.", file=sys.stderr)
        return 1

    payload = _build_payload(args.lock, args.owner, args.token_ids or ["1"])
    body = json.dumps(payload).encode()

    print(f"Endpoint : {endpoint}")
    print(f"Lock     : {args.lock}")
    print(f"Keys     : {', '.join(item['tokenId'] for item in payload['data'])}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2))
        return 0

    headers = {"Content-Type": "application/json"}
    if args.sign:
        if not args.secret:
            print("ERROR: --sign needs UNLOCK_SECRET or --secret.", file=sys.stderr)
            return 1
        headers["X-Hub-Signature"] = _signature(args.secret, body)

    try:
        response = httpx.post(endpoint, content=body, headers=headers, timeout=30)
    except httpx.HTTPError as exc:
        print(f"ERROR: request failed: {exc}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
