"""
Relay protocol framing and event signing.

Only the subset needed by the relay source and sink: REQ and EVENT
frames, NIP-01 event ids and BIP-340 Schnorr signatures.
"""

import hashlib
import json
import time
from typing import Any, Dict, List, Optional

from coincurve import PrivateKey, PublicKeyXOnly

from app.models.schemas import OutboundMessage, RelayEvent


def compute_event_id(pubkey: str, created_at: int, kind: int, tags: List[List[str]], content: str) -> str:
    """SHA-256 of the canonical ``[0, pubkey, created_at, kind, tags, content]`` array."""
    serialized = json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


class EventSigner:
    """Signs outbound messages with a secp256k1 key."""

    def __init__(self, secret_key_hex: Optional[str] = None):
        if secret_key_hex:
            self._key = PrivateKey(bytes.fromhex(secret_key_hex))
        else:
            self._key = PrivateKey()
        self.pubkey = PublicKeyXOnly.from_secret(self._key.secret).format().hex()

    def sign(self, message: OutboundMessage, created_at: Optional[int] = None) -> RelayEvent:
        created_at = int(time.time()) if created_at is None else created_at
        tags = [list(tag) for tag in message.tags]
        event_id = compute_event_id(self.pubkey, created_at, message.kind, tags, message.content)
        sig = self._key.sign_schnorr(bytes.fromhex(event_id))
        return RelayEvent(
            id=event_id,
            pubkey=self.pubkey,
            created_at=created_at,
            kind=message.kind,
            tags=tags,
            content=message.content,
            sig=sig.hex(),
        )


def build_filter(kinds: List[int], authors: List[str], since: Optional[int] = None) -> Dict[str, Any]:
    """Subscription filter; empty lists are omitted (match all)."""
    flt: Dict[str, Any] = {}
    if kinds:
        flt["kinds"] = kinds
    if authors:
        flt["authors"] = authors
    if since is not None:
        flt["since"] = since
    return flt


def req_frame(subscription_id: str, *filters: Dict[str, Any]) -> str:
    return json.dumps(["REQ", subscription_id, *filters])


def event_frame(event: RelayEvent) -> str:
    return json.dumps(["EVENT", event.model_dump()])


def parse_frame(raw: str) -> Optional[List[Any]]:
    """Decode a relay frame; returns None for anything that is not a JSON array."""
    try:
        frame = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(frame, list) or not frame or not isinstance(frame[0], str):
        return None
    return frame
