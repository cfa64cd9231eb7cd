import hashlib
import io
import json
from datetime import datetime, timezone
from typing import Any, Dict, List

import qrcode

GENESIS = "GENESIS"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive values are UTC wall-clock (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def compute_hash(prev_hash: str, payload: dict, timestamp: str) -> str:
    block = json.dumps({
        "prev_hash": prev_hash,
        "payload": payload,
        "timestamp": timestamp
    }, sort_keys=True)
    return hashlib.sha256(block.encode("utf-8")).hexdigest()


def verify_chain(events: List[Dict[str, Any]]) -> bool:
    """Check that each entry hashes onto its predecessor, oldest first."""
    prev = GENESIS
    for ev in events:
        expected = compute_hash(prev, ev["payload"], ev["timestamp"])
        if ev["hash"] != expected or ev["prev_hash"] != prev:
            return False
        prev = ev["hash"]
    return True


def qr_png(payload: Dict[str, Any]) -> bytes:
    img = qrcode.make(json.dumps(payload, sort_keys=True))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
