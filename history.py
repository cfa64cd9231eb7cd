from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from lifecycle import EventType
from models import Batch, BatchHistory
from utils import GENESIS, compute_hash, utc_now_iso, verify_chain


def record_event(
    db: Session,
    batch: Batch,
    event_type: EventType,
    actor_id: str,
    details: dict,
) -> BatchHistory:
    """Add a history entry for ``batch`` to the session.

    The caller owns the transaction; ``batch`` must already be flushed.
    """
    prev = db.scalar(
        select(BatchHistory)
        .where(BatchHistory.batch_id == batch.id)
        .order_by(BatchHistory.id.desc())
    )
    prev_hash = prev.hash if prev else GENESIS
    ts = utc_now_iso()
    entry = BatchHistory(
        batch_id=batch.id,
        event_type=event_type.value,
        actor_id=actor_id,
        details=details,
        timestamp=ts,
        prev_hash=prev_hash,
        hash=compute_hash(prev_hash, details, ts),
    )
    db.add(entry)
    db.flush()
    return entry


def list_history(db: Session, batch: Batch) -> List[BatchHistory]:
    return list(db.scalars(
        select(BatchHistory)
        .where(BatchHistory.batch_id == batch.id)
        .order_by(BatchHistory.id.asc())
    ).all())


def verify_history(entries: List[BatchHistory]) -> bool:
    return verify_chain([{
        "payload": e.details,
        "timestamp": e.timestamp,
        "prev_hash": e.prev_hash,
        "hash": e.hash,
    } for e in entries])
