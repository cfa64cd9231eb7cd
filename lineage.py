from typing import Dict, Iterable, List, Set

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from models import Batch, BatchLink


def links_for(db: Session, batch: Batch) -> List[BatchLink]:
    return list(db.scalars(
        select(BatchLink)
        .where(or_(BatchLink.parent_id == batch.id, BatchLink.child_id == batch.id))
        .order_by(BatchLink.id)
    ).all())


def load_by_ids(db: Session, ids: Iterable[int], lock: bool = False) -> List[Batch]:
    ids = sorted(set(ids))
    if not ids:
        return []
    stmt = select(Batch).where(Batch.id.in_(ids)).order_by(Batch.id)
    if lock:
        stmt = stmt.with_for_update()
    return list(db.scalars(stmt).all())


def neighbors(db: Session, batch: Batch, lock: bool = False) -> List[Batch]:
    """Batches one link away from ``batch`` in either direction."""
    ids = set()
    for link in links_for(db, batch):
        ids.add(link.child_id if link.parent_id == batch.id else link.parent_id)
    ids.discard(batch.id)
    return load_by_ids(db, ids, lock=lock)


# parent is the derived batch, child its source: forward walks upstream
def _walk(db: Session, start: int, forward: bool) -> Set[int]:
    src, dst = (BatchLink.parent_id, BatchLink.child_id) if forward else (
        BatchLink.child_id, BatchLink.parent_id)
    seen: Set[int] = {start}
    frontier = {start}
    while frontier:
        rows = db.execute(select(src, dst).where(src.in_(frontier))).all()
        frontier = {row[1] for row in rows} - seen
        seen |= frontier
    seen.discard(start)
    return seen


def upstream_ids(db: Session, batch: Batch) -> Set[int]:
    """Every batch ``batch`` was (transitively) made from."""
    return _walk(db, batch.id, forward=True)


def downstream_ids(db: Session, batch: Batch) -> Set[int]:
    """Every batch (transitively) made from ``batch``."""
    return _walk(db, batch.id, forward=False)


def lineage(db: Session, batch: Batch, lock: bool = False) -> List[Batch]:
    return load_by_ids(db, upstream_ids(db, batch) | downstream_ids(db, batch), lock=lock)


def business_keys(db: Session, ids: Iterable[int]) -> Dict[int, str]:
    ids = set(ids)
    if not ids:
        return {}
    rows = db.execute(select(Batch.id, Batch.batch_id).where(Batch.id.in_(ids))).all()
    return {row[0]: row[1] for row in rows}
