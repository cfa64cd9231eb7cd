import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import unit_of_work
from errors import DuplicateKeyError, NotFoundError
from history import record_event
from lifecycle import BatchStatus, EventType, Operation, next_status
from models import Batch, RawMaterial
from schemas import RegisterRawMaterial
from utils import utc_now

LOGGER = logging.getLogger(__name__)

STATUS_OPERATIONS = {
    BatchStatus.RECEIVED.value: Operation.RECEIVE,
    BatchStatus.DISPATCHED.value: Operation.DISPATCH,
}


def get_batch(db: Session, batch_id: str, lock: bool = False) -> Batch:
    stmt = select(Batch).where(Batch.batch_id == batch_id)
    if lock:
        stmt = stmt.with_for_update()
    batch = db.scalar(stmt)
    if batch is None:
        raise NotFoundError(f"batch not found: {batch_id}")
    return batch


def register_raw_material(db: Session, body: RegisterRawMaterial) -> Batch:
    with unit_of_work(db):
        if db.scalar(select(Batch.id).where(Batch.batch_id == body.batch_id)) is not None:
            raise DuplicateKeyError(f"batch_id already exists: {body.batch_id}")
        meta = dict(body.metadata)
        if body.documents:
            meta["documents"] = list(body.documents)
        batch = RawMaterial(
            batch_id=body.batch_id,
            status=BatchStatus.CREATED.value,
            owner_id=body.owner_id,
            product_name=body.product_name,
            quantity=body.quantity,
            unit=body.unit,
            source_location=body.source_location or body.farmer_location,
            farmer_name=body.farmer_name,
            farmer_phone=body.farmer_phone,
            farmer_location=body.farmer_location,
            meta=meta,
        )
        db.add(batch)
        db.flush()
        record_event(db, batch, EventType.BATCH_CREATED, body.owner_id, {
            "action": "raw_material_registered",
            "quantity": body.quantity,
            "unit": body.unit,
        })
    LOGGER.info("Registered raw material %s for %s", body.batch_id, body.owner_id)
    return batch


def transfer_batch(
    db: Session,
    batch_id: str,
    new_owner_id: str,
    destination: Optional[str] = None,
    actor_id: Optional[str] = None,
    details: Optional[dict] = None,
) -> Batch:
    with unit_of_work(db):
        batch = get_batch(db, batch_id, lock=True)
        previous_owner = batch.owner_id
        batch.status = next_status(batch_id, batch.status, Operation.TRANSFER).value
        batch.owner_id = new_owner_id
        batch.destination_location = destination
        batch.updated_at = utc_now()
        db.flush()
        if details:
            record_event(db, batch, EventType.CUSTODY_TRANSFER, actor_id or previous_owner, {
                **details,
                "from_owner": previous_owner,
                "to_owner": new_owner_id,
            })
    LOGGER.info("Transferred batch %s from %s to %s", batch_id, previous_owner, new_owner_id)
    return batch


def update_status(
    db: Session,
    batch_id: str,
    status: str,
    actor_id: str,
    details: Optional[dict] = None,
) -> Batch:
    operation = STATUS_OPERATIONS[status]
    with unit_of_work(db):
        batch = get_batch(db, batch_id, lock=True)
        batch.status = next_status(batch_id, batch.status, operation).value
        batch.updated_at = utc_now()
        db.flush()
        if details:
            record_event(db, batch, EventType.CUSTODY_TRANSFER, actor_id, {
                **details,
                "status": status,
            })
    LOGGER.info("Batch %s marked %s by %s", batch_id, status, actor_id)
    return batch
