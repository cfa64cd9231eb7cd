from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

import pydantic
from sqlalchemy import select
from sqlalchemy.orm import Session

import lineage
from database import unit_of_work
from directory import Directory
from errors import DuplicateKeyError, NotFoundError, ValidationError
from history import record_event
from lifecycle import BatchStatus, EventType, LinkType, Operation, next_status
from models import Batch, BatchLink, FinalProduct, Lot, Notification, ProcessedBatch
from schemas import CreateLotDetails, FormulateProductDetails, ProcessLotDetails, RecallDetails
from utils import utc_now, utc_now_iso

LOGGER = logging.getLogger(__name__)

AGGREGATION_CENTER = "Aggregation Center"
PROCESSING_UNIT = "Processing Unit"
MANUFACTURING_UNIT = "Manufacturing Unit"

RECALL_TITLE = "Batch Recall Alert"
RECALL_MESSAGE = "Batch {batch_id} has been recalled. Reason: {reason}"
RECALL_NOTIFICATION_TYPE = "warning"

DETAILS_SCHEMAS = {
    "createLot": CreateLotDetails,
    "processLot": ProcessLotDetails,
    "formulateProduct": FormulateProductDetails,
    "recall": RecallDetails,
}


@dataclass
class CascadeResult:
    action: str
    batch_id: str
    affected_batch_ids: List[str] = field(default_factory=list)
    notified_users: int = 0


def _dedupe(ids: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(ids))


class BatchCascade:
    def __init__(self, db: Session, directory: Directory, recall_scope: str = "transitive"):
        self.db = db
        self.directory = directory
        self.recall_scope = recall_scope
        self._handlers: Dict[str, Callable] = {
            "createLot": self.create_lot,
            "processLot": self.process_lot,
            "formulateProduct": self.formulate_product,
            "recall": self.recall,
        }

    def execute(self, action: str, batch_id: str, details: dict) -> CascadeResult:
        handler = self._handlers.get(action)
        if handler is None:
            raise ValidationError(f"Unknown action: {action}")
        if not batch_id:
            raise ValidationError("batchId is required")
        try:
            payload = DETAILS_SCHEMAS[action].model_validate(details or {})
        except pydantic.ValidationError as exc:
            raise ValidationError(
                f"invalid details for {action}",
                details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc

        LOGGER.info("Cascading batch action: %s for batch %s", action, batch_id)
        with unit_of_work(self.db):
            return handler(batch_id, payload)

    # ---------- helpers ----------
    def _ensure_unused(self, batch_id: str) -> None:
        if self.db.scalar(select(Batch.id).where(Batch.batch_id == batch_id)) is not None:
            raise DuplicateKeyError(f"batch_id already exists: {batch_id}")

    def _get(self, batch_id: str, what: str = "batch") -> Batch:
        batch = self.db.scalar(
            select(Batch).where(Batch.batch_id == batch_id).with_for_update()
        )
        if batch is None:
            raise NotFoundError(f"{what} not found: {batch_id}")
        return batch

    def _get_many(self, batch_ids: Sequence[str], what: str) -> List[Batch]:
        rows = self.db.scalars(
            select(Batch).where(Batch.batch_id.in_(batch_ids)).with_for_update()
        ).all()
        found = {b.batch_id: b for b in rows}
        missing = [b for b in batch_ids if b not in found]
        if missing:
            raise NotFoundError(
                f"{what} not found: {', '.join(missing)}", details={"missing": missing}
            )
        return [found[b] for b in batch_ids]

    def _apply(self, batch: Batch, operation: Operation) -> None:
        batch.status = next_status(batch.batch_id, batch.status, operation).value
        batch.updated_at = utc_now()

    def _link(self, parent: Batch, children: Sequence[Batch], link_type: LinkType) -> None:
        for child in children:
            self.db.add(BatchLink(parent_id=parent.id, child_id=child.id, link_type=link_type.value))

    # ---------- actions ----------
    def create_lot(self, lot_id: str, details: CreateLotDetails) -> CascadeResult:
        constituent_ids = _dedupe(details.constituent_batch_ids)
        if lot_id in constituent_ids:
            raise ValidationError(f"lot {lot_id} cannot contain itself")
        self._ensure_unused(lot_id)
        constituents = self._get_many(constituent_ids, "constituent batch")

        quantity, unit = details.quantity, details.unit
        if quantity is None:
            units = {c.unit for c in constituents}
            if len(units) != 1 or any(c.quantity is None for c in constituents):
                raise ValidationError("quantity is required when constituents do not share one unit")
            shared_unit = units.pop()
            if unit and unit != shared_unit:
                raise ValidationError(f"constituents are measured in {shared_unit}, not {unit}")
            unit = shared_unit
            quantity = sum(c.quantity for c in constituents)
        if not unit:
            raise ValidationError("unit is required")

        lot = Lot(
            batch_id=lot_id,
            status=BatchStatus.CREATED.value,
            owner_id=details.new_owner_id,
            product_name=details.product_name,
            quantity=quantity,
            unit=unit,
            source_location=AGGREGATION_CENTER,
            meta={},
        )
        self.db.add(lot)
        self.db.flush()

        for c in constituents:
            self._apply(c, Operation.CONSOLIDATE)
        self._link(lot, constituents, LinkType.CONSOLIDATION)
        self.db.flush()

        record_event(self.db, lot, EventType.BATCH_CREATED, details.new_owner_id, {
            "action": "lot_created",
            "constituent_batches": constituent_ids,
            "total_quantity": quantity,
        })
        LOGGER.info("Created lot %s with %d constituent batches", lot_id, len(constituents))
        return CascadeResult("createLot", lot_id, constituent_ids)

    def process_lot(self, processed_id: str, details: ProcessLotDetails) -> CascadeResult:
        if processed_id == details.parent_lot_id:
            raise ValidationError("a processed batch cannot be its own parent lot")
        self._ensure_unused(processed_id)
        parent = self._get(details.parent_lot_id, "parent lot")

        processed = ProcessedBatch(
            batch_id=processed_id,
            status=BatchStatus.PROCESSED.value,
            owner_id=details.new_owner_id,
            product_name=f"Processed {parent.product_name}",
            quantity=details.output_quantity,
            unit=details.output_unit,
            source_location=PROCESSING_UNIT,
            process_type=details.process_type,
            meta={},
        )
        self.db.add(processed)
        self.db.flush()

        self._apply(parent, Operation.PROCESS)
        self._link(processed, [parent], LinkType.PROCESSING)
        self.db.flush()

        record_event(self.db, processed, EventType.PROCESSING_STEP, details.new_owner_id, {
            "action": "batch_processed",
            "parent_lot_id": details.parent_lot_id,
            "process_type": details.process_type,
            "output_quantity": details.output_quantity,
        })
        LOGGER.info("Processed lot %s into batch %s", details.parent_lot_id, processed_id)
        return CascadeResult("processLot", processed_id, [details.parent_lot_id])

    def formulate_product(self, product_id: str, details: FormulateProductDetails) -> CascadeResult:
        input_ids = _dedupe(details.input_batch_ids)
        if product_id in input_ids:
            raise ValidationError(f"product {product_id} cannot be one of its own inputs")
        self._ensure_unused(product_id)
        inputs = self._get_many(input_ids, "input batch")

        product = FinalProduct(
            batch_id=product_id,
            status=BatchStatus.FINALIZED.value,
            owner_id=details.new_owner_id,
            product_name=details.product_name,
            quantity=details.final_quantity,
            unit=details.final_unit,
            source_location=MANUFACTURING_UNIT,
            qr_payload={
                "batchId": product_id,
                "productName": details.product_name,
                "manufacturedDate": utc_now_iso(),
                "manufacturerId": details.new_owner_id,
            },
            meta={},
        )
        self.db.add(product)
        self.db.flush()

        for batch in inputs:
            self._apply(batch, Operation.FORMULATE)
        self._link(product, inputs, LinkType.FORMULATION)
        self.db.flush()

        record_event(self.db, product, EventType.FORMULATION, details.new_owner_id, {
            "action": "final_product_created",
            "input_batches": input_ids,
            "final_quantity": details.final_quantity,
        })
        LOGGER.info("Formulated final product %s from %d input batches", product_id, len(inputs))
        return CascadeResult("formulateProduct", product_id, input_ids)

    def recall(self, batch_id: str, details: RecallDetails) -> CascadeResult:
        scope = details.scope or self.recall_scope
        target = self._get(batch_id)
        if scope == "direct":
            linked = lineage.neighbors(self.db, target, lock=True)
        else:
            linked = lineage.lineage(self.db, target, lock=True)

        for batch in [target] + linked:
            self._apply(batch, Operation.RECALL)
        cascaded = [b.batch_id for b in linked]

        users = self.directory.list_all_users()
        message = RECALL_MESSAGE.format(batch_id=batch_id, reason=details.reason)
        for user in users:
            self.db.add(Notification(
                user_id=user.user_id,
                title=RECALL_TITLE,
                message=message,
                type=RECALL_NOTIFICATION_TYPE,
                batch_id=batch_id,
            ))
        self.db.flush()

        record_event(self.db, target, EventType.RECALL, details.actor_id, {
            "action": "batch_recalled",
            "reason": details.reason,
            "recall_date": utc_now_iso(),
            "scope": scope,
            "cascaded_batches": cascaded,
        })
        LOGGER.info(
            "Recalled batch %s and %d linked batches (%s). Reason: %s",
            batch_id, len(cascaded), scope, details.reason,
        )
        return CascadeResult("recall", batch_id, cascaded, notified_users=len(users))
