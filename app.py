import logging
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

import custody
import lineage
from cascade import BatchCascade
from config import load_settings
from database import Base, engine, get_db, unit_of_work
from directory import Directory, SqlDirectory
from errors import NotFoundError, ValidationError, register_exception_handlers
from history import list_history, verify_history
from lifecycle import BatchStatus, BatchType, Role
from models import Batch, FinalProduct, Notification, RawMaterial, UserRole
from schemas import (
    BatchList, BatchOut, CascadeRequest, CascadeResponse, HistoryEntryOut, HistoryOut,
    LineageOut, LinkOut, NotificationOut, RegisterRawMaterial, RoleAssignment, StatusUpdate,
    TransferRequest,
)
from utils import as_utc, qr_png

LOGGER = logging.getLogger(__name__)

# ---------- Config ----------
settings = load_settings()

app = FastAPI(title="AyuSetu Trace", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


@app.on_event("startup")
def on_startup():
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    LOGGER.info("Starting AyuSetu Trace (recall scope=%s)", settings.recall_scope)
    Base.metadata.create_all(bind=engine)


# ---------- Dependencies ----------
def get_directory(db: Session = Depends(get_db)) -> Directory:
    return SqlDirectory(db)


def get_cascade(
    db: Session = Depends(get_db),
    directory: Directory = Depends(get_directory),
) -> BatchCascade:
    return BatchCascade(db, directory, recall_scope=settings.recall_scope)


# ---------- Helpers ----------
def batch_out(batch: Batch) -> BatchOut:
    farmer = batch if isinstance(batch, RawMaterial) else None
    return BatchOut(
        batch_id=batch.batch_id,
        type=batch.type,
        status=batch.status,
        owner_id=batch.owner_id,
        product_name=batch.product_name,
        quantity=batch.quantity,
        unit=batch.unit,
        source_location=batch.source_location,
        destination_location=batch.destination_location,
        farmer_name=farmer.farmer_name if farmer else None,
        farmer_phone=farmer.farmer_phone if farmer else None,
        farmer_location=farmer.farmer_location if farmer else None,
        qr_payload=batch.qr_payload if isinstance(batch, FinalProduct) else None,
        metadata=batch.meta or {},
        version=batch.version,
        created_at=as_utc(batch.created_at),
        updated_at=as_utc(batch.updated_at),
    )


# which batches each role's dashboard shows
def _role_filter(role: Role, user_id: str):
    if role == Role.AGGREGATOR:
        return Batch.type.in_([BatchType.RAW_MATERIAL.value, BatchType.LOT.value])
    if role == Role.PROCESSOR:
        return or_(
            Batch.status.in_([BatchStatus.IN_TRANSIT.value, BatchStatus.RECEIVED.value]),
            Batch.owner_id == user_id,
        )
    if role == Role.MANUFACTURER:
        return or_(
            Batch.type.in_([BatchType.PROCESSED.value, BatchType.FINAL_PRODUCT.value]),
            Batch.owner_id == user_id,
        )
    if role == Role.DISTRIBUTOR:
        return or_(Batch.status == BatchStatus.FINALIZED.value, Batch.owner_id == user_id)
    return Batch.owner_id == user_id


# ---------- APIs: cascade ----------
@app.post("/api/batch-cascade", response_model=CascadeResponse)
def batch_cascade(body: CascadeRequest, cascade: BatchCascade = Depends(get_cascade)):
    result = cascade.execute(body.action, body.batch_id, body.details)
    return CascadeResponse(
        action=result.action,
        batch_id=result.batch_id,
        affected_batch_ids=result.affected_batch_ids,
        notified_users=result.notified_users,
    )


# ---------- APIs: one batch ----------
@app.post("/api/batches", response_model=BatchOut)
def register_raw_material(body: RegisterRawMaterial, db: Session = Depends(get_db)):
    return batch_out(custody.register_raw_material(db, body))


@app.get("/api/batches/{batch_id}", response_model=BatchOut)
def get_batch(batch_id: str, db: Session = Depends(get_db)):
    return batch_out(custody.get_batch(db, batch_id))


@app.post("/api/batches/{batch_id}/transfer", response_model=BatchOut)
def transfer_batch(batch_id: str, body: TransferRequest, db: Session = Depends(get_db)):
    batch = custody.transfer_batch(
        db, batch_id, body.new_owner_id,
        destination=body.destination_location,
        actor_id=body.actor_id,
        details=body.details,
    )
    return batch_out(batch)


@app.post("/api/batches/{batch_id}/status", response_model=BatchOut)
def update_batch_status(batch_id: str, body: StatusUpdate, db: Session = Depends(get_db)):
    return batch_out(custody.update_status(db, batch_id, body.status, body.actor_id, body.details))


@app.get("/api/batches/{batch_id}/history", response_model=HistoryOut)
def batch_history(
    batch_id: str,
    order: str = Query("asc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    batch = custody.get_batch(db, batch_id)
    entries = list_history(db, batch)
    verified = verify_history(entries)
    if order == "desc":
        entries = entries[::-1]
    return HistoryOut(
        batch_id=batch_id,
        verified=verified,
        entries=[HistoryEntryOut(
            id=e.id,
            event_type=e.event_type,
            actor_id=e.actor_id,
            details=e.details,
            timestamp=e.timestamp,
            prev_hash=e.prev_hash,
            hash=e.hash,
        ) for e in entries],
    )


@app.get("/api/batches/{batch_id}/lineage", response_model=LineageOut)
def batch_lineage(batch_id: str, db: Session = Depends(get_db)):
    batch = custody.get_batch(db, batch_id)
    links = lineage.links_for(db, batch)
    up = lineage.upstream_ids(db, batch)
    down = lineage.downstream_ids(db, batch)
    keys = lineage.business_keys(
        db, up | down | {link.parent_id for link in links} | {link.child_id for link in links}
    )
    return LineageOut(
        batch_id=batch_id,
        links=[LinkOut(
            parent_batch_id=keys[link.parent_id],
            child_batch_id=keys[link.child_id],
            link_type=link.link_type,
        ) for link in links],
        upstream=sorted(keys[i] for i in up),
        downstream=sorted(keys[i] for i in down),
    )


@app.get("/api/batches/{batch_id}/qrcode")
def batch_qrcode(batch_id: str, db: Session = Depends(get_db)):
    batch = custody.get_batch(db, batch_id)
    if not isinstance(batch, FinalProduct) or not batch.qr_payload:
        raise NotFoundError(f"no QR payload for batch {batch_id}")
    payload = dict(batch.qr_payload)
    payload["traceUrl"] = f"{settings.base_url}/api/batches/{batch_id}/lineage"
    return Response(content=qr_png(payload), media_type="image/png")


# ---------- Batches listing ----------
@app.get("/api/batches", response_model=BatchList)
def list_batches(
    role: Optional[Role] = Query(None),
    user_id: Optional[str] = Query(None),
    type: Optional[BatchType] = Query(None),
    status: Optional[BatchStatus] = Query(None),
    updated_since: Optional[datetime] = Query(None, description="only batches changed after this time"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    base = select(Batch)
    if role is not None:
        if not user_id:
            raise ValidationError("user_id is required with role")
        base = base.where(_role_filter(role, user_id))
    elif user_id:
        base = base.where(Batch.owner_id == user_id)
    if type is not None:
        base = base.where(Batch.type == type.value)
    if status is not None:
        base = base.where(Batch.status == status.value)
    if updated_since is not None:
        base = base.where(Batch.updated_at > as_utc(updated_since))

    total = db.scalar(select(func.count()).select_from(base.subquery()))
    rows = db.scalars(
        base.order_by(Batch.created_at.desc(), Batch.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
    ).all()
    return BatchList(
        items=[batch_out(b) for b in rows],
        total=total or 0,
        page=page,
        page_size=page_size,
    )


# ---------- Users ----------
@app.post("/api/users/roles")
def assign_role(body: RoleAssignment, db: Session = Depends(get_db)):
    with unit_of_work(db):
        existing = db.scalar(select(UserRole).where(
            UserRole.user_id == body.user_id, UserRole.role == body.role.value
        ))
        if existing is None:
            db.add(UserRole(user_id=body.user_id, role=body.role.value))
    return {"status": "ok", "userId": body.user_id, "role": body.role.value}


@app.get("/api/users/{user_id}/notifications", response_model=List[NotificationOut])
def list_notifications(
    user_id: str,
    unread_only: bool = Query(False),
    db: Session = Depends(get_db),
):
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    rows = db.scalars(stmt.order_by(Notification.id.desc())).all()
    return [NotificationOut(
        id=n.id,
        title=n.title,
        message=n.message,
        type=n.type,
        batch_id=n.batch_id,
        is_read=n.is_read,
        created_at=as_utc(n.created_at),
    ) for n in rows]


# ---------- Demo data ----------
DEMO_USERS = [
    ("farmer-1", Role.FARMER),
    ("aggregator-1", Role.AGGREGATOR),
    ("processor-1", Role.PROCESSOR),
    ("manufacturer-1", Role.MANUFACTURER),
    ("distributor-1", Role.DISTRIBUTOR),
]

DEMO_RAW_MATERIALS = [
    RegisterRawMaterial(
        batch_id="F001", owner_id="farmer-1", product_name="Ashwagandha Root",
        quantity=60, unit="kg", farmer_name="Ramesh Patil", farmer_location="Nashik, Maharashtra",
    ),
    RegisterRawMaterial(
        batch_id="F002", owner_id="farmer-1", product_name="Ashwagandha Root",
        quantity=40, unit="kg", farmer_name="Ramesh Patil", farmer_location="Nashik, Maharashtra",
    ),
]


@app.get("/api/seed")
def seed(db: Session = Depends(get_db)):
    if db.scalar(select(Batch.id).where(Batch.batch_id == DEMO_RAW_MATERIALS[0].batch_id)):
        return {"status": "exists", "batch_ids": [r.batch_id for r in DEMO_RAW_MATERIALS]}

    for user_id, role in DEMO_USERS:
        assign_role(RoleAssignment(user_id=user_id, role=role), db)
    for raw in DEMO_RAW_MATERIALS:
        custody.register_raw_material(db, raw)
    return {"status": "seeded", "batch_ids": [r.batch_id for r in DEMO_RAW_MATERIALS]}


@app.get("/health")
def health() -> dict:
    return {"ok": True}
