from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from database import Base
from lifecycle import BatchStatus, BatchType
from utils import utc_now


class Batch(Base):
    """One tracked unit of material; the subclass is chosen by ``type``."""

    __tablename__ = "batches"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    batch_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(32), index=True)
    status: Mapped[str] = mapped_column(String(32), default=BatchStatus.CREATED.value, index=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    product_name: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    source_location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    destination_location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # stage-specific extras and opaque document references
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {
        "polymorphic_on": "type",
        "with_polymorphic": "*",
        "version_id_col": version,
    }

    @validates("batch_id")
    def _immutable_key(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise ValueError(f"{key} is immutable once set")
        return value

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.batch_id} status={self.status}>"


class RawMaterial(Batch):
    farmer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    farmer_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    farmer_location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __mapper_args__ = {"polymorphic_identity": BatchType.RAW_MATERIAL.value}


class Lot(Batch):
    __mapper_args__ = {"polymorphic_identity": BatchType.LOT.value}


class ProcessedBatch(Batch):
    process_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __mapper_args__ = {"polymorphic_identity": BatchType.PROCESSED.value}


class FinalProduct(Batch):
    qr_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __mapper_args__ = {"polymorphic_identity": BatchType.FINAL_PRODUCT.value}

    @validates("qr_payload")
    def _qr_payload_set_once(self, key, value):
        if self.qr_payload is not None and value != self.qr_payload:
            raise ValueError("qr_payload is immutable once set")
        return value


class BatchLink(Base):
    """Derivation edge: ``parent`` is the derived batch, ``child`` its source."""

    __tablename__ = "batch_links"
    __table_args__ = (UniqueConstraint("parent_id", "child_id", "link_type"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    parent_id: Mapped[int] = mapped_column(Integer, ForeignKey("batches.id"), index=True)
    child_id: Mapped[int] = mapped_column(Integer, ForeignKey("batches.id"), index=True)
    link_type: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    parent: Mapped[Batch] = relationship("Batch", foreign_keys=[parent_id])
    child: Mapped[Batch] = relationship("Batch", foreign_keys=[child_id])


class BatchHistory(Base):
    __tablename__ = "batch_history"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    batch_id: Mapped[int] = mapped_column(Integer, ForeignKey("batches.id"), index=True)
    event_type: Mapped[str] = mapped_column(String(50))
    actor_id: Mapped[str] = mapped_column(String(64))
    details: Mapped[dict] = mapped_column(JSON)
    timestamp: Mapped[str] = mapped_column(String(32))
    prev_hash: Mapped[str] = mapped_column(String(128))
    hash: Mapped[str] = mapped_column(String(128))


class Notification(Base):
    __tablename__ = "notifications"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(32))
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    role: Mapped[str] = mapped_column(String(32))
