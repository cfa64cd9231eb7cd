from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from lifecycle import Role


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- cascade details, one per action ----------
class CreateLotDetails(CamelModel):
    constituent_batch_ids: List[str] = Field(..., min_length=1)
    new_owner_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    # omitted quantity/unit are derived from the constituents
    quantity: Optional[float] = Field(None, gt=0)
    unit: Optional[str] = None


class ProcessLotDetails(CamelModel):
    parent_lot_id: str = Field(..., min_length=1)
    new_owner_id: str = Field(..., min_length=1)
    process_type: str = Field(..., min_length=1)
    output_quantity: float = Field(..., gt=0)
    output_unit: str = Field(..., min_length=1)


class FormulateProductDetails(CamelModel):
    input_batch_ids: List[str] = Field(..., min_length=1)
    new_owner_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    final_quantity: float = Field(..., gt=0)
    final_unit: str = Field(..., min_length=1)


class RecallDetails(CamelModel):
    reason: str = Field(..., min_length=1)
    actor_id: str = Field(..., min_length=1)
    scope: Optional[Literal["transitive", "direct"]] = None


class CascadeRequest(CamelModel):
    action: str
    batch_id: str = Field(..., min_length=1, max_length=64)
    details: Dict[str, Any] = Field(default_factory=dict)


class CascadeResponse(CamelModel):
    success: bool = True
    action: str
    batch_id: str
    affected_batch_ids: List[str]
    notified_users: int = 0


# ---------- custody ----------
class RegisterRawMaterial(CamelModel):
    batch_id: str = Field(..., min_length=1, max_length=64)
    owner_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit: str = Field(..., min_length=1)
    source_location: Optional[str] = None
    farmer_name: Optional[str] = None
    farmer_phone: Optional[str] = None
    farmer_location: Optional[str] = None
    # photo/document references are stored as given
    documents: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TransferRequest(CamelModel):
    new_owner_id: str = Field(..., min_length=1)
    destination_location: Optional[str] = None
    actor_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class StatusUpdate(CamelModel):
    status: Literal["received", "dispatched"]
    actor_id: str = Field(..., min_length=1)
    details: Optional[Dict[str, Any]] = None


class RoleAssignment(CamelModel):
    user_id: str = Field(..., min_length=1)
    role: Role


# ---------- responses ----------
class BatchOut(CamelModel):
    batch_id: str
    type: str
    status: str
    owner_id: str
    product_name: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    source_location: Optional[str] = None
    destination_location: Optional[str] = None
    farmer_name: Optional[str] = None
    farmer_phone: Optional[str] = None
    farmer_location: Optional[str] = None
    qr_payload: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    version: int
    created_at: datetime
    updated_at: datetime


class BatchList(CamelModel):
    items: List[BatchOut]
    total: int
    page: int
    page_size: int


class HistoryEntryOut(CamelModel):
    id: int
    event_type: str
    actor_id: str
    details: Dict[str, Any]
    timestamp: str
    prev_hash: str
    hash: str


class HistoryOut(CamelModel):
    batch_id: str
    verified: bool
    entries: List[HistoryEntryOut]


class LinkOut(CamelModel):
    parent_batch_id: str
    child_batch_id: str
    link_type: str


class LineageOut(CamelModel):
    batch_id: str
    links: List[LinkOut]
    upstream: List[str]
    downstream: List[str]


class NotificationOut(CamelModel):
    id: int
    title: str
    message: str
    type: str
    batch_id: Optional[str] = None
    is_read: bool
    created_at: datetime
