"""Batch vocabulary and the allowed-transition table.

Every status change in the system goes through ``next_status`` so that an
operation is only applied to a batch whose current status permits it.
"""

import enum
from typing import Dict, FrozenSet, Tuple

from errors import InvalidTransitionError


class BatchType(str, enum.Enum):
    RAW_MATERIAL = "raw_material"
    LOT = "lot"
    PROCESSED = "processed"
    FINAL_PRODUCT = "final_product"


class BatchStatus(str, enum.Enum):
    CREATED = "created"
    IN_TRANSIT = "in_transit"
    RECEIVED = "received"
    PROCESSING = "processing"
    PROCESSED = "processed"
    CONSOLIDATED = "consolidated"
    FINALIZED = "finalized"
    DISPATCHED = "dispatched"
    RECALLED = "recalled"


class LinkType(str, enum.Enum):
    CONSOLIDATION = "consolidation"
    PROCESSING = "processing"
    FORMULATION = "formulation"


class EventType(str, enum.Enum):
    BATCH_CREATED = "BatchCreated"
    PROCESSING_STEP = "ProcessingStep"
    FORMULATION = "Formulation"
    RECALL = "Recall"
    CUSTODY_TRANSFER = "CustodyTransfer"


class Operation(str, enum.Enum):
    CONSOLIDATE = "consolidate"
    PROCESS = "process"
    FORMULATE = "formulate"
    TRANSFER = "transfer"
    RECEIVE = "receive"
    DISPATCH = "dispatch"
    RECALL = "recall"


class Role(str, enum.Enum):
    FARMER = "farmer"
    AGGREGATOR = "aggregator"
    PROCESSOR = "processor"
    MANUFACTURER = "manufacturer"
    DISTRIBUTOR = "distributor"


S = BatchStatus

_ALLOWED: Dict[Operation, Tuple[FrozenSet[BatchStatus], BatchStatus]] = {
    Operation.CONSOLIDATE: (frozenset({S.CREATED, S.IN_TRANSIT, S.RECEIVED}), S.CONSOLIDATED),
    Operation.PROCESS: (frozenset({S.CREATED, S.RECEIVED, S.PROCESSING}), S.PROCESSING),
    Operation.FORMULATE: (frozenset({S.CREATED, S.RECEIVED, S.PROCESSED}), S.FINALIZED),
    Operation.TRANSFER: (
        frozenset({S.CREATED, S.RECEIVED, S.PROCESSED, S.FINALIZED, S.IN_TRANSIT}),
        S.IN_TRANSIT,
    ),
    Operation.RECEIVE: (frozenset({S.IN_TRANSIT}), S.RECEIVED),
    Operation.DISPATCH: (frozenset({S.FINALIZED, S.RECEIVED}), S.DISPATCHED),
    Operation.RECALL: (frozenset(BatchStatus), S.RECALLED),
}

# (current status, operation) -> new status
TRANSITIONS: Dict[Tuple[BatchStatus, Operation], BatchStatus] = {
    (current, op): target
    for op, (sources, target) in _ALLOWED.items()
    for current in sources
}


def next_status(batch_id: str, current: str, operation: Operation) -> BatchStatus:
    try:
        return TRANSITIONS[(BatchStatus(current), operation)]
    except (KeyError, ValueError):
        raise InvalidTransitionError(batch_id, current, operation.value) from None
