# dualseal/ledger/record_store.py
"""
Record store: the ledger-resident state machine for document exchanges.

    (none) --create-->   AWAITING_COUNTERPARTY_APPROVAL   (by initiator)
           --approve-->  AWAITING_INITIATOR_FINALIZATION  (by counterparty)
           --finalize--> FINALIZED                        (by initiator; grants fingerprint access to both)

Transition methods mutate self.state in place and must only ever run against a
working copy handed out by the ledger host, which commits it on success and
discards it on any error. Guards therefore all run before the first mutation.
Access grants are queued on the context and applied by the host once the new
state is committed.
"""

import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from dualseal.core.errors import (
    InvalidInputProof,
    InvalidTransition,
    NotFound,
    NotReady,
    Unauthorized,
    ValidationError,
)
from dualseal.core.types import LedgerEvent, Record, RecordStatus, ZERO_ADDRESS
from dualseal.crypto.fhe import HomomorphicCapability

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def is_address(value: str) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


@dataclass
class RecordStoreState:
    record_count: int = 0                   # next id to assign; ids are 0..record_count-1
    records: Dict[int, Record] = field(default_factory=dict)
    by_initiator: Dict[str, List[int]] = field(default_factory=dict)
    by_counterparty: Dict[str, List[int]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "record_count": self.record_count,
            "records": {str(rid): r.to_dict() for rid, r in self.records.items()},
            "by_initiator": self.by_initiator,
            "by_counterparty": self.by_counterparty,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "RecordStoreState":
        return cls(
            record_count=d["record_count"],
            records={int(rid): Record.from_dict(r) for rid, r in d["records"].items()},
            by_initiator={k: list(v) for k, v in d["by_initiator"].items()},
            by_counterparty={k: list(v) for k, v in d["by_counterparty"].items()},
        )


@dataclass
class TransitionContext:
    """Per-transition execution context supplied by the ledger host."""
    sender: str
    timestamp: int
    events: List[LedgerEvent] = field(default_factory=list)
    grants: List[Tuple[str, str]] = field(default_factory=list)   # (handle, identity)

    def emit(self, event: LedgerEvent) -> None:
        self.events.append(event)

    def grant(self, handle: str, identity: str) -> None:
        self.grants.append((handle, identity))


class RecordStore:

    def __init__(self, address: str, capability: HomomorphicCapability,
                 state: Optional[RecordStoreState] = None):
        self.address = address
        self.capability = capability
        self.state = state if state is not None else RecordStoreState()

    # ── transitions

    def create(
        self,
        ctx: TransitionContext,
        title: str,
        counterparty: str,
        fingerprint_handle: str,
        input_proof: str,
    ) -> int:
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Title must be a non-empty string")
        if not is_address(counterparty):
            raise ValidationError(f"Counterparty {counterparty!r} is not a valid address")
        if counterparty == ZERO_ADDRESS:
            raise ValidationError("Counterparty cannot be the zero address")
        if counterparty == ctx.sender:
            raise ValidationError("Counterparty must differ from the initiator")

        try:
            handle = self.capability.accept_input(fingerprint_handle, input_proof, self.address, ctx.sender)
        except InvalidInputProof as e:
            raise ValidationError(f"Encrypted fingerprint rejected: {e}") from e

        record_id = self.state.record_count
        self.state.record_count += 1
        self.state.records[record_id] = Record(
            id=record_id,
            title=title,
            fingerprint_handle=handle,
            initiator=ctx.sender,
            counterparty=counterparty,
            status=RecordStatus.AWAITING_COUNTERPARTY_APPROVAL,
            created_at=ctx.timestamp,
        )
        self.state.by_initiator.setdefault(ctx.sender, []).append(record_id)
        self.state.by_counterparty.setdefault(counterparty, []).append(record_id)

        ctx.emit(LedgerEvent("RecordCreated", record_id, ctx.timestamp, {
            "initiator": ctx.sender,
            "counterparty": counterparty,
            "title": title,
        }))
        return record_id

    def approve(self, ctx: TransitionContext, record_id: int) -> None:
        record = self._require(record_id)
        self._require_status(record, RecordStatus.AWAITING_COUNTERPARTY_APPROVAL, "approve")
        if ctx.sender != record.counterparty:
            raise Unauthorized(f"Only the counterparty of record {record_id} may approve")

        self.state.records[record_id] = replace(
            record,
            status=record.status.next,
            counterparty_approved_at=ctx.timestamp,
        )
        ctx.emit(LedgerEvent("CounterpartyApproved", record_id, ctx.timestamp, {
            "counterparty": ctx.sender,
        }))

    def finalize(self, ctx: TransitionContext, record_id: int) -> None:
        record = self._require(record_id)
        self._require_status(record, RecordStatus.AWAITING_INITIATOR_FINALIZATION, "finalize")
        if ctx.sender != record.initiator:
            raise Unauthorized(f"Only the initiator of record {record_id} may finalize")

        self.state.records[record_id] = replace(
            record,
            status=record.status.next,
            initiator_finalized_at=ctx.timestamp,
        )
        ctx.emit(LedgerEvent("InitiatorFinalized", record_id, ctx.timestamp, {
            "initiator": ctx.sender,
        }))

        # the only place access is ever granted
        ctx.grant(record.fingerprint_handle, record.initiator)
        ctx.grant(record.fingerprint_handle, record.counterparty)

    # ── views (side-effect free)

    def get_record(self, record_id: int) -> Record:
        return self._require(record_id)

    def get_encrypted_fingerprint(self, record_id: int, caller: Optional[str]) -> str:
        record = self._require(record_id)
        if record.status is not RecordStatus.FINALIZED:
            raise NotReady(f"Record {record_id} must be finalized to access its fingerprint")
        if caller is None or not record.is_party(caller):
            raise Unauthorized(f"{caller} is not a party to record {record_id}")
        return record.fingerprint_handle

    def records_by_initiator(self, address: str) -> List[int]:
        return list(self.state.by_initiator.get(address, []))

    def records_by_counterparty(self, address: str) -> List[int]:
        return list(self.state.by_counterparty.get(address, []))

    def total_records(self) -> int:
        return self.state.record_count

    # ── helpers

    def _require(self, record_id: int) -> Record:
        if isinstance(record_id, bool) or not isinstance(record_id, int):
            raise ValidationError(f"Record id must be an integer, got {record_id!r}")
        record = self.state.records.get(record_id)
        if record is None:
            raise NotFound(f"Record {record_id} does not exist")
        return record

    @staticmethod
    def _require_status(record: Record, expected: RecordStatus, event: str) -> None:
        if record.status is not expected:
            raise InvalidTransition(
                f"Cannot {event} record {record.id} in state {record.status.name} "
                f"(requires {expected.name})"
            )


TRANSITIONS = ("create", "approve", "finalize")
VIEWS = (
    "get_record",
    "get_encrypted_fingerprint",
    "records_by_initiator",
    "records_by_counterparty",
    "total_records",
)
