# dualseal/core/types.py
from dataclasses import dataclass, field, asdict
from enum import IntEnum
from typing import Any, Dict, List, Literal, Optional

ZERO_ADDRESS = "0x" + "00" * 20


class RecordStatus(IntEnum):
    """Lifecycle of one exchange. Only ever advances by exactly one step."""
    AWAITING_COUNTERPARTY_APPROVAL = 0
    AWAITING_INITIATOR_FINALIZATION = 1
    FINALIZED = 2

    @property
    def next(self) -> "RecordStatus":
        if self is RecordStatus.FINALIZED:
            raise ValueError("Finalized is terminal")
        return RecordStatus(self + 1)


@dataclass(frozen=True)
class Record:
    """Ledger-resident state of a single document exchange."""
    id: int
    title: str
    fingerprint_handle: str                 # 0x-hex handle issued by the homomorphic capability
    initiator: str
    counterparty: str
    status: RecordStatus = RecordStatus.AWAITING_COUNTERPARTY_APPROVAL
    created_at: int = 0                     # block time in seconds, 0 = unset
    counterparty_approved_at: int = 0
    initiator_finalized_at: int = 0

    def __post_init__(self):
        # coerce plain ints coming back from storage; anything else is rejected
        object.__setattr__(self, "status", RecordStatus(self.status))
        if self.initiator == self.counterparty:
            raise ValueError("initiator and counterparty must differ")

    def is_party(self, address: str) -> bool:
        return address in (self.initiator, self.counterparty)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = int(self.status)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Record":
        return cls(**d)


@dataclass(frozen=True)
class EncryptedInput:
    """Homomorphic ciphertext handle plus the proof the ledger needs to accept it."""
    handle: str
    proof: str                              # base64url


EventName = Literal["RecordCreated", "CounterpartyApproved", "InitiatorFinalized"]


@dataclass(frozen=True)
class LedgerEvent:
    """Ordered, informational event emitted by a committed transition."""
    name: EventName
    record_id: int
    time: int
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LedgerEvent":
        return cls(**d)


@dataclass(frozen=True)
class StateTransition:
    """A signed call against the record store, as submitted to the ledger host."""
    ledger: str                             # record store address
    method: Literal["create", "approve", "finalize"]
    params: Dict[str, Any]
    sender_key: str                         # base64url Ed25519 public key
    nonce: str
    signature: str = ""                     # base64url, empty until signed

    def signing_payload(self) -> dict:
        d = asdict(self)
        d.pop("signature")
        return d

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    block_number: int
    timestamp: int
    sender: str
    return_value: Optional[Any] = None
    events: List[LedgerEvent] = field(default_factory=list)
