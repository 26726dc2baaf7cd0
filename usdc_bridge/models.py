"""
Bridge data model

Transfer records, transaction records and attestation payloads.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class TransferStatus(Enum):
    PENDING = "pending"
    BURNING = "burning"
    WAITING_ATTESTATION = "waiting_attestation"
    READY_TO_MINT = "ready_to_mint"
    MINTING = "minting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "TransferStatus") -> bool:
        return target in TRANSITIONS[self]


TERMINAL_STATUSES: FrozenSet[TransferStatus] = frozenset({
    TransferStatus.COMPLETED,
    TransferStatus.FAILED,
})

# Forward-only state graph; FAILED is reachable from every non-terminal state
TRANSITIONS: Dict[TransferStatus, FrozenSet[TransferStatus]] = {
    TransferStatus.PENDING: frozenset({TransferStatus.BURNING, TransferStatus.FAILED}),
    TransferStatus.BURNING: frozenset({TransferStatus.WAITING_ATTESTATION, TransferStatus.FAILED}),
    TransferStatus.WAITING_ATTESTATION: frozenset({TransferStatus.READY_TO_MINT, TransferStatus.FAILED}),
    TransferStatus.READY_TO_MINT: frozenset({TransferStatus.MINTING, TransferStatus.FAILED}),
    TransferStatus.MINTING: frozenset({TransferStatus.COMPLETED, TransferStatus.FAILED}),
    TransferStatus.COMPLETED: frozenset(),
    TransferStatus.FAILED: frozenset(),
}

# Fields callers may change after creation
MUTABLE_FIELDS = frozenset({
    "status", "burn_tx_hash", "mint_tx_hash", "message", "attestation", "error_message",
})
WRITE_ONCE_FIELDS = frozenset({"burn_tx_hash", "mint_tx_hash"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Transfer:
    """Cross-chain transfer record"""
    id: str
    user_id: str
    source_chain: str
    destination_chain: str
    amount: str  # human units, stored verbatim
    status: TransferStatus
    created_at: datetime
    updated_at: datetime
    burn_tx_hash: Optional[str] = None
    mint_tx_hash: Optional[str] = None
    message: Optional[str] = None
    attestation: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transfer":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            source_chain=data["source_chain"],
            destination_chain=data["destination_chain"],
            amount=data["amount"],
            status=TransferStatus(data["status"]),
            created_at=_parse_datetime(data["created_at"]),
            updated_at=_parse_datetime(data["updated_at"]),
            burn_tx_hash=data.get("burn_tx_hash"),
            mint_tx_hash=data.get("mint_tx_hash"),
            message=data.get("message"),
            attestation=data.get("attestation"),
            error_message=data.get("error_message"),
        )


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class TransactionState:
    """Signing service transaction states"""
    INITIATED = "INITIATED"
    QUEUED = "QUEUED"
    SENT = "SENT"
    CONFIRMED = "CONFIRMED"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    DENIED = "DENIED"
    CANCELLED = "CANCELLED"

    SUCCESS = frozenset({CONFIRMED, COMPLETE})
    FAILURE = frozenset({FAILED, DENIED})


@dataclass(frozen=True)
class TransactionRecord:
    """Normalised signing service transaction"""
    id: str
    state: str
    tx_hash: Optional[str] = None
    error_reason: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.state in TransactionState.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.state in TransactionState.FAILURE

    @property
    def is_pending(self) -> bool:
        return not (self.is_success or self.is_failure)


@dataclass(frozen=True)
class AttestationMessage:
    """One message/attestation pair reported by the attestation oracle"""
    message: str
    attestation: str
    status: str  # pending | complete
    event_nonce: Optional[str] = None
    cctp_version: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return self.status == "complete"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "attestation": self.attestation,
            "status": self.status,
            "event_nonce": self.event_nonce,
            "cctp_version": self.cctp_version,
        }
