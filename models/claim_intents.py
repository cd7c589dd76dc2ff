import uuid
from enum import Enum
from datetime import datetime, timezone
from extensions import db


def _utcnow():
    return datetime.now(timezone.utc)


class ClaimStatusEnum(Enum):
    pending = "pending"        # fee reserved, nothing signed yet
    submitted = "submitted"    # transfer signed and recorded (signature known), may be on the wire
    disbursed = "disbursed"    # transfer confirmed on chain, ledger not finalized yet
    finalized = "finalized"    # ledger finalized
    failed = "failed"          # transfer cannot have landed; fee stays reserved for a retry
    reconcile = "reconcile"    # tokens sent but finalization failed; operator attention


OPEN_STATUSES = (
    ClaimStatusEnum.pending,
    ClaimStatusEnum.submitted,
    ClaimStatusEnum.disbursed,
    ClaimStatusEnum.reconcile,
)


class ClaimIntent(db.Model):
    """
    Write-ahead record of one claim. The signed transfer is stored before it is broadcast,
    so a crash at any point can be resumed without sending the reward twice.
    """
    __tablename__ = "claim_intents"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    wallet_address = db.Column(db.String(44), nullable=False, index=True)
    fee_signature = db.Column(db.String(100), nullable=False, index=True)
    amount = db.Column(db.BigInteger, nullable=False)
    status = db.Column(db.Enum(ClaimStatusEnum), default=ClaimStatusEnum.pending, nullable=False, index=True)
    transfer_signature = db.Column(db.String(100), nullable=True, unique=True)
    blockhash = db.Column(db.String(64), nullable=True)
    last_valid_block_height = db.Column(db.BigInteger, nullable=True)
    raw_transaction = db.Column(db.LargeBinary, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "fee_signature": self.fee_signature,
            "amount": self.amount,
            "status": self.status.value,
            "transfer_signature": self.transfer_signature,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
