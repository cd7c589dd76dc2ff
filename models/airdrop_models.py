from datetime import datetime, timezone
from extensions import db


class AirdropLog(db.Model):
    """Append-only audit row, written once per successful on-chain disbursement."""
    __tablename__ = 'airdrop_log'

    id = db.Column(db.Integer, primary_key=True)
    wallet_address = db.Column(db.String(44), nullable=False, index=True)
    amount_sent = db.Column(db.BigInteger, nullable=False)
    tx_signature = db.Column(db.String(100), nullable=False, unique=True)
    fee_signature = db.Column(db.String(100), nullable=True)
    sent_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "wallet_address": self.wallet_address,
            "amount_sent": self.amount_sent,
            "tx_signature": self.tx_signature,
            "fee_signature": self.fee_signature,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }
