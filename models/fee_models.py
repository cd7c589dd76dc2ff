from datetime import datetime, timezone
from extensions import db


class FeePayment(db.Model):
    """
    Single-use record of an on-chain fee payment.

    Keyed by the chain transaction signature, not by wallet: one fee funds at most one
    claim system-wide. `wallet_address` is the wallet that first reserved it; `used`
    goes False -> True once and is never reversed.
    """
    __tablename__ = 'fee_payments'

    id = db.Column(db.Integer, primary_key=True)
    tx_signature = db.Column(db.String(100), unique=True, nullable=False)
    wallet_address = db.Column(db.String(44), nullable=False, index=True)
    used = db.Column(db.Boolean, default=False, nullable=False)
    reserved_at = db.Column(db.DateTime, nullable=True)
    used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
