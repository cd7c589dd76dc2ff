import uuid
from datetime import datetime, timezone
from sqlalchemy import ForeignKey
from sqlalchemy.orm import relationship
from extensions import db


class WalletUser(db.Model):
    __tablename__ = 'wallet_users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    wallet_address = db.Column(db.String(44), unique=True, nullable=False)
    # Shareable code; a wallet address is accepted as a referral code too
    referral_code = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    referrer_id = db.Column(db.String(36), ForeignKey('wallet_users.id'), nullable=True)
    registered_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    points_account = relationship("UserPointsAccount", uselist=False, back_populates="wallet_user")
    referrer = relationship("WalletUser", remote_side=[id], backref="referrals")


class UserPointsAccount(db.Model):
    __tablename__ = 'user_points_accounts'

    wallet_user_id = db.Column(db.String(36), ForeignKey('wallet_users.id'), primary_key=True)
    total_points = db.Column(db.Integer, default=0, nullable=False)
    # Once True the wallet stops earning points
    has_claimed = db.Column(db.Boolean, default=False, nullable=False)

    wallet_user = relationship("WalletUser", back_populates="points_account")


class PointsHistory(db.Model):
    __tablename__ = 'points_history'

    id = db.Column(db.Integer, primary_key=True)
    wallet_user_id = db.Column(db.String(36), db.ForeignKey('wallet_users.id'), nullable=False)
    change_type = db.Column(db.String(60), nullable=False)
    change_amount = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    description = db.Column(db.String(255), nullable=True)

    wallet_user = db.relationship('WalletUser', backref='points_history')
