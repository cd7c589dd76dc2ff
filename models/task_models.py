import uuid
from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint, ForeignKey
from sqlalchemy.orm import relationship
from extensions import db


class Task(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(128), nullable=False)
    points = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "points": self.points,
            "description": self.description,
        }


class CompletedTask(db.Model):
    __tablename__ = 'completed_tasks'

    id = db.Column(db.Integer, primary_key=True)
    wallet_user_id = db.Column(db.String(36), ForeignKey('wallet_users.id'), nullable=False)
    task_id = db.Column(db.String(36), ForeignKey('tasks.id'), nullable=False)
    completed_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    wallet_user = relationship("WalletUser", backref="completed_tasks")
    task = relationship("Task")

    __table_args__ = (
        UniqueConstraint('wallet_user_id', 'task_id', name='uix_wallet_task'),
    )
