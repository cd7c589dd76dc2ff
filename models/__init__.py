# 1. 显式导入所有模型类（供__all__和直接引用使用）
from extensions import db

from .wallet_models import WalletUser, UserPointsAccount, PointsHistory
from .task_models import Task, CompletedTask
from .fee_models import FeePayment
from .airdrop_models import AirdropLog
from .claim_intents import ClaimIntent, ClaimStatusEnum, OPEN_STATUSES

# 2. 定义__all__（控制from models import *的行为）
__all__ = [
    'WalletUser',
    'UserPointsAccount',
    'PointsHistory',
    'Task',
    'CompletedTask',
    'FeePayment',
    'AirdropLog',
    'ClaimIntent',
    'ClaimStatusEnum',
    'OPEN_STATUSES',
]


# 3. 显式注册函数（确保Flask-Migrate能发现模型）
def register_models():
    """Import every model module so SQLAlchemy and Flask-Migrate see all tables."""
    from . import wallet_models
    from . import task_models
    from . import fee_models
    from . import airdrop_models
    from . import claim_intents
