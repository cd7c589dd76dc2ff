from flask import Flask, jsonify
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError
from extensions import db
from dotenv import load_dotenv
import os

# 提前导入模型注册函数（明确显示依赖关系）
from models import register_models

from blueprints.user import user_bp
from blueprints.tasks import tasks_bp
from blueprints.admin_claims import admin_claims_bp
from utils.errors import ClaimError

load_dotenv()


def _env_int(name, default):
    return int(os.getenv(name, default))


def create_app(config=None, claim_service=None):
    app = Flask(__name__)

    CORS(app, supports_credentials=True)

    # ===== 配置 =====
    app.config.update(
        SECRET_KEY=os.getenv('SECRET_KEY'),
        JWT_SECRET=os.getenv('JWT_SECRET'),
        SQLALCHEMY_DATABASE_URI=os.getenv('DB_URI'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,

        # 链上配置
        SOLANA_RPC_URL=os.getenv('SOLANA_RPC_URL'),
        TOKEN_MINT=os.getenv('TOKEN_MINT'),
        AIR_DROP_WALLET_PATH=os.getenv('AIR_DROP_WALLET_PATH'),
        TREASURY_ADDRESS=os.getenv('TREASURY_ADDRESS'),
        RPC_TIMEOUT=float(os.getenv('RPC_TIMEOUT', 10)),
        SIMULATE_BEFORE_SEND=os.getenv('SIMULATE_BEFORE_SEND', 'True') == 'True',

        # 领取规则
        REQUIRED_FEE_LAMPORTS=_env_int('REQUIRED_FEE_LAMPORTS', 6000),
        REWARD_AMOUNT=_env_int('REWARD_AMOUNT', 1000),
        TOKEN_DECIMALS=_env_int('TOKEN_DECIMALS', 6),
        FEE_SCAN_LIMIT=_env_int('FEE_SCAN_LIMIT', 50),
        CLAIM_POINTS_THRESHOLD=_env_int('CLAIM_POINTS_THRESHOLD', 1000),
        REFERRAL_POINTS=_env_int('REFERRAL_POINTS', 100),

        # 并发与对账
        CLAIM_LANE_TIMEOUT=_env_int('CLAIM_LANE_TIMEOUT', 120),
        CLAIM_LANE_WAIT=_env_int('CLAIM_LANE_WAIT', 30),
        RECONCILE_INTERVAL_MINUTES=_env_int('RECONCILE_INTERVAL_MINUTES', 5),
        RECONCILE_AFTER_SECONDS=_env_int('RECONCILE_AFTER_SECONDS', 120),
    )
    if config:
        app.config.update(config)

    # ===== 初始化扩展 =====
    db.init_app(app)
    Migrate(app, db)

    with app.app_context():
        register_models()  # 确保在应用上下文中注册

    # Tests inject a pre-built orchestrator; otherwise built on first claim
    if claim_service is not None:
        app.extensions['claim_service'] = claim_service

    # ===== 统一错误响应 =====
    @app.errorhandler(ClaimError)
    def handle_claim_error(e):
        if e.http_status >= 500:
            app.logger.error(f"Claim failed [{e.code}]: {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        db.session.rollback()
        app.logger.error(f"Database error: {e}")
        return jsonify({'success': False, 'message': 'Database error'}), 500

    # ===== 注册蓝图 =====
    blueprints = [
        user_bp,
        tasks_bp,
        admin_claims_bp
    ]
    for bp in blueprints:
        app.register_blueprint(bp)

    # 健康检查
    @app.route('/')
    def health_check():
        return jsonify({'status': 'healthy'})

    return app


if __name__ == '__main__':
    from scheduler import start_scheduler  # 延迟导入
    app = create_app()
    start_scheduler(app)
    app.run(host='0.0.0.0', port=5000)
