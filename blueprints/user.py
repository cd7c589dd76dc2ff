import uuid
from datetime import datetime, timezone
from flask import Blueprint, request, jsonify, current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from models import WalletUser, UserPointsAccount, PointsHistory, Task, CompletedTask, AirdropLog
from extensions import db
from utils.claim_config import get_claim_service
from utils.wallet import normalize_wallet, is_valid_wallet

user_bp = Blueprint('user', __name__, url_prefix='/api/user')


def get_or_create_wallet_user(wallet_address):
    """Returns (user, created). Caller commits."""
    user = WalletUser.query.filter_by(wallet_address=wallet_address).first()
    if user:
        return user, False

    user = WalletUser(wallet_address=wallet_address)
    db.session.add(user)
    db.session.flush()
    db.session.add(UserPointsAccount(wallet_user_id=user.id, total_points=0, has_claimed=False))
    return user, True


def find_referrer(code):
    """A referral code is either a user's referral uuid or their wallet address."""
    try:
        uuid.UUID(code)
    except ValueError:
        return WalletUser.query.filter_by(wallet_address=code).first()
    return WalletUser.query.filter_by(referral_code=code).first()


def credit_points(user, amount, change_type, description):
    """Add points unless the wallet already claimed. Returns True when credited."""
    account = (
        UserPointsAccount.query
        .filter_by(wallet_user_id=user.id)
        .with_for_update()  # 加行级锁，防止并发修改
        .first()
    )
    if not account or account.has_claimed:
        return False

    account.total_points = (account.total_points or 0) + amount
    db.session.add(PointsHistory(
        wallet_user_id=user.id,
        change_type=change_type,
        change_amount=amount,
        created_at=datetime.now(timezone.utc),
        description=description
    ))
    return True


@user_bp.route('/connect_wallet', methods=['POST'])
def connect_wallet():
    data = request.get_json() or {}
    wallet_address = normalize_wallet(data.get('wallet_address'))
    referral_code = (data.get('referral_code') or '').strip()

    if not is_valid_wallet(wallet_address):
        return jsonify({'success': False, 'message': 'Invalid wallet address'}), 400

    try:
        user, created = get_or_create_wallet_user(wallet_address)

        referral_credited = False
        if referral_code and user.referrer_id is None:
            referrer = find_referrer(referral_code)
            if referrer and referrer.id != user.id:
                user.referrer_id = referrer.id
                referral_credited = credit_points(
                    referrer,
                    current_app.config['REFERRAL_POINTS'],
                    "invite_reward",
                    f"Invited {wallet_address}"
                )

        db.session.commit()
    except IntegrityError:
        # Concurrent connect for the same wallet won the insert
        db.session.rollback()
        return jsonify({'success': True, 'status': 'wallet connected', 'created': False})
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"DB error in connect_wallet: {e}")
        return jsonify({'success': False, 'message': 'Failed to create user'}), 500

    return jsonify({
        'success': True,
        'status': 'wallet connected',
        'created': created,
        'referral_credited': referral_credited
    })


@user_bp.route('/complete_task', methods=['POST'])
def complete_task():
    data = request.get_json() or {}
    wallet_address = normalize_wallet(data.get('wallet_address'))
    task_id = (data.get('task_id') or '').strip()

    if not is_valid_wallet(wallet_address) or not task_id:
        return jsonify({'success': False, 'message': 'Missing wallet address or task_id'}), 400

    user = WalletUser.query.filter_by(wallet_address=wallet_address).first()
    if not user:
        return jsonify({'success': False, 'message': 'Wallet address not found'}), 404

    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'success': False, 'message': 'Task not found'}), 404

    already_done = CompletedTask.query.filter_by(wallet_user_id=user.id, task_id=task.id).first()
    if already_done:
        return jsonify({'success': False, 'message': 'Task already completed'}), 400

    try:
        db.session.add(CompletedTask(wallet_user_id=user.id, task_id=task.id))
        if not credit_points(user, task.points, "task_reward", f"Task completed: {task.name}"):
            db.session.rollback()
            return jsonify({'success': False, 'message': 'Airdrop already claimed, no more points can be earned'}), 400
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'success': False, 'message': 'Task already completed'}), 400
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"DB error in complete_task: {e}")
        return jsonify({'success': False, 'message': 'Database error'}), 500

    return jsonify({'success': True, 'status': 'task recorded', 'points': task.points})


@user_bp.route('/points', methods=['GET'])
def get_points():
    wallet_address = normalize_wallet(request.args.get('wallet'))
    if not wallet_address:
        return jsonify({'success': False, 'message': 'Missing wallet param'}), 400

    user = WalletUser.query.filter_by(wallet_address=wallet_address).first()
    if not user or not user.points_account:
        return jsonify({'success': False, 'message': 'Wallet address not found'}), 404

    return jsonify({
        'wallet': user.wallet_address,
        'total_points': user.points_account.total_points,
        'has_claimed': user.points_account.has_claimed,
        'tasks_completed': [c.task_id for c in user.completed_tasks],
        'referrals': WalletUser.query.filter_by(referrer_id=user.id).count(),
        'referral_code': user.referral_code
    })


@user_bp.route('/claim_airdrop', methods=['POST'])
def claim_airdrop():
    data = request.get_json() or {}
    wallet_address = normalize_wallet(data.get('wallet_address'))

    # Rejections raise ClaimError subclasses, rendered by the app-level handler
    result = get_claim_service().claim(wallet_address)

    return jsonify({
        'success': True,
        'status': 'Airdrop sent',
        'tokens': result.amount,
        'tx_signature': result.transfer_signature,
        'fee_signature': result.fee_signature,
        'remaining_points': result.remaining_points,
        'resumed': result.resumed
    })


@user_bp.route('/stats', methods=['GET'])
def get_user_stats():
    return jsonify({
        'total_wallets': WalletUser.query.count(),
        'total_airdrops': AirdropLog.query.count()
    })
