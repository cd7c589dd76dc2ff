from flask import Blueprint, request, jsonify, current_app
from models import ClaimIntent, OPEN_STATUSES
from utils.auth_utils import jwt_required
from utils.claim_config import get_claim_service

admin_claims_bp = Blueprint('admin_claims', __name__, url_prefix='/api/admin/claims')


# 未完成的领取意图（含需人工对账的）
@admin_claims_bp.route('/open', methods=['GET'])
@jwt_required
def list_open_claims():
    intents = (
        ClaimIntent.query
        .filter(ClaimIntent.status.in_(OPEN_STATUSES))
        .order_by(ClaimIntent.created_at.asc())
        .all()
    )
    return jsonify({'success': True, 'data': [i.to_dict() for i in intents]})


# 手动触发对账
@admin_claims_bp.route('/reconcile', methods=['POST'])
@jwt_required
def manual_reconcile():
    data = request.get_json(silent=True) or {}
    older_than = int(data.get('older_than_seconds', 0))

    report = get_claim_service().reconcile_open_intents(older_than_seconds=older_than)
    current_app.logger.info(f"Manual reconciliation processed {len(report)} intents")
    return jsonify({'success': True, 'data': report})
