import jwt

from extensions import db
from models import Task, WalletUser, PointsHistory
from tests.conftest import JWT_SECRET, new_wallet


def connect(client, wallet, referral_code=None):
    payload = {'wallet_address': wallet}
    if referral_code:
        payload['referral_code'] = referral_code
    return client.post('/api/user/connect_wallet', json=payload)


def points_of(client, wallet):
    return client.get(f'/api/user/points?wallet={wallet}').get_json()


def add_task(points=300, name="Follow on X"):
    task = Task(name=name, points=points)
    db.session.add(task)
    db.session.commit()
    return task.id


def test_health(client):
    assert client.get('/').get_json() == {'status': 'healthy'}


# ----------------- 连接钱包 -----------------
def test_connect_wallet_is_idempotent(client):
    wallet = new_wallet()

    first = connect(client, wallet)
    second = connect(client, wallet)

    assert first.status_code == 200
    assert first.get_json()['created'] is True
    assert second.get_json()['created'] is False
    assert WalletUser.query.filter_by(wallet_address=wallet).count() == 1
    assert points_of(client, wallet)['total_points'] == 0


def test_connect_wallet_rejects_invalid_address(client):
    resp = connect(client, "0x1234")
    assert resp.status_code == 400
    assert resp.get_json()['success'] is False


def test_referral_by_code_and_by_wallet(client):
    referrer = new_wallet()
    connect(client, referrer)
    code = points_of(client, referrer)['referral_code']

    resp = connect(client, new_wallet(), referral_code=code)
    assert resp.get_json()['referral_credited'] is True
    connect(client, new_wallet(), referral_code=referrer)

    info = points_of(client, referrer)
    assert info['total_points'] == 200
    assert info['referrals'] == 2
    assert PointsHistory.query.filter_by(change_type="invite_reward").count() == 2


def test_referral_is_applied_once(client):
    referrer = new_wallet()
    invitee = new_wallet()
    connect(client, referrer)

    connect(client, invitee, referral_code=referrer)
    resp = connect(client, invitee, referral_code=referrer)

    assert resp.get_json()['referral_credited'] is False
    assert points_of(client, referrer)['total_points'] == 100


def test_self_referral_ignored(client):
    wallet = new_wallet()
    resp = connect(client, wallet, referral_code=wallet)
    assert resp.get_json()['referral_credited'] is False
    assert points_of(client, wallet)['total_points'] == 0


def test_claimed_referrer_earns_nothing(client, make_user):
    referrer = make_user(points=500, has_claimed=True)

    resp = connect(client, new_wallet(), referral_code=referrer)

    assert resp.get_json()['referral_credited'] is False
    assert points_of(client, referrer)['total_points'] == 500


# ----------------- 任务 -----------------
def test_list_tasks(client, app):
    add_task(name="Join Telegram", points=200)
    tasks = client.get('/api/tasks').get_json()
    assert [t['name'] for t in tasks] == ["Join Telegram"]
    assert tasks[0]['points'] == 200


def test_complete_task_credits_points_once(client, make_user):
    wallet = make_user()
    task_id = add_task(points=300)

    first = client.post('/api/user/complete_task', json={'wallet_address': wallet, 'task_id': task_id})
    second = client.post('/api/user/complete_task', json={'wallet_address': wallet, 'task_id': task_id})

    assert first.status_code == 200
    assert second.status_code == 400
    info = points_of(client, wallet)
    assert info['total_points'] == 300
    assert info['tasks_completed'] == [task_id]


def test_complete_task_errors(client, make_user):
    task_id = add_task()
    claimed = make_user(points=100, has_claimed=True)

    unknown_wallet = client.post('/api/user/complete_task', json={'wallet_address': new_wallet(), 'task_id': task_id})
    unknown_task = client.post('/api/user/complete_task', json={'wallet_address': claimed, 'task_id': 'nope'})
    after_claim = client.post('/api/user/complete_task', json={'wallet_address': claimed, 'task_id': task_id})

    assert unknown_wallet.status_code == 404
    assert unknown_task.status_code == 404
    assert after_claim.status_code == 400
    assert points_of(client, claimed)['total_points'] == 100


def test_points_for_unknown_wallet(client):
    assert client.get(f'/api/user/points?wallet={new_wallet()}').status_code == 404
    assert client.get('/api/user/points').status_code == 400


# ----------------- 领取 -----------------
def test_claim_airdrop_success(client, make_user):
    wallet = make_user(points=1500)

    resp = client.post('/api/user/claim_airdrop', json={'wallet_address': wallet})

    data = resp.get_json()
    assert resp.status_code == 200
    assert data['success'] is True
    assert data['status'] == 'Airdrop sent'
    assert data['tokens'] == 1000
    assert data['remaining_points'] == 500
    assert data['tx_signature'] == 'transfer-sig-1'

    stats = client.get('/api/user/stats').get_json()
    assert stats == {'total_wallets': 1, 'total_airdrops': 1}


def test_claim_airdrop_error_envelope(client, make_user, scanner):
    poor = make_user(points=999)
    resp = client.post('/api/user/claim_airdrop', json={'wallet_address': poor})
    assert resp.status_code == 400
    assert resp.get_json() == {
        'success': False,
        'code': 'INSUFFICIENT_POINTS',
        'message': 'Not enough points (min 1000)',
        'retryable': False,
    }

    unpaid = make_user(points=1000)
    scanner.find_qualifying_fee.return_value = None
    resp = client.post('/api/user/claim_airdrop', json={'wallet_address': unpaid})
    assert resp.status_code == 402
    assert resp.get_json()['code'] == 'FEE_NOT_DETECTED'

    resp = client.post('/api/user/claim_airdrop', json={'wallet_address': 'bogus'})
    assert resp.status_code == 400
    assert resp.get_json()['code'] == 'INVALID_WALLET'


def test_repeat_claim_is_conflict(client, make_user):
    wallet = make_user(points=1500)
    client.post('/api/user/claim_airdrop', json={'wallet_address': wallet})

    resp = client.post('/api/user/claim_airdrop', json={'wallet_address': wallet})
    assert resp.status_code == 409
    assert resp.get_json()['code'] == 'ALREADY_CLAIMED'


# ----------------- 管理 -----------------
def test_admin_claims_require_token(client):
    assert client.get('/api/admin/claims/open').status_code == 401
    resp = client.get('/api/admin/claims/open', headers={'Authorization': 'Bearer not-a-jwt'})
    assert resp.status_code == 401


def test_admin_lists_and_reconciles_open_claims(client, make_user, disburser):
    from utils.errors import ChainUnavailable

    token = jwt.encode({'sub': 'admin'}, JWT_SECRET, algorithm='HS256')
    headers = {'Authorization': f'Bearer {token}'}
    wallet = make_user(points=1500)
    disburser.submit.side_effect = ChainUnavailable()

    resp = client.post('/api/user/claim_airdrop', json={'wallet_address': wallet})
    assert resp.status_code == 503
    assert resp.get_json()['retryable'] is True

    open_claims = client.get('/api/admin/claims/open', headers=headers).get_json()['data']
    assert [c['status'] for c in open_claims] == ['submitted']

    disburser.transfer_status.return_value = 'confirmed'
    report = client.post('/api/admin/claims/reconcile', json={'older_than_seconds': -60},
                         headers=headers).get_json()['data']
    assert report[0]['status'] == 'finalized'
    assert client.get('/api/admin/claims/open', headers=headers).get_json()['data'] == []
