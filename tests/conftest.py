import itertools
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from solders.keypair import Keypair

from app import create_app
from extensions import db
from models import WalletUser, UserPointsAccount
from utils.claim_service import ClaimOrchestrator
from utils.fee_ledger import FeeLedger
from utils.token_disburser import PreparedTransfer
from utils.wallet_locks import LocalWalletLocks

JWT_SECRET = "test-jwt-secret-long-enough-for-hs256-0123456789"
FEE_SIGNATURE = "5feeSig1111111111111111111111111111111111111111111111111111111111111111111111111111111"


def new_wallet():
    return str(Keypair().pubkey())


def make_tx(keys, pre, post, err=None, parsed=True, loaded=None, meta=True):
    """Shape of a jsonParsed getTransaction result, as far as the fee scanner reads it."""
    account_keys = [SimpleNamespace(pubkey=k) for k in keys] if parsed else list(keys)
    tx_meta = SimpleNamespace(pre_balances=pre, post_balances=post, err=err, loaded_addresses=loaded) if meta else None
    message = SimpleNamespace(account_keys=account_keys)
    return SimpleNamespace(transaction=SimpleNamespace(meta=tx_meta, transaction=SimpleNamespace(message=message)))


@pytest.fixture
def scanner():
    scanner = MagicMock()
    scanner.find_qualifying_fee.return_value = FEE_SIGNATURE
    return scanner


@pytest.fixture
def disburser():
    counter = itertools.count(1)
    disburser = MagicMock()

    def prepare(wallet, amount):
        n = next(counter)
        return PreparedTransfer(
            recipient=wallet,
            recipient_account=f"ata-{n}",
            amount=amount,
            signature=f"transfer-sig-{n}",
            blockhash=f"blockhash-{n}",
            last_valid_block_height=1000 + n,
            raw_transaction=f"raw-{n}".encode(),
        )

    disburser.prepare.side_effect = prepare
    disburser.submit.side_effect = lambda prepared: prepared.signature
    disburser.is_expired.return_value = False
    disburser.transfer_status.return_value = None
    return disburser


@pytest.fixture
def orchestrator(scanner, disburser):
    return ClaimOrchestrator(
        scanner=scanner,
        fee_ledger=FeeLedger(),
        disburser=disburser,
        wallet_locks=LocalWalletLocks(blocking_timeout=0.1),
        points_threshold=1000,
        reward_amount=1000,
    )


@pytest.fixture
def app(orchestrator):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'JWT_SECRET': JWT_SECRET,
        'SECRET_KEY': 'test',
        'REFERRAL_POINTS': 100,
    }, claim_service=orchestrator)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(points=0, has_claimed=False, wallet=None):
        wallet = wallet or new_wallet()
        user = WalletUser(wallet_address=wallet)
        db.session.add(user)
        db.session.flush()
        db.session.add(UserPointsAccount(wallet_user_id=user.id, total_points=points, has_claimed=has_claimed))
        db.session.commit()
        return wallet
    return _make_user
