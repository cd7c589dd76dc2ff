import threading

from app import create_app
from extensions import db
from models import FeePayment
from utils.fee_ledger import FeeLedger
from tests.conftest import new_wallet

SIG = "fee-signature-1"


def test_reserve_is_idempotent_for_the_same_wallet(app):
    ledger = FeeLedger()
    wallet = new_wallet()

    assert ledger.reserve_if_unused(wallet, SIG) is True
    assert ledger.reserve_if_unused(wallet, SIG) is True
    assert FeePayment.query.filter_by(tx_signature=SIG).count() == 1
    assert ledger.is_used(SIG) is False


def test_fee_reserved_by_one_wallet_is_refused_to_another(app):
    ledger = FeeLedger()
    first, second = new_wallet(), new_wallet()

    assert ledger.reserve_if_unused(first, SIG) is True
    assert ledger.reserve_if_unused(second, SIG) is False
    assert FeePayment.query.filter_by(tx_signature=SIG).one().wallet_address == first


def test_used_fee_cannot_be_reserved_again(app):
    ledger = FeeLedger()
    wallet = new_wallet()

    ledger.reserve_if_unused(wallet, SIG)
    assert ledger.mark_used(wallet, SIG) is True
    db.session.commit()

    assert ledger.is_used(SIG) is True
    assert ledger.reserve_if_unused(wallet, SIG) is False
    # Marking again is a no-op for the owner, refused for anyone else
    assert ledger.mark_used(wallet, SIG) is True
    assert ledger.mark_used(new_wallet(), SIG) is False


def test_mark_used_requires_a_reservation(app):
    ledger = FeeLedger()
    assert ledger.mark_used(new_wallet(), "never-reserved") is False
    assert ledger.is_used("never-reserved") is False


def test_concurrent_reservations_from_two_wallets(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'fees.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
    })
    with app.app_context():
        db.create_all()

    wallets = [new_wallet(), new_wallet()]
    barrier = threading.Barrier(len(wallets))
    results = {}

    def reserve(wallet):
        with app.app_context():
            barrier.wait()
            results[wallet] = FeeLedger().reserve_if_unused(wallet, SIG)

    threads = [threading.Thread(target=reserve, args=(w,)) for w in wallets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results.values()) == [False, True]
    winner = next(w for w, reserved in results.items() if reserved)
    with app.app_context():
        rows = FeePayment.query.filter_by(tx_signature=SIG).all()
        assert len(rows) == 1
        assert rows[0].wallet_address == winner
        db.drop_all()
        db.engine.dispose()
