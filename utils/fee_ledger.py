# utils/fee_ledger.py
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import FeePayment
from utils.log import get_logger

logger = get_logger("fee_ledger")


class FeeLedger:
    """
    Single-use ledger of fee transaction signatures.

    Reservation is a single conditional write: the unique constraint on `tx_signature`
    decides who inserts first, and the UPDATE only matches an unused row owned by the
    calling wallet. Two wallets presenting the same fee can never both hold it.
    """

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def reserve_if_unused(self, wallet, tx_signature) -> bool:
        """
        True if the fee is (still) reserved for `wallet` and unused. The insert runs in a
        savepoint, so losing the insert race leaves the rest of the session untouched; the
        reservation is committed.
        """
        session = self.session
        if session.query(FeePayment.id).filter_by(tx_signature=tx_signature).first() is None:
            try:
                with session.begin_nested():
                    session.add(FeePayment(tx_signature=tx_signature, wallet_address=wallet, used=False))
            except IntegrityError:
                # Lost the insert race; the conditional update below decides
                logger.info(f"[fee_ledger] fee {tx_signature} inserted concurrently, checking owner")

        result = session.execute(
            update(FeePayment)
            .where(
                FeePayment.tx_signature == tx_signature,
                FeePayment.used.is_(False),
                FeePayment.wallet_address == wallet,
            )
            .values(reserved_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        session.commit()

        reserved = result.rowcount == 1
        if reserved:
            logger.info(f"[fee_ledger] fee {tx_signature} reserved for {wallet}")
        else:
            logger.warning(f"[fee_ledger] fee {tx_signature} already used or held by another wallet, rejected for {wallet}")
        return reserved

    def mark_used(self, wallet, tx_signature) -> bool:
        """
        Flip the fee to used. Idempotent: True if it is used by `wallet` afterwards.
        Does not commit; finalization commits it with the rest of the ledger writes.
        """
        session = self.session
        result = session.execute(
            update(FeePayment)
            .where(
                FeePayment.tx_signature == tx_signature,
                FeePayment.used.is_(False),
                FeePayment.wallet_address == wallet,
            )
            .values(used=True, used_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return True

        row = session.query(FeePayment).filter_by(tx_signature=tx_signature).first()
        return bool(row and row.used and row.wallet_address == wallet)

    def is_used(self, tx_signature) -> bool:
        row = self.session.query(FeePayment.used).filter_by(tx_signature=tx_signature).first()
        return bool(row and row.used)
