"""
utils/claim_service.py

Airdrop claim pipeline, run as a resumable saga inside one exclusive lane per wallet:

    eligibility -> fee verified -> fee reserved -> intent pending
        -> transfer signed, intent submitted (write-ahead) -> broadcast, intent disbursed
        -> finalize (audit log + points deduction + claimed flag + fee used) in ONE db transaction

A crash or RPC failure at any point leaves a ClaimIntent row behind. The next claim by the
same wallet, or the scheduled reconciliation, resumes it from the chain's point of view
instead of sending the reward again.
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    AirdropLog,
    ClaimIntent,
    ClaimStatusEnum,
    OPEN_STATUSES,
    PointsHistory,
    UserPointsAccount,
    WalletUser,
)
from utils.errors import (
    AlreadyClaimed,
    ClaimError,
    ClaimInProgress,
    DisbursementFailed,
    FeeAlreadyUsed,
    FeeNotDetected,
    InconsistentLedgerState,
    InsufficientPoints,
    TransferFailed,
    WalletNotFound,
)
from utils.log import get_logger
from utils.token_disburser import PreparedTransfer
from utils.wallet import normalize_wallet, parse_wallet

logger = get_logger("claim_service")

CLAIM_POINTS_THRESHOLD = 1000
REWARD_AMOUNT = 1000
PENDING_STALE_SECONDS = 120


class LedgerMismatch(Exception):
    """Ledger rows disagree with a confirmed disbursement."""


@dataclass
class ClaimResult:
    wallet: str
    amount: int
    fee_signature: str
    transfer_signature: str
    remaining_points: int
    resumed: bool = False

    def to_dict(self):
        return asdict(self)


class ClaimOrchestrator:

    def __init__(self, scanner, fee_ledger, disburser, wallet_locks,
                 points_threshold=CLAIM_POINTS_THRESHOLD, reward_amount=REWARD_AMOUNT,
                 pending_stale_seconds=PENDING_STALE_SECONDS):
        self.scanner = scanner
        self.fee_ledger = fee_ledger
        self.disburser = disburser
        self.locks = wallet_locks
        self.points_threshold = int(points_threshold)
        self.reward_amount = int(reward_amount)
        # A pending intent younger than this may still belong to a live worker
        self.pending_stale_seconds = pending_stale_seconds

    # ----------------- 入口 -----------------
    def claim(self, wallet) -> ClaimResult:
        wallet = str(parse_wallet(normalize_wallet(wallet)))

        with self.locks.lane(wallet):
            intent = self._open_intent(wallet)
            if intent is not None:
                logger.info(f"[claim] {wallet} has open intent {intent.id} ({intent.status.value}), resuming")
                result = self.resume(intent)
                if result is not None:
                    return result

            self.check_eligibility(wallet)

            fee_signature = self.scanner.find_qualifying_fee(wallet)
            if fee_signature is None:
                logger.warning(f"[claim] {wallet} rejected: fee not detected")
                raise FeeNotDetected()

            if not self.fee_ledger.reserve_if_unused(wallet, fee_signature):
                logger.warning(f"[claim] {wallet} rejected: fee {fee_signature} already used")
                raise FeeAlreadyUsed()

            intent = ClaimIntent(wallet_address=wallet, fee_signature=fee_signature, amount=self.reward_amount)
            db.session.add(intent)
            db.session.commit()
            logger.info(f"[claim] intent {intent.id} pending for {wallet}, fee {fee_signature}")

            self._disburse(intent)
            return self._finalize(intent)

    def check_eligibility(self, wallet) -> UserPointsAccount:
        user = WalletUser.query.filter_by(wallet_address=wallet).first()
        if not user or not user.points_account:
            raise WalletNotFound()
        account = user.points_account
        if account.has_claimed:
            logger.warning(f"[claim] {wallet} rejected: already claimed")
            raise AlreadyClaimed()
        if account.total_points < self.points_threshold:
            logger.warning(f"[claim] {wallet} rejected: {account.total_points} < {self.points_threshold} points")
            raise InsufficientPoints(f"Not enough points (min {self.points_threshold})")
        return account

    # ----------------- 发放 -----------------
    def _disburse(self, intent):
        wallet = intent.wallet_address
        try:
            prepared = self.disburser.prepare(wallet, intent.amount)
        except ClaimError as e:
            self._fail(intent, e.message)
            raise DisbursementFailed(f"Disbursement failed: {e.message}", cause=e.code)

        try:
            recorded = self._transition(
                intent, ClaimStatusEnum.pending,
                status=ClaimStatusEnum.submitted,
                transfer_signature=prepared.signature,
                blockhash=prepared.blockhash,
                last_valid_block_height=prepared.last_valid_block_height,
                raw_transaction=prepared.raw_transaction,
            )
        except SQLAlchemyError as e:
            # Nothing was broadcast; safe to drop this attempt
            db.session.rollback()
            self._fail(intent, f"could not record signed transfer: {e}")
            raise DisbursementFailed("Disbursement failed: could not record transfer")
        if not recorded:
            # Another worker resolved this intent while we held an expired lane
            logger.warning(f"[claim] intent {intent.id} left pending by another worker, transfer not sent")
            raise ClaimInProgress()
        logger.info(f"[claim] intent {intent.id} submitted, transfer {prepared.signature}")

        try:
            self.disburser.submit(prepared)
        except TransferFailed as e:
            if self._settle_rejected(intent, e.message) != "confirmed":
                raise DisbursementFailed(f"Disbursement failed: {e.message}", cause=e.code)
            return
        # ChainUnavailable propagates: the transfer may or may not have landed, the
        # intent stays `submitted` and is resolved against the chain on the next attempt

        self._mark_disbursed(intent)

    def _settle_rejected(self, intent, reason):
        """
        A rejected broadcast is not proof the transfer never landed ("already processed",
        a confirmation that raced the block height). Returns "confirmed" (intent disbursed),
        "failed" (intent failed) or "unknown" (intent stays submitted).
        """
        # Validity first: once expired, the status answer below is final
        expired = self.disburser.is_expired(intent.blockhash)
        chain_status = self.disburser.transfer_status(intent.transfer_signature)

        if chain_status == "confirmed":
            logger.info(f"[claim] transfer {intent.transfer_signature} rejected on send but confirmed on chain")
            self._mark_disbursed(intent)
            return "confirmed"
        if chain_status == "failed" or expired:
            if self._fail(intent, reason):
                return "failed"
            return "unknown"

        logger.warning(f"[claim] transfer {intent.transfer_signature} rejected but still landable, "
                       f"intent {intent.id} stays submitted: {reason}")
        return "unknown"

    def _transition(self, intent, expected, **values) -> bool:
        """Conditional status move; False when the row is no longer in `expected`."""
        result = db.session.execute(
            update(ClaimIntent)
            .where(ClaimIntent.id == intent.id, ClaimIntent.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    def _mark_disbursed(self, intent):
        try:
            intent.status = ClaimStatusEnum.disbursed
            db.session.commit()
            logger.info(f"[claim] intent {intent.id} disbursed, transfer {intent.transfer_signature}")
        except SQLAlchemyError as e:
            db.session.rollback()
            self._flag_reconcile(intent.id, f"could not record disbursement: {e}")
            raise InconsistentLedgerState()

    # ----------------- 入账 -----------------
    def _finalize(self, intent, resumed=False) -> ClaimResult:
        intent_id = intent.id
        wallet = intent.wallet_address
        amount = intent.amount
        fee_signature = intent.fee_signature
        transfer_signature = intent.transfer_signature

        try:
            user = WalletUser.query.filter_by(wallet_address=wallet).first()
            if not user:
                raise LedgerMismatch(f"wallet {wallet} not found")
            account = (
                UserPointsAccount.query
                .filter_by(wallet_user_id=user.id)
                .with_for_update()
                .first()
            )
            if not account or account.has_claimed or account.total_points < amount:
                raise LedgerMismatch(f"points account for {wallet} cannot absorb a {amount} deduction")

            db.session.add(AirdropLog(
                wallet_address=wallet,
                amount_sent=amount,
                tx_signature=transfer_signature,
                fee_signature=fee_signature,
            ))

            account.total_points -= amount
            account.has_claimed = True
            db.session.add(PointsHistory(
                wallet_user_id=user.id,
                change_type="airdrop_claim",
                change_amount=-amount,
                created_at=datetime.now(timezone.utc),
                description=f"Airdrop claim, tx {transfer_signature}",
            ))

            if not self.fee_ledger.mark_used(wallet, fee_signature):
                raise LedgerMismatch(f"fee {fee_signature} is not reserved for {wallet}")

            intent.status = ClaimStatusEnum.finalized
            intent.error_message = None
            db.session.commit()
        except (SQLAlchemyError, LedgerMismatch) as e:
            db.session.rollback()
            self._flag_reconcile(intent_id, str(e))
            raise InconsistentLedgerState()

        logger.info(f"[claim] intent {intent_id} finalized: {amount} sent to {wallet}, tx {transfer_signature}")
        return ClaimResult(
            wallet=wallet,
            amount=amount,
            fee_signature=fee_signature,
            transfer_signature=transfer_signature,
            remaining_points=account.total_points,
            resumed=resumed,
        )

    def _fail(self, intent, reason):
        """Fail the intent unless another worker moved it on since we read it."""
        intent_id = intent.id
        expected = intent.status
        try:
            moved = self._transition(intent, expected, status=ClaimStatusEnum.failed, error_message=reason)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"[claim] could not mark intent {intent_id} failed: {e}")
            return False
        if not moved:
            logger.warning(f"[claim] intent {intent_id} left {expected.value} concurrently, not marked failed")
            return False
        logger.error(f"[claim] intent {intent_id} failed for {intent.wallet_address}: {reason}")
        return True

    def _flag_reconcile(self, intent_id, reason):
        intent = db.session.get(ClaimIntent, intent_id)
        logger.critical(
            f"[claim] INCONSISTENT LEDGER: intent {intent_id} wallet={intent.wallet_address if intent else '?'} "
            f"transfer={intent.transfer_signature if intent else '?'} amount={intent.amount if intent else '?'} "
            f"was disbursed but not finalized: {reason}"
        )
        if intent is None:
            return
        try:
            intent.status = ClaimStatusEnum.reconcile
            intent.error_message = reason
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.critical(f"[claim] could not flag intent {intent_id} for reconciliation: {e}")

    # ----------------- 恢复 -----------------
    def _open_intent(self, wallet):
        return (
            ClaimIntent.query
            .filter(ClaimIntent.wallet_address == wallet, ClaimIntent.status.in_(OPEN_STATUSES))
            .order_by(ClaimIntent.created_at.desc())
            .first()
        )

    def resume(self, intent):
        """
        Drive an open intent to a terminal state. Returns the ClaimResult when it ends up
        finalized, None when it ends up failed (the caller may start a fresh attempt).
        Raises ClaimInProgress for a pending intent another worker may still own.
        Must run inside the wallet's lane.
        """
        status = intent.status

        if status == ClaimStatusEnum.pending:
            if not self._is_stale(intent):
                raise ClaimInProgress()
            if not self._fail(intent, "interrupted before a transfer was signed"):
                raise ClaimInProgress()
            return None

        if status == ClaimStatusEnum.submitted:
            # Validity first: once expired, the status answer below is final
            expired = self.disburser.is_expired(intent.blockhash)
            chain_status = self.disburser.transfer_status(intent.transfer_signature)

            if chain_status == "confirmed":
                logger.info(f"[claim] transfer {intent.transfer_signature} found confirmed on chain")
                self._mark_disbursed(intent)
                return self._finalize(intent, resumed=True)
            if chain_status == "failed":
                if not self._fail(intent, "transfer failed on chain"):
                    raise ClaimInProgress()
                return None
            if expired:
                if not self._fail(intent, "transfer never confirmed and its blockhash expired"):
                    raise ClaimInProgress()
                return None

            logger.info(f"[claim] re-broadcasting transfer {intent.transfer_signature}")
            try:
                self.disburser.submit(self._prepared_from(intent))
            except TransferFailed as e:
                outcome = self._settle_rejected(intent, e.message)
                if outcome == "failed":
                    return None
                if outcome == "unknown":
                    raise DisbursementFailed(f"Transfer outcome unknown, retry later: {e.message}", cause=e.code)
                return self._finalize(intent, resumed=True)
            self._mark_disbursed(intent)
            return self._finalize(intent, resumed=True)

        if status in (ClaimStatusEnum.disbursed, ClaimStatusEnum.reconcile):
            # Tokens are out; only the ledger side is retried, never the transfer
            return self._finalize(intent, resumed=True)

        return None

    def _is_stale(self, intent):
        touched = intent.updated_at or intent.created_at
        if touched is None:
            return True
        if touched.tzinfo is None:
            touched = touched.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - touched > timedelta(seconds=self.pending_stale_seconds)

    @staticmethod
    def _prepared_from(intent):
        return PreparedTransfer(
            recipient=intent.wallet_address,
            recipient_account="",
            amount=intent.amount,
            signature=intent.transfer_signature,
            blockhash=intent.blockhash,
            last_valid_block_height=intent.last_valid_block_height,
            raw_transaction=intent.raw_transaction,
        )

    def reconcile_open_intents(self, older_than_seconds=120):
        """Resume every open intent idle for longer than `older_than_seconds`."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        candidates = [
            (i.id, i.wallet_address)
            for i in ClaimIntent.query
            .filter(ClaimIntent.status.in_(OPEN_STATUSES), ClaimIntent.updated_at < cutoff)
            .order_by(ClaimIntent.created_at.asc())
            .all()
        ]

        report = []
        for intent_id, wallet in candidates:
            entry = {"id": intent_id, "wallet_address": wallet}
            try:
                with self.locks.lane(wallet):
                    intent = db.session.get(ClaimIntent, intent_id)
                    db.session.refresh(intent)
                    if intent.is_open:
                        self.resume(intent)
                    entry["status"] = intent.status.value
            except ClaimError as e:
                logger.error(f"[reconcile] intent {intent_id} for {wallet}: {e.code} {e.message}")
                entry["status"] = "error"
                entry["error"] = e.code
            report.append(entry)

        if report:
            logger.info(f"[reconcile] processed {len(report)} open intents")
        return report
