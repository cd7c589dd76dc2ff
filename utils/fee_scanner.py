"""
utils/fee_scanner.py

Detects whether a wallet has paid the claim fee to the treasury.

"Paid the fee" is an on-chain economic fact: a confirmed transaction in which the
treasury's lamport balance rose by at least `required_fee` AND the claimant wallet is
one of the transaction's accounts. No memo or program data is required.

Only the most recent `scan_limit` treasury transactions are inspected. A fee buried under
that many newer treasury transactions is no longer discoverable.
"""
from typing import List, Optional

from utils.errors import InvalidWallet
from utils.log import get_logger
from utils.wallet import parse_wallet

logger = get_logger("fee_scanner")

DEFAULT_SCAN_LIMIT = 50


def extract_account_keys(message, meta=None) -> List[str]:
    """
    Flat list of base58 account keys for a transaction message.

    jsonParsed messages carry ParsedAccount entries (with `.pubkey`), already including
    lookup-table addresses; raw json messages carry bare keys, so addresses loaded from
    lookup tables are appended in balance-array order (writable, then readonly).
    """
    keys = []
    parsed = False
    for entry in message.account_keys:
        pubkey = getattr(entry, "pubkey", None)
        if pubkey is not None:
            parsed = True
            keys.append(str(pubkey))
        else:
            keys.append(str(entry))

    loaded = getattr(meta, "loaded_addresses", None) if meta is not None else None
    if not parsed and loaded is not None:
        keys.extend(str(k) for k in (loaded.writable or []))
        keys.extend(str(k) for k in (loaded.readonly or []))
    return keys


class FeePaymentScanner:

    def __init__(self, chain, treasury_address, required_fee, scan_limit=DEFAULT_SCAN_LIMIT):
        self.chain = chain
        self.treasury_address = str(treasury_address)
        self.required_fee = int(required_fee)
        self.scan_limit = int(scan_limit)

    def find_qualifying_fee(self, wallet) -> Optional[str]:
        """
        Signature of the most recent treasury transaction that qualifies as `wallet`'s fee
        payment, or None. Raises InvalidWallet for a malformed address and ChainUnavailable
        when the history or a transaction cannot be fetched.
        """
        wallet = str(parse_wallet(wallet, InvalidWallet))

        signatures = self.chain.get_signatures_for_address(self.treasury_address, self.scan_limit)
        logger.info(f"[fee_scan] {len(signatures)} treasury transactions to inspect for {wallet}")

        for signature in signatures:
            tx = self.chain.get_transaction(signature)
            if self._qualifies(tx, wallet):
                logger.info(f"[fee_scan] fee payment {signature} found for {wallet}")
                return signature

        logger.info(f"[fee_scan] no qualifying fee payment for {wallet} in last {len(signatures)} transactions")
        return None

    def _qualifies(self, tx, wallet) -> bool:
        if tx is None:
            return False
        envelope = tx.transaction
        meta = envelope.meta
        # Pruned or too old: nothing to measure, skip rather than fail
        if meta is None:
            return False
        if getattr(meta, "err", None) is not None:
            return False

        message = getattr(envelope.transaction, "message", None)
        if message is None:
            return False

        keys = extract_account_keys(message, meta)
        try:
            idx = keys.index(self.treasury_address)
        except ValueError:
            return False

        if idx >= len(meta.pre_balances) or idx >= len(meta.post_balances):
            return False

        delta = int(meta.post_balances[idx]) - int(meta.pre_balances[idx])
        if delta < self.required_fee:
            return False

        return wallet in keys
