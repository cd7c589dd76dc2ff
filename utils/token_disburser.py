"""
utils/token_disburser.py

Sends the fixed SPL token reward from the treasury to a recipient wallet.

Disbursement is split in two so the caller can persist the signed transfer before it
leaves the process:

    prepared = disburser.prepare(wallet, amount)   # provisions the receiving account, signs the transfer
    ...persist prepared.signature / prepared.raw_transaction...
    disburser.submit(prepared)                     # broadcast + wait for confirmation

`disburse()` chains the two for callers that don't need the write-ahead step.
"""
from dataclasses import dataclass

from solders.hash import Hash
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from utils.errors import (
    AccountProvisioningFailed,
    ChainRejected,
    InvalidRecipient,
    TransferFailed,
)
from utils.log import get_logger
from utils.wallet import parse_wallet

logger = get_logger("token_disburser")


@dataclass
class PreparedTransfer:
    recipient: str
    recipient_account: str
    amount: int
    signature: str
    blockhash: str
    last_valid_block_height: int
    raw_transaction: bytes


class TokenDisburser:

    def __init__(self, chain, treasury_keypair, mint, decimals, simulate=True):
        self.chain = chain
        self.treasury = treasury_keypair
        self.mint = mint
        self.decimals = int(decimals)
        self.simulate = simulate

    @property
    def treasury_pubkey(self):
        return self.treasury.pubkey()

    @property
    def treasury_token_account(self):
        return get_associated_token_address(self.treasury_pubkey, self.mint)

    def receiving_account(self, owner):
        """Deterministic token account for (owner, mint); no network call."""
        return get_associated_token_address(owner, self.mint)

    # ----------------- 账户准备 -----------------
    def ensure_receiving_account(self, owner):
        """
        Make sure `owner` has a token account for the reward mint, creating it (paid by
        the treasury) when absent. Returns the account address.
        """
        account_address = self.receiving_account(owner)
        account = self.chain.get_account_info(account_address)
        if account is not None:
            self._check_owner(account, account_address)
            return account_address

        logger.info(f"[disburse] token account {account_address} not found for {owner}, creating it...")
        create_ix = create_associated_token_account(self.treasury_pubkey, owner, self.mint)

        blockhash, last_valid_block_height = self.chain.get_latest_blockhash()
        tx = Transaction.new_signed_with_payer([create_ix], self.treasury_pubkey, [self.treasury], blockhash)

        if self.simulate:
            err = self.chain.simulate_transaction(tx)
            if err is not None:
                logger.error(f"[disburse] token account creation simulation failed for {owner}: {err}")
                raise AccountProvisioningFailed(f"Account creation simulation failed: {err}")

        try:
            signature = self.chain.send_and_confirm(tx, last_valid_block_height)
        except ChainRejected as e:
            # Someone else may have created it in the meantime
            account = self.chain.get_account_info(account_address)
            if account is None:
                raise AccountProvisioningFailed(f"Failed to create token account: {e.message}")
            self._check_owner(account, account_address)
            return account_address

        logger.info(f"[disburse] token account {account_address} created for {owner}, tx {signature}")
        return account_address

    @staticmethod
    def _check_owner(account, account_address):
        if account.owner != TOKEN_PROGRAM_ID:
            logger.error(f"[disburse] {account_address} is owned by {account.owner}, expected {TOKEN_PROGRAM_ID}")
            raise AccountProvisioningFailed(
                f"Receiving account {account_address} is owned by an unexpected program"
            )

    # ----------------- 转账 -----------------
    def prepare(self, to_wallet, amount) -> PreparedTransfer:
        """Provision the receiving account, then build and sign the transfer without sending it."""
        owner = parse_wallet(to_wallet, InvalidRecipient)
        recipient_account = self.ensure_receiving_account(owner)

        transfer_ix = transfer_checked(
            TransferCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                source=self.treasury_token_account,
                mint=self.mint,
                dest=recipient_account,
                owner=self.treasury_pubkey,
                amount=int(amount),
                decimals=self.decimals,
            )
        )

        # Fresh blockhash per transaction; the one used for provisioning may already be stale
        blockhash, last_valid_block_height = self.chain.get_latest_blockhash()
        tx = Transaction.new_signed_with_payer([transfer_ix], self.treasury_pubkey, [self.treasury], blockhash)

        prepared = PreparedTransfer(
            recipient=str(owner),
            recipient_account=str(recipient_account),
            amount=int(amount),
            signature=str(tx.signatures[0]),
            blockhash=str(blockhash),
            last_valid_block_height=int(last_valid_block_height),
            raw_transaction=bytes(tx),
        )
        logger.info(f"[disburse] transfer of {amount} to {owner} signed: {prepared.signature}")
        return prepared

    def submit(self, prepared: PreparedTransfer) -> str:
        """
        Broadcast the signed bytes and wait for confirmation. Re-submitting the same
        prepared transfer cannot pay twice: it is the same signature.
        """
        try:
            self.chain.send_raw_transaction(prepared.raw_transaction)
            self.chain.confirm_transaction(prepared.signature, prepared.last_valid_block_height)
        except ChainRejected as e:
            logger.error(f"[disburse] transfer {prepared.signature} to {prepared.recipient} failed: {e.message}")
            raise TransferFailed(f"Transfer failed: {e.message}")

        logger.info(f"✅ Tokens sent: {prepared.amount} to {prepared.recipient}, tx {prepared.signature}")
        return prepared.signature

    def disburse(self, to_wallet, amount) -> str:
        return self.submit(self.prepare(to_wallet, amount))

    # ----------------- 恢复 -----------------
    def transfer_status(self, signature):
        return self.chain.get_signature_status(signature)

    def is_expired(self, blockhash) -> bool:
        """Once its blockhash is no longer valid a signed transfer can never land."""
        return not self.chain.is_blockhash_valid(Hash.from_string(blockhash))
