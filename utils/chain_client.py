# utils/chain_client.py
import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from utils.errors import ChainRejected, ChainUnavailable
from utils.log import get_logger

logger = get_logger("chain_client")

TRANSPORT_ERRORS = (SolanaRpcException, httpx.HTTPError)


def _as_pubkey(address):
    return address if isinstance(address, Pubkey) else Pubkey.from_string(str(address))


def _as_signature(signature):
    return signature if isinstance(signature, Signature) else Signature.from_string(str(signature))


class ChainClient:
    """
    Injectable capability over the Solana JSON-RPC API.

    Every call is made at "confirmed" commitment and bounded by `timeout` seconds.
    Transport failures and timeouts surface as ChainUnavailable; a node that answers
    with an error surfaces as ChainRejected.
    """

    def __init__(self, rpc_url, timeout=10, client=None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.rpc = client or Client(rpc_url, commitment=Confirmed, timeout=timeout)

    def _call(self, what, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except TRANSPORT_ERRORS as e:
            logger.error(f"[chain] {what} failed: {e}")
            raise ChainUnavailable(f"{what} failed: {e}")
        except RPCException as e:
            logger.error(f"[chain] {what} rejected: {e}")
            raise ChainRejected(f"{what} rejected: {e}")

    # ----------------- 读 -----------------
    def get_signatures_for_address(self, address, limit):
        """Most recent confirmed signatures touching `address`, newest first."""
        resp = self._call(
            "get_signatures_for_address",
            self.rpc.get_signatures_for_address,
            _as_pubkey(address), limit=limit, commitment=Confirmed,
        )
        return [str(info.signature) for info in resp.value]

    def get_transaction(self, signature):
        resp = self._call(
            "get_transaction",
            self.rpc.get_transaction,
            _as_signature(signature),
            encoding="jsonParsed",
            commitment=Confirmed,
            max_supported_transaction_version=0,
        )
        return resp.value

    def get_account_info(self, address):
        resp = self._call("get_account_info", self.rpc.get_account_info, _as_pubkey(address), commitment=Confirmed)
        return resp.value

    def get_latest_blockhash(self):
        """(blockhash, last_valid_block_height). Never cache this across transactions."""
        resp = self._call("get_latest_blockhash", self.rpc.get_latest_blockhash, commitment=Confirmed)
        return resp.value.blockhash, resp.value.last_valid_block_height

    def is_blockhash_valid(self, blockhash):
        resp = self._call("is_blockhash_valid", self.rpc.is_blockhash_valid, blockhash, commitment=Confirmed)
        return bool(resp.value)

    def get_signature_status(self, signature):
        """'confirmed', 'failed', or None when the cluster has not (yet) seen it at confirmed level."""
        resp = self._call(
            "get_signature_statuses",
            self.rpc.get_signature_statuses,
            [_as_signature(signature)],
            search_transaction_history=True,
        )
        status = resp.value[0] if resp.value else None
        if status is None:
            return None
        if status.err is not None:
            return "failed"
        if status.confirmation_status in (TransactionConfirmationStatus.Confirmed,
                                          TransactionConfirmationStatus.Finalized):
            return "confirmed"
        return None

    # ----------------- 写 -----------------
    def simulate_transaction(self, tx):
        """Returns the simulation error, or None when the simulation succeeded."""
        resp = self._call("simulate_transaction", self.rpc.simulate_transaction, tx, commitment=Confirmed)
        return resp.value.err

    def send_raw_transaction(self, raw_tx):
        resp = self._call(
            "send_raw_transaction",
            self.rpc.send_raw_transaction,
            bytes(raw_tx),
            opts=TxOpts(skip_confirmation=True, preflight_commitment=Confirmed),
        )
        return str(resp.value)

    def confirm_transaction(self, signature, last_valid_block_height=None):
        try:
            resp = self._call(
                "confirm_transaction",
                self.rpc.confirm_transaction,
                _as_signature(signature),
                commitment=Confirmed,
                last_valid_block_height=last_valid_block_height,
            )
        except UnconfirmedTxError as e:
            raise ChainUnavailable(f"transaction {signature} not confirmed in time: {e}")
        except TransactionExpiredBlockheightExceededError as e:
            # Raised on block height alone; the transaction may still have landed
            raise ChainUnavailable(f"transaction {signature} outcome unknown at block height expiry: {e}")

        status = resp.value[0] if resp.value else None
        if status is not None and status.err is not None:
            raise ChainRejected(f"transaction {signature} failed on chain: {status.err}")
        return str(signature)

    def send_and_confirm(self, tx, last_valid_block_height=None):
        signature = self.send_raw_transaction(bytes(tx))
        return self.confirm_transaction(signature, last_valid_block_height)
