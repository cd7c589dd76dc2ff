from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from utils.chain_client import ChainClient
from utils.errors import ChainRejected, ChainUnavailable
from tests.conftest import new_wallet

SIG = str(Signature.default())


@pytest.fixture
def rpc():
    return MagicMock()


@pytest.fixture
def chain(rpc):
    return ChainClient("http://localhost:8899", timeout=1, client=rpc)


def test_transport_errors_are_unavailable(chain, rpc):
    rpc.get_signatures_for_address.side_effect = httpx.ConnectError("connection refused")
    with pytest.raises(ChainUnavailable) as exc:
        chain.get_signatures_for_address(new_wallet(), 10)
    assert exc.value.retryable is True


def test_node_errors_are_rejections(chain, rpc):
    rpc.get_account_info.side_effect = RPCException("invalid param")
    with pytest.raises(ChainRejected):
        chain.get_account_info(new_wallet())


def test_signatures_come_back_as_strings(chain, rpc):
    rpc.get_signatures_for_address.return_value = SimpleNamespace(
        value=[SimpleNamespace(signature=Signature.default())]
    )
    assert chain.get_signatures_for_address(new_wallet(), 10) == [SIG]


@pytest.mark.parametrize("status, expected", [
    (None, None),
    (SimpleNamespace(err="boom", confirmation_status=TransactionConfirmationStatus.Finalized), "failed"),
    (SimpleNamespace(err=None, confirmation_status=TransactionConfirmationStatus.Processed), None),
    (SimpleNamespace(err=None, confirmation_status=TransactionConfirmationStatus.Confirmed), "confirmed"),
])
def test_signature_status(chain, rpc, status, expected):
    rpc.get_signature_statuses.return_value = SimpleNamespace(value=[status])
    assert chain.get_signature_status(SIG) == expected


def test_confirmation_timeout_is_unavailable(chain, rpc):
    rpc.confirm_transaction.side_effect = UnconfirmedTxError("not confirmed")
    with pytest.raises(ChainUnavailable):
        chain.confirm_transaction(SIG, 100)


def test_failed_confirmation_is_rejected(chain, rpc):
    rpc.confirm_transaction.return_value = SimpleNamespace(value=[SimpleNamespace(err="InstructionError")])
    with pytest.raises(ChainRejected):
        chain.confirm_transaction(SIG, 100)


def test_block_height_expiry_is_not_a_rejection(chain, rpc):
    # The confirmation loop can give up on block height after the transfer landed
    rpc.confirm_transaction.side_effect = TransactionExpiredBlockheightExceededError("block height exceeded")
    with pytest.raises(ChainUnavailable):
        chain.confirm_transaction(SIG, 100)
