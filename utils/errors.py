"""
Claim error taxonomy.

Every rejection the claim pipeline can produce maps to a stable code so clients can
tell "try again later" apart from "you are not eligible" and "this fee was already spent".
"""


class ClaimError(Exception):
    code = "CLAIM_ERROR"
    http_status = 400
    retryable = False
    default_message = "Claim failed"

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        data = {
            'success': False,
            'code': self.code,
            'message': self.message,
            'retryable': self.retryable,
        }
        if self.details.get('cause'):
            data['cause'] = self.details['cause']
        return data


# ----------------- 链 / 网络 -----------------
class ChainUnavailable(ClaimError):
    code = "CHAIN_UNAVAILABLE"
    http_status = 503
    retryable = True
    default_message = "Chain RPC unavailable, try again later"


class ChainRejected(ClaimError):
    """The node answered but refused the request (preflight failure, bad instruction...)."""
    code = "CHAIN_REJECTED"
    http_status = 502
    default_message = "Chain rejected the transaction"


# ----------------- 输入 -----------------
class InvalidWallet(ClaimError):
    code = "INVALID_WALLET"
    default_message = "Invalid wallet address"


class InvalidRecipient(ClaimError):
    code = "INVALID_RECIPIENT"
    default_message = "Invalid recipient wallet"


class WalletNotFound(ClaimError):
    code = "WALLET_NOT_FOUND"
    http_status = 404
    default_message = "Wallet not registered, connect wallet first"


# ----------------- 业务规则 -----------------
class InsufficientPoints(ClaimError):
    code = "INSUFFICIENT_POINTS"
    default_message = "Not enough points"


class AlreadyClaimed(ClaimError):
    code = "ALREADY_CLAIMED"
    http_status = 409
    default_message = "Airdrop already claimed"


class FeeNotDetected(ClaimError):
    code = "FEE_NOT_DETECTED"
    http_status = 402
    default_message = "Fee not detected"


class FeeAlreadyUsed(ClaimError):
    code = "FEE_ALREADY_USED"
    http_status = 409
    default_message = "This fee payment was already used for a claim"


class ClaimInProgress(ClaimError):
    code = "CLAIM_IN_PROGRESS"
    http_status = 409
    retryable = True
    default_message = "Another claim for this wallet is in progress"


# ----------------- 链上执行 -----------------
class AccountProvisioningFailed(ClaimError):
    code = "ACCOUNT_PROVISIONING_FAILED"
    http_status = 502
    default_message = "Failed to provision the recipient token account"


class TransferFailed(ClaimError):
    code = "TRANSFER_FAILED"
    http_status = 502
    default_message = "Token transfer failed"


class DisbursementFailed(ClaimError):
    code = "DISBURSEMENT_FAILED"
    http_status = 502
    retryable = True
    default_message = "Disbursement failed, the fee stays reserved for a retry"


# ----------------- 内部 -----------------
class InconsistentLedgerState(ClaimError):
    code = "INCONSISTENT_LEDGER_STATE"
    http_status = 500
    default_message = "Tokens were sent but the ledger could not be updated; flagged for reconciliation"
