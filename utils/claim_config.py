# utils/claim_config.py
import json
import threading
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from utils.chain_client import ChainClient
from utils.claim_service import ClaimOrchestrator
from utils.fee_ledger import FeeLedger
from utils.fee_scanner import FeePaymentScanner
from utils.token_disburser import TokenDisburser
from utils.wallet_locks import LocalWalletLocks, RedisWalletLocks


def _as_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ClaimSettings:
    rpc_url: str
    token_mint: str
    keypair_path: str
    treasury_address: Optional[str] = None
    required_fee_lamports: int = 6000   # 0.000006 SOL
    reward_amount: int = 1000           # smallest token units
    token_decimals: int = 6
    fee_scan_limit: int = 50
    points_threshold: int = 1000
    rpc_timeout: float = 10
    simulate_before_send: bool = True
    lane_timeout: int = 120
    lane_blocking_timeout: int = 30

    @classmethod
    def from_config(cls, config):
        missing = [k for k in ("SOLANA_RPC_URL", "TOKEN_MINT", "AIR_DROP_WALLET_PATH") if not config.get(k)]
        if missing:
            raise RuntimeError(f"Missing {', '.join(missing)} configuration")

        return cls(
            rpc_url=config["SOLANA_RPC_URL"],
            token_mint=config["TOKEN_MINT"],
            keypair_path=config["AIR_DROP_WALLET_PATH"],
            treasury_address=config.get("TREASURY_ADDRESS") or None,
            required_fee_lamports=int(config.get("REQUIRED_FEE_LAMPORTS", 6000)),
            reward_amount=int(config.get("REWARD_AMOUNT", 1000)),
            token_decimals=int(config.get("TOKEN_DECIMALS", 6)),
            fee_scan_limit=int(config.get("FEE_SCAN_LIMIT", 50)),
            points_threshold=int(config.get("CLAIM_POINTS_THRESHOLD", 1000)),
            rpc_timeout=float(config.get("RPC_TIMEOUT", 10)),
            simulate_before_send=_as_bool(config.get("SIMULATE_BEFORE_SEND", True)),
            lane_timeout=int(config.get("CLAIM_LANE_TIMEOUT", 120)),
            lane_blocking_timeout=int(config.get("CLAIM_LANE_WAIT", 30)),
        )


def load_keypair(path) -> Keypair:
    """Solana CLI keypair file: JSON array of 64 bytes."""
    try:
        with open(path, 'r') as f:
            secret = json.load(f)
        return Keypair.from_bytes(bytes(secret))
    except (OSError, ValueError, TypeError) as e:
        raise RuntimeError(f"Failed to load wallet keypair from {path}: {e}")


def build_claim_service(settings: ClaimSettings, redis_conn=None, chain=None) -> ClaimOrchestrator:
    treasury = load_keypair(settings.keypair_path)
    try:
        mint = Pubkey.from_string(settings.token_mint)
        treasury_address = Pubkey.from_string(settings.treasury_address) if settings.treasury_address \
            else treasury.pubkey()
    except ValueError as e:
        raise RuntimeError(f"Invalid mint or treasury address: {e}")

    chain = chain or ChainClient(settings.rpc_url, timeout=settings.rpc_timeout)

    if redis_conn is not None:
        locks = RedisWalletLocks(redis_conn, timeout=settings.lane_timeout,
                                 blocking_timeout=settings.lane_blocking_timeout)
    else:
        locks = LocalWalletLocks(blocking_timeout=settings.lane_blocking_timeout)

    return ClaimOrchestrator(
        scanner=FeePaymentScanner(chain, treasury_address, settings.required_fee_lamports,
                                  scan_limit=settings.fee_scan_limit),
        fee_ledger=FeeLedger(),
        disburser=TokenDisburser(chain, treasury, mint, settings.token_decimals,
                                 simulate=settings.simulate_before_send),
        wallet_locks=locks,
        points_threshold=settings.points_threshold,
        reward_amount=settings.reward_amount,
        pending_stale_seconds=settings.lane_timeout,
    )


_service_lock = threading.Lock()


def get_claim_service() -> ClaimOrchestrator:
    """One orchestrator per app, so every request shares the same wallet lanes."""
    service = current_app.extensions.get('claim_service')
    if service is not None:
        return service

    with _service_lock:
        service = current_app.extensions.get('claim_service')
        if service is None:
            from extensions import redis_conn
            service = build_claim_service(ClaimSettings.from_config(current_app.config), redis_conn=redis_conn)
            current_app.extensions['claim_service'] = service
    return service
