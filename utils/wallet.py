from solders.pubkey import Pubkey

from utils.errors import InvalidWallet


def normalize_wallet(address):
    return (address or "").strip()


def is_valid_wallet(address) -> bool:
    """Base58 ed25519 public key, 32-44 chars."""
    if not address or len(address) < 32 or len(address) > 44:
        return False
    try:
        Pubkey.from_string(address)
        return True
    except ValueError:
        return False


def parse_wallet(address, error_cls=InvalidWallet) -> Pubkey:
    address = normalize_wallet(address)
    if not is_valid_wallet(address):
        raise error_cls(f"Invalid wallet address: {address or '<empty>'}")
    return Pubkey.from_string(address)
