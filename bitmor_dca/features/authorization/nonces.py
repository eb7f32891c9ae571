"""Single-use authorization nonces."""
import secrets
import time

from eth_utils import keccak

from bitmor_dca.core import idempotency


def generate_nonce() -> bytes:
    """keccak256 of the wall clock in nanoseconds plus 16 random bytes."""
    return keccak(text=f"{time.time_ns()}{secrets.token_hex(16)}")


def issue_nonce(operation: str, max_attempts: int = 5) -> bytes:
    """Generate a nonce the registry has never issued before."""
    for _ in range(max_attempts):
        nonce = generate_nonce()
        if not idempotency.check_and_set("0x" + nonce.hex(), operation):
            return nonce
    raise RuntimeError("could not issue a fresh nonce")
