"""
secp256k1 signing in the Ethereum signed-message convention.

A digest is never signed directly: it is first wrapped as
``keccak256("\\x19Ethereum Signed Message:\\n32" || digest)``. Signatures are
65 bytes ``r || s || v`` with ``v`` in {27, 28}.
"""
from __future__ import annotations

import threading
from typing import Union

from coincurve import PrivateKey, PublicKey
from eth_utils import keccak, to_checksum_address

from bitmor_dca.core.errors import ValidationError

ETH_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"
SIGNATURE_BYTES = 65


def eth_message_hash(digest: bytes) -> bytes:
    if len(digest) != 32:
        raise ValidationError("Digest must be 32 bytes")
    return keccak(ETH_MESSAGE_PREFIX + digest)


def _hex_to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise ValidationError("Expected hex string") from exc


def public_key_to_address(public_key: PublicKey) -> str:
    uncompressed = public_key.format(compressed=False)
    return to_checksum_address("0x" + keccak(uncompressed[1:])[-20:].hex())


def address_from_private_key(private_key: Union[str, bytes]) -> str:
    return public_key_to_address(PrivateKey(_hex_to_bytes(private_key)).public_key)


def recover_signer(digest: bytes, signature: Union[str, bytes]) -> str:
    """Address that produced ``signature`` over the prefixed ``digest``.

    Raises ValueError for anything that is not a well-formed signature.
    """
    raw = _hex_to_bytes(signature)
    if len(raw) != SIGNATURE_BYTES:
        raise ValueError("signature must be 65 bytes")
    v = raw[64]
    if v >= 27:
        v -= 27
    if v not in (0, 1):
        raise ValueError("invalid recovery id")
    public_key = PublicKey.from_signature_and_message(raw[:64] + bytes([v]), eth_message_hash(digest), hasher=None)
    return public_key_to_address(public_key)


class MessageSigner:
    """Holds the trusted signing key. Signing is serialized."""

    def __init__(self, private_key: Union[str, bytes]):
        try:
            self._key = PrivateKey(_hex_to_bytes(private_key))
        except ValueError as exc:
            raise ValidationError("Invalid signer private key") from exc
        self._lock = threading.Lock()
        self.address = public_key_to_address(self._key.public_key)

    def sign_digest(self, digest: bytes) -> bytes:
        message = eth_message_hash(digest)
        with self._lock:
            recoverable = self._key.sign_recoverable(message, hasher=None)
        return recoverable[:64] + bytes([recoverable[64] + 27])

    def __repr__(self) -> str:
        return f"MessageSigner(address={self.address})"
