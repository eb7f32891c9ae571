from typing import Protocol, Union

from bitmor_dca.features.authorization.signing import recover_signer


class SignatureVerifier(Protocol):
    def recover(self, digest: bytes, signature: Union[str, bytes]) -> str:
        """Address that signed ``digest``; raise ValueError if malformed."""
        ...


class EcdsaVerifier:
    """secp256k1 recovery over the Ethereum signed-message prefix."""

    def recover(self, digest: bytes, signature: Union[str, bytes]) -> str:
        return recover_signer(digest, signature)
