"""
Canonical parameter encoding for signed ledger operations.

Every operation digest is ``keccak256(abi.encode(caller, *params, nonce, chainId))``
with the ABI types listed in ``OPERATION_LAYOUTS``. Two operations carry a fixed
string tag after their parameters. The coordinator and the ledger both build
digests through this module, so a signature can only ever verify for the exact
operation kind, caller, parameters, nonce and chain it was produced for.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from eth_abi import encode
from eth_abi.exceptions import EncodingError
from eth_utils import is_address, keccak, to_checksum_address

from bitmor_dca.core.errors import ValidationError

NONCE_BYTES = 32
COMPLETE_TAG = "COMPLETE"
THRESHOLD_TAG = "BITMOR_THRESHOLD"


class OperationKind(str, Enum):
    CREATE_PLAN = "create_plan"
    PAYMENT = "payment"
    PREPAY_DAYS = "prepay_days"
    EARLY_WITHDRAW = "early_withdraw"
    COMPLETE_PLAN = "complete_plan"
    DISTRIBUTE_REWARDS = "distribute_rewards"
    SWEEP_DUST = "sweep_dust"
    TRIGGER_THRESHOLD = "trigger_threshold"


@dataclass(frozen=True)
class OperationLayout:
    params: Tuple[str, ...]
    tag: Optional[str] = None

    @property
    def abi_types(self) -> List[str]:
        types = ["address", *self.params]
        if self.tag is not None:
            types.append("string")
        return types + ["bytes32", "uint256"]


OPERATION_LAYOUTS: Dict[OperationKind, OperationLayout] = {
    # target, periodic amount, time period days, withdrawal delay days, cadence, bitmor enabled
    OperationKind.CREATE_PLAN: OperationLayout(("uint128", "uint128", "uint32", "uint32", "uint8", "bool")),
    # principal, credited amount, uses prepaid
    OperationKind.PAYMENT: OperationLayout(("uint128", "uint128", "bool")),
    # principal, days
    OperationKind.PREPAY_DAYS: OperationLayout(("uint128", "uint32")),
    # gross amount, penalty, days remaining
    OperationKind.EARLY_WITHDRAW: OperationLayout(("uint128", "uint128", "uint32")),
    OperationKind.COMPLETE_PLAN: OperationLayout((), tag=COMPLETE_TAG),
    # accounts, reward amounts, yield boosts
    OperationKind.DISTRIBUTE_REWARDS: OperationLayout(("address[]", "uint128[]", "uint128[]")),
    # token amounts, tokens, expected target amount
    OperationKind.SWEEP_DUST: OperationLayout(("uint128[]", "address[]", "uint128")),
    # accumulated amount
    OperationKind.TRIGGER_THRESHOLD: OperationLayout(("uint128",), tag=THRESHOLD_TAG),
}


def normalize_address(value: str) -> str:
    if not isinstance(value, str) or not is_address(value):
        raise ValidationError(f"Invalid address: {value!r}")
    return to_checksum_address(value)


def normalize_nonce(nonce: Union[bytes, str]) -> bytes:
    """Accept raw bytes or 0x-hex; always return 32 bytes."""
    if isinstance(nonce, str):
        text = nonce[2:] if nonce.startswith("0x") else nonce
        try:
            nonce = bytes.fromhex(text)
        except ValueError as exc:
            raise ValidationError("Nonce must be hex") from exc
    if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != NONCE_BYTES:
        raise ValidationError("Nonce must be 32 bytes")
    return bytes(nonce)


def _normalize_value(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return normalize_address(value)
    if abi_type == "address[]":
        return [normalize_address(item) for item in value]
    if abi_type.endswith("[]"):
        return [int(item) if not isinstance(item, bool) else item for item in value]
    if abi_type.startswith("uint") and not isinstance(value, bool):
        return int(value)
    return value


def encode_operation(kind: OperationKind, caller: str, params: Sequence[Any], nonce: Union[bytes, str], chain_id: int) -> bytes:
    """ABI-encode an operation tuple.

    Raises ValidationError when a value does not fit its declared width.
    """
    kind = OperationKind(kind)
    layout = OPERATION_LAYOUTS[kind]
    if len(params) != len(layout.params):
        raise ValidationError(f"{kind.value} takes {len(layout.params)} parameters, got {len(params)}")

    values: List[Any] = [normalize_address(caller)]
    values.extend(_normalize_value(t, v) for t, v in zip(layout.params, params))
    if layout.tag is not None:
        values.append(layout.tag)
    values.extend([normalize_nonce(nonce), int(chain_id)])

    try:
        return encode(layout.abi_types, values)
    except (EncodingError, TypeError, OverflowError) as exc:
        raise ValidationError(f"Parameter out of range for {kind.value}") from exc


def operation_digest(kind: OperationKind, caller: str, params: Sequence[Any], nonce: Union[bytes, str], chain_id: int) -> bytes:
    return keccak(encode_operation(kind, caller, params, nonce, chain_id))


def fits_uint(value: Any, bits: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < 2**bits
