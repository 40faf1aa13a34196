"""Amount conversion and ScVal decoding for token values."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from stellar_sdk import Address, scval
from stellar_sdk import xdr as stellar_xdr

from .constants import STROOPS_PER_XLM, XLM_DECIMALS

logger = logging.getLogger(__name__)

AMOUNT_I128 = "i128"
AMOUNT_MUXED = "muxed"
AMOUNT_UNRECOGNIZED = "unrecognized"


def xlm_to_stroops(amount: str | int | Decimal) -> int:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"invalid XLM amount '{amount}'") from exc
    if not value.is_finite() or value <= 0:
        raise ValueError(f"XLM amount must be positive, got '{amount}'")
    stroops = int((value * STROOPS_PER_XLM).to_integral_value(rounding=ROUND_FLOOR))
    if stroops <= 0:
        raise ValueError(f"XLM amount '{amount}' is below one stroop")
    return stroops


def stroops_to_xlm(stroops: int) -> Decimal:
    return Decimal(stroops) / Decimal(STROOPS_PER_XLM)


def format_xlm(amount: Decimal) -> str:
    if amount == 0:
        return "0"
    text = f"{amount:.{XLM_DECIMALS}f}"
    return text.rstrip("0").rstrip(".")


@dataclass(frozen=True)
class AmountValue:
    kind: str
    amount: int

    @property
    def recognized(self) -> bool:
        return self.kind != AMOUNT_UNRECOGNIZED


def decode_amount(value: stellar_xdr.SCVal) -> AmountValue:
    """Decode a transfer event value.

    Cases: a bare ``i128``, or a map carrying ``amount: i128`` (muxed
    transfers, SEP-41). Anything else decodes as ``unrecognized`` with amount
    0; callers must not treat that zero as a real amount.
    """
    if value.type == stellar_xdr.SCValType.SCV_I128:
        return AmountValue(AMOUNT_I128, scval.from_int128(value))
    if value.type == stellar_xdr.SCValType.SCV_MAP and value.map is not None:
        for entry in value.map.sc_map:
            key = entry.key
            if key.type == stellar_xdr.SCValType.SCV_SYMBOL and scval.from_symbol(key) == "amount":
                if entry.val.type == stellar_xdr.SCValType.SCV_I128:
                    return AmountValue(AMOUNT_MUXED, scval.from_int128(entry.val))
                break
    return AmountValue(AMOUNT_UNRECOGNIZED, 0)


def decode_address(value: stellar_xdr.SCVal) -> str:
    if value.type != stellar_xdr.SCValType.SCV_ADDRESS or value.address is None:
        return "unknown"
    return Address.from_xdr_sc_address(value.address).address
