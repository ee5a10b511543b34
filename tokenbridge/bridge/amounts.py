"""
Amount Normalization

Converts integer magnitudes between ledger precisions. Everything here is
integer arithmetic: on-chain magnitudes (18-decimal tokens in particular)
exceed the exact-integer range of a double, so no value ever passes
through float.

Scaling down (e.g. 18 -> 9 decimals) truncates. The truncated remainder
cannot be represented on the destination ledger and is gone for good, so
callers must log it.
"""

from dataclasses import dataclass
from typing import Tuple

from ..constants import MAX_DECIMALS, VALID_AMOUNT_PATTERN
from ..exceptions import InvalidAmount


def _check_magnitude(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"amount must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"amount must be positive, got {amount}")


def _check_precision(precision) -> None:
    if isinstance(precision, bool) or not isinstance(precision, int):
        raise InvalidAmount(f"precision must be an integer, got {type(precision).__name__}")
    if precision < 0 or precision > MAX_DECIMALS:
        raise InvalidAmount(f"precision out of range: {precision}")


def normalize(amount: int, from_precision: int, to_precision: int) -> int:
    """
    Convert ``amount`` from ``from_precision`` decimals to ``to_precision``.

    Scaling up is exact; scaling down truncates toward zero.

    Raises:
        InvalidAmount: amount is not a positive integer, or a precision is invalid
    """
    _check_magnitude(amount)
    _check_precision(from_precision)
    _check_precision(to_precision)

    difference = from_precision - to_precision
    if difference > 0:
        return amount // (10 ** difference)
    if difference < 0:
        return amount * (10 ** -difference)
    return amount


def truncation_remainder(amount: int, from_precision: int, to_precision: int) -> int:
    """Part of ``amount`` (in source units) that ``normalize`` discards."""
    _check_magnitude(amount)
    _check_precision(from_precision)
    _check_precision(to_precision)

    difference = from_precision - to_precision
    if difference <= 0:
        return 0
    return amount % (10 ** difference)


def parse_amount(text) -> int:
    """
    Parse a wire amount: a positive base-10 integer string in smallest units.

    Signs, decimal points, exponents and whitespace padding are rejected
    rather than interpreted.
    """
    if isinstance(text, bool):
        raise InvalidAmount("amount must be a positive integer string")
    if isinstance(text, int):
        _check_magnitude(text)
        return text
    if not isinstance(text, str) or not VALID_AMOUNT_PATTERN.match(text):
        raise InvalidAmount(f"amount must be a positive integer string, got {text!r}")
    value = int(text)
    _check_magnitude(value)
    return value


@dataclass(frozen=True, order=False)
class AmountQuantity:
    """
    A raw integer magnitude paired with its precision (decimal places).

    Comparisons align precision by scaling the coarser side up, which is
    always exact.
    """
    raw: int
    precision: int

    def __post_init__(self):
        if isinstance(self.raw, bool) or not isinstance(self.raw, int):
            raise InvalidAmount(f"raw magnitude must be an integer, got {type(self.raw).__name__}")
        if self.raw < 0:
            raise InvalidAmount(f"raw magnitude must be non-negative, got {self.raw}")
        _check_precision(self.precision)

    def to_precision(self, precision: int) -> Tuple["AmountQuantity", int]:
        """
        Re-express at ``precision``.

        Returns:
            (converted quantity, truncated remainder in this quantity's units)
        """
        _check_precision(precision)
        if self.raw == 0:
            return AmountQuantity(0, precision), 0
        converted = normalize(self.raw, self.precision, precision)
        remainder = truncation_remainder(self.raw, self.precision, precision)
        return AmountQuantity(converted, precision), remainder

    def _aligned(self, other: "AmountQuantity") -> Tuple[int, int]:
        p = max(self.precision, other.precision)
        return (
            self.raw * 10 ** (p - self.precision),
            other.raw * 10 ** (p - other.precision),
        )

    def __eq__(self, other):
        if not isinstance(other, AmountQuantity):
            return NotImplemented
        a, b = self._aligned(other)
        return a == b

    def __lt__(self, other):
        if not isinstance(other, AmountQuantity):
            return NotImplemented
        a, b = self._aligned(other)
        return a < b

    def __le__(self, other):
        if not isinstance(other, AmountQuantity):
            return NotImplemented
        a, b = self._aligned(other)
        return a <= b

    def __hash__(self):
        # Equal quantities must hash equal regardless of precision
        raw, precision = self.raw, self.precision
        while precision > 0 and raw % 10 == 0:
            raw //= 10
            precision -= 1
        return hash((raw, precision))

    def __str__(self) -> str:
        if self.precision == 0:
            return str(self.raw)
        whole, frac = divmod(self.raw, 10 ** self.precision)
        frac_str = str(frac).rjust(self.precision, "0").rstrip("0")
        return f"{whole}.{frac_str}" if frac_str else str(whole)
