"""
The closed set of native (primitive-like) types and the scoring ladder used to
rank them against each other.

Native types are matched by score rather than by hierarchy distance. Fixed-width
integers and floats are the numpy scalar types; Python's own `int` sits in the
64-bit signed slot of the ladder, `float` is the double slot, and `Char` is the
character slot next to `str`.
"""
import functools
import math
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Iterable, Optional

import numpy as np

from methodhub.hub_datatypes import Char

SIGNED_TYPES = frozenset({int, np.int8, np.int16, np.int32, np.int64})
UNSIGNED_TYPES = frozenset({np.uint8, np.uint16, np.uint32, np.uint64})
INTEGER_TYPES = SIGNED_TYPES | UNSIGNED_TYPES
DOUBLE_TYPES = frozenset({float, np.float64})
FLOAT_TYPES = DOUBLE_TYPES | {np.float16, np.float32}
FRACTIONAL_TYPES = FLOAT_TYPES | {Decimal}
NUMERIC_TYPES = INTEGER_TYPES | FRACTIONAL_TYPES
BOOL_TYPES = frozenset({bool, np.bool_})
ALPHANUMERIC_TYPES = frozenset({str, Char})

NATIVE_TYPES = NUMERIC_TYPES | BOOL_TYPES | ALPHANUMERIC_TYPES


def _range_of(t) -> tuple:
    if t is int:
        info = np.iinfo(np.int64)
        return int(info.min), int(info.max)
    if t in INTEGER_TYPES:
        info = np.iinfo(t)
        return int(info.min), int(info.max)
    if t is float:
        info = np.finfo(np.float64)
    elif t in FLOAT_TYPES:
        info = np.finfo(t)
    else:
        # Decimal has no fixed range here.
        return -math.inf, math.inf
    return float(info.min), float(info.max)


MAX_VALUES = {t: _range_of(t)[1] for t in NUMERIC_TYPES}

# Narrowings the ladder still accepts for signed targets (score 4) and for
# unsigned targets (score 2) even though the input range does not fit.
_SIGNED_WIDER = {
    int: {np.uint64},
    np.int64: {np.uint64},
    np.int32: {int, np.int64, np.uint64},
    np.int16: {np.int32, int, np.int64, np.uint64},
    np.int8: {np.int16, np.int32, int, np.int64, np.uint64},
}
_UNSIGNED_WIDER = {
    np.uint32: {np.uint64},
    np.uint16: {np.uint32, np.uint64},
    np.uint8: {np.uint16, np.uint32, np.uint64},
}

EXACT_SCORE = 6
FALLBACK_SCORE = 1


def is_native(t: Any) -> bool:
    try:
        return t in NATIVE_TYPES
    except TypeError:
        return False


def zero_value(t: Any) -> Any:
    """The default value of `t`: the native's empty value, else None."""
    if is_native(t):
        return t()
    return None


# =================================================================
# Conversion
# =================================================================

def convert(value: Any, target: type) -> Any:
    """Converts a native value to another native type.

    Raises TypeError, ValueError or an ArithmeticError when the conversion is
    not possible (wrong kind, unparsable text, out of range).
    """
    if isinstance(value, target):
        return value
    src = type(value)
    if src not in NATIVE_TYPES or target not in NATIVE_TYPES:
        raise TypeError(f"Cannot convert {src.__name__} to {target.__name__}")

    if target is str:
        return str(value)

    if target is Char:
        if src in ALPHANUMERIC_TYPES:
            return Char(value)
        if src in INTEGER_TYPES:
            return Char(int(value))
        raise TypeError(f"Cannot convert {src.__name__} to Char")

    if target in BOOL_TYPES:
        if src is Char:
            raise TypeError("Cannot convert Char to bool")
        if src is str:
            text = value.strip().lower()
            if text not in ("true", "false"):
                raise ValueError(f"Not a boolean: {value!r}")
            return target(text == "true")
        return target(bool(value))

    if target in INTEGER_TYPES:
        if src is Char:
            number = ord(value)
        elif src is str:
            number = int(value.strip())
        elif src is Decimal:
            number = int(value.to_integral_value(rounding=ROUND_HALF_EVEN))
        elif src in FLOAT_TYPES:
            # round() on a Python float is half-to-even
            number = int(round(float(value)))
        else:
            number = int(value)
        if target is int:
            return number
        lo, hi = _range_of(target)
        if number < lo or number > hi:
            raise OverflowError(f"{number} is out of range for {target.__name__}")
        return target(number)

    if target in FLOAT_TYPES:
        if src is Char:
            raise TypeError("Cannot convert Char to a floating point type")
        number = float(value)
        if target is float:
            return number
        lo, hi = _range_of(target)
        if math.isfinite(number) and (number < lo or number > hi):
            raise OverflowError(f"{number} is out of range for {target.__name__}")
        return target(number)

    if target is Decimal:
        if src is Char:
            raise TypeError("Cannot convert Char to Decimal")
        if src is str:
            return Decimal(value.strip())
        if src in FLOAT_TYPES:
            return Decimal(repr(float(value)))
        return Decimal(int(value))

    raise TypeError(f"Cannot convert {src.__name__} to {target.__name__}")


@functools.lru_cache(maxsize=1024)
def is_convertible(from_type: type, to_type: type) -> bool:
    """True if the zero value of `from_type` converts to `to_type`."""
    if not (is_native(from_type) and is_native(to_type)):
        return False
    try:
        convert(zero_value(from_type), to_type)
    except (TypeError, ValueError, ArithmeticError):
        return False
    return True


def is_assignable_or_convertible(from_type: type, to_type: type) -> bool:
    try:
        if issubclass(from_type, to_type):
            return True
    except TypeError:
        return False
    return is_convertible(from_type, to_type)


# =================================================================
# Scoring
# =================================================================

def _unsigned_score(input_type, target_type) -> int:
    if target_type in (np.uint64, np.uint32):
        # the widest unsigned slots take any unsigned input
        return 4
    if target_type is np.uint16:
        if input_type is np.uint32 or MAX_VALUES[input_type] <= MAX_VALUES[np.uint16]:
            return 3
    if target_type is np.uint8:
        if input_type in (np.uint16, np.uint32) or MAX_VALUES[input_type] <= MAX_VALUES[np.uint8]:
            return 3
    return 0


def _integer_score(input_type, target_type) -> int:
    if target_type in SIGNED_TYPES:
        if input_type in _SIGNED_WIDER.get(target_type, ()) or MAX_VALUES[input_type] <= MAX_VALUES[target_type]:
            return 4
        return 0
    if input_type in UNSIGNED_TYPES:
        score = _unsigned_score(input_type, target_type)
        if score:
            return score
    if input_type in _UNSIGNED_WIDER.get(target_type, ()) or MAX_VALUES[input_type] <= MAX_VALUES[target_type]:
        return 2
    return 0


def _numeric_score(input_type, target_type) -> int:
    if target_type in DOUBLE_TYPES:
        # double is preferred over the other fractional types
        return 4
    if target_type in INTEGER_TYPES and input_type in INTEGER_TYPES:
        return _integer_score(input_type, target_type)
    if target_type is Decimal:
        if input_type not in FRACTIONAL_TYPES or MAX_VALUES[input_type] <= MAX_VALUES[Decimal]:
            return 3
    return 0


def _alphanumeric_score(target_type) -> int:
    if target_type is str:
        return 4
    if target_type is Char:
        return 3
    return 0


def score(input_type: type, target_type: type) -> int:
    """Scores how well `target_type` receives a value of `input_type` (0 to 6)."""
    result = 0
    if target_type is input_type:
        result = EXACT_SCORE
    elif target_type in NUMERIC_TYPES and input_type in NUMERIC_TYPES:
        result = _numeric_score(input_type, target_type)
    elif target_type in ALPHANUMERIC_TYPES and input_type in ALPHANUMERIC_TYPES:
        result = _alphanumeric_score(target_type)

    if result == 0 and is_assignable_or_convertible(input_type, target_type):
        result = FALLBACK_SCORE
    return result


def best_native_match(input_type: type, candidates: Iterable[type]) -> Optional[type]:
    """Returns the candidate with the strictly highest score; first seen wins ties."""
    best = None
    best_score = 0
    for candidate in candidates:
        if candidate is None:
            continue
        s = score(input_type, candidate)
        if s <= best_score:
            continue
        best = candidate
        best_score = s
    return best
