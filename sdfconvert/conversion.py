"""
Fallible value conversions.

Each converter returns a ``Conversion``: either a converted value or a short
reason why the raw value was rejected. Row readers compose these into skip /
default decisions without relying on exception interception for expected
data-quality problems.
"""

import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

INT32_MIN, INT32_MAX = -2 ** 31, 2 ** 31 - 1
INT16_MIN, INT16_MAX = -2 ** 15, 2 ** 15 - 1


@dataclass(frozen=True)
class Conversion:
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any) -> "Conversion":
        return cls(True, value)

    @classmethod
    def failure(cls, error: str) -> "Conversion":
        return cls(False, None, error)


def _to_integer(value: Any, lo: int, hi: int, type_name: str) -> Conversion:
    if value is None:
        return Conversion.failure("value is null")
    if isinstance(value, bool):
        number = int(value)
    elif isinstance(value, int):
        number = value
    elif isinstance(value, (float, Decimal)):
        if isinstance(value, float) and not math.isfinite(value):
            return Conversion.failure(f"{value!r} is not a finite number")
        if isinstance(value, Decimal) and not value.is_finite():
            return Conversion.failure(f"{value!r} is not a finite number")
        # round half to even
        number = int(round(value))
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            return Conversion.failure(f"'{value}' is not a valid integer")
    else:
        return Conversion.failure(f"cannot convert {type(value).__name__} to {type_name}")

    if number < lo or number > hi:
        return Conversion.failure(f"value {number} was either too large or too small for {type_name}")
    return Conversion.success(number)


def to_int32(value: Any) -> Conversion:
    return _to_integer(value, INT32_MIN, INT32_MAX, "Int32")


def to_int16(value: Any) -> Conversion:
    return _to_integer(value, INT16_MIN, INT16_MAX, "Int16")


def to_local_datetime(value: Any) -> Conversion:
    """Accept datetime, date or an ISO-8601 string; returns a datetime."""
    if value is None:
        return Conversion.failure("value is null")
    if isinstance(value, datetime):
        return Conversion.success(value)
    if isinstance(value, date):
        return Conversion.success(datetime.combine(value, time()))
    if isinstance(value, str):
        try:
            return Conversion.success(datetime.fromisoformat(value.strip()))
        except ValueError:
            return Conversion.failure(f"'{value}' is not a valid date/time")
    return Conversion.failure(f"cannot convert {type(value).__name__} to DateTime")


def attach_local_offset(value: datetime) -> datetime:
    """
    Interpret a naive datetime as machine-local wall time and attach the UTC
    offset in force at that moment (DST-aware). Aware values are returned as is.
    """
    if value.tzinfo is not None and value.utcoffset() is not None:
        return value
    return value.astimezone()


def to_aware_datetime(value: datetime) -> Conversion:
    """
    ``attach_local_offset`` as a Conversion. Fails where the OS cannot resolve
    the offset, e.g. dates before 1970 on Windows.
    """
    try:
        return Conversion.success(attach_local_offset(value))
    except (OverflowError, ValueError, OSError) as e:
        return Conversion.failure(f"cannot determine UTC offset for {value.isoformat()}: {e}")


def to_scalar(value: Any) -> Conversion:
    """Normalise a raw column value to a scalar the SQL writer can render."""
    if value is None or isinstance(value, (bool, int, str, datetime, date, time)):
        return Conversion.success(value)
    if isinstance(value, (float, Decimal)):
        return Conversion.success(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Conversion.success(bytes(value))
    if isinstance(value, uuid.UUID):
        return Conversion.success(str(value))
    return Conversion.failure(f"unsupported value type {type(value).__name__}")
