"""Field codecs between Python values and SQLite storage scalars.

SQLite stores INTEGER, TEXT, REAL and BLOB. Everything else is mapped onto
one of those:
- bool      -> INTEGER 0/1
- datetime  -> INTEGER epoch milliseconds (UTC)

Timestamps are exact at millisecond precision: for any timezone-aware
datetime ``x`` with whole milliseconds, ``from_storage(to_storage(x)) == x``.
Sub-millisecond digits are truncated on write; naive datetimes are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from localdb.errors import SerializationError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def utc_now() -> datetime:
    """Current UTC time truncated to millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def datetime_to_epoch_ms(value: datetime, field: str = "timestamp") -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    if not isinstance(value, datetime):
        raise SerializationError(field, f"expected datetime, got {type(value).__name__}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise SerializationError(field, "naive datetime has no timezone")
    # Integer division keeps the mapping exact (no float rounding)
    return (value - EPOCH) // _ONE_MS


def epoch_ms_to_datetime(value: Any, field: str = "timestamp") -> datetime:
    """Convert stored epoch milliseconds back to a UTC datetime."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise SerializationError(
            field, f"expected integer epoch milliseconds, got {type(value).__name__}"
        )
    try:
        return EPOCH + value * _ONE_MS
    except OverflowError as e:
        raise SerializationError(field, f"timestamp out of range: {value}") from e


# =============================================================================
# CODECS
# =============================================================================


@dataclass(frozen=True)
class Codec:
    """Encoder/decoder pair for one storage type."""

    name: str
    encode: Callable[[Any, str], Any]
    decode: Callable[[Any, str], Any]
    nullable: bool = False

    def to_storage(self, value: Any, field: str) -> Any:
        if value is None:
            if self.nullable:
                return None
            raise SerializationError(field, "value is required")
        return self.encode(value, field)

    def from_storage(self, value: Any, field: str) -> Any:
        if value is None:
            if self.nullable:
                return None
            raise SerializationError(field, "stored value is NULL")
        return self.decode(value, field)

    def optional(self) -> Codec:
        """Same codec accepting None."""
        return Codec(self.name, self.encode, self.decode, nullable=True)


def _expect(*types: type) -> Callable[[Any, str], Any]:
    def check(value: Any, field: str) -> Any:
        # bool is an int subclass; only accept it where explicitly asked for
        if isinstance(value, bool) and bool not in types:
            raise SerializationError(field, "unexpected boolean")
        if not isinstance(value, types):
            expected = "/".join(t.__name__ for t in types)
            raise SerializationError(
                field, f"expected {expected}, got {type(value).__name__}"
            )
        return value

    return check


def _encode_real(value: Any, field: str) -> float:
    return float(_expect(int, float)(value, field))


def _encode_blob(value: Any, field: str) -> bytes:
    return bytes(_expect(bytes, bytearray, memoryview)(value, field))


def _encode_bool(value: Any, field: str) -> int:
    return 1 if _expect(bool)(value, field) else 0


def _decode_bool(value: Any, field: str) -> bool:
    if value not in (0, 1) or isinstance(value, (float, str)):
        raise SerializationError(field, f"expected 0 or 1, got {value!r}")
    return bool(value)


INTEGER = Codec("integer", _expect(int), _expect(int))
TEXT = Codec("text", _expect(str), _expect(str))
REAL = Codec("real", _encode_real, _encode_real)
BLOB = Codec("blob", _encode_blob, _encode_blob)
BOOLEAN = Codec("boolean", _encode_bool, _decode_bool)
TIMESTAMP = Codec("timestamp", datetime_to_epoch_ms, epoch_ms_to_datetime)
