"""Tests for storage codecs."""

from datetime import datetime, timedelta, timezone

import pytest

from localdb.errors import SerializationError
from localdb.utils.serialization import (
    BLOB,
    BOOLEAN,
    INTEGER,
    REAL,
    TEXT,
    TIMESTAMP,
    datetime_to_epoch_ms,
    epoch_ms_to_datetime,
    utc_now,
)


class TestTimestamps:
    """Timestamps are stored as integer epoch milliseconds."""

    def test_epoch_is_zero(self):
        """Unix epoch maps to 0."""
        assert datetime_to_epoch_ms(datetime(1970, 1, 1, tzinfo=timezone.utc)) == 0

    def test_known_value(self):
        """2024-01-01T00:00:00.123Z maps to its epoch milliseconds."""
        value = datetime(2024, 1, 1, 0, 0, 0, 123000, tzinfo=timezone.utc)
        assert datetime_to_epoch_ms(value) == 1704067200123

    @pytest.mark.parametrize(
        "value",
        [
            datetime(1969, 12, 31, 23, 59, 59, 999000, tzinfo=timezone.utc),
            datetime(2000, 2, 29, 12, 30, 15, 1000, tzinfo=timezone.utc),
            datetime(9999, 12, 31, 23, 59, 59, 999000, tzinfo=timezone.utc),
            datetime(2024, 6, 1, 8, 0, tzinfo=timezone(timedelta(hours=-5))),
        ],
    )
    def test_reversible_at_millisecond_precision(self, value):
        """fromStorage(toStorage(x)) == x, including pre-epoch values."""
        assert epoch_ms_to_datetime(datetime_to_epoch_ms(value)) == value

    def test_decoded_value_is_utc(self):
        """Decoded timestamps carry the UTC timezone."""
        decoded = epoch_ms_to_datetime(1704067200123)
        assert decoded.tzinfo == timezone.utc

    def test_sub_millisecond_digits_truncated(self):
        """Microseconds below 1 ms are dropped on write."""
        value = datetime(2024, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc)
        assert epoch_ms_to_datetime(datetime_to_epoch_ms(value)) == value.replace(
            microsecond=123000
        )

    def test_naive_datetime_rejected(self):
        """Naive datetimes are ambiguous and rejected."""
        with pytest.raises(SerializationError, match="naive"):
            datetime_to_epoch_ms(datetime(2024, 1, 1), "users.created_at")

    def test_non_integer_storage_rejected(self):
        """Text in a timestamp column can't be reconstructed."""
        with pytest.raises(SerializationError) as exc_info:
            epoch_ms_to_datetime("2024-01-01", "users.created_at")
        assert exc_info.value.field == "users.created_at"

    def test_out_of_range_rejected(self):
        """Values beyond datetime's range raise SerializationError."""
        with pytest.raises(SerializationError, match="out of range"):
            epoch_ms_to_datetime(10**18)

    def test_utc_now_has_millisecond_precision(self):
        """utc_now() round-trips exactly."""
        now = utc_now()
        assert now.microsecond % 1000 == 0
        assert TIMESTAMP.from_storage(TIMESTAMP.to_storage(now, "t"), "t") == now


class TestCodecs:
    """Tests for scalar codecs."""

    @pytest.mark.parametrize(
        "codec,value",
        [
            (INTEGER, 42),
            (INTEGER, -(2**63)),
            (TEXT, "héllo"),
            (REAL, 3.25),
            (BLOB, b"\x00\xffdata"),
            (BOOLEAN, True),
            (BOOLEAN, False),
        ],
    )
    def test_reversible(self, codec, value):
        """Every codec round-trips its values."""
        assert codec.from_storage(codec.to_storage(value, "f"), "f") == value

    def test_boolean_stored_as_integer(self):
        assert BOOLEAN.to_storage(True, "f") == 1
        assert BOOLEAN.to_storage(False, "f") == 0

    def test_boolean_rejects_other_integers(self):
        """Only 0 and 1 decode to booleans."""
        with pytest.raises(SerializationError):
            BOOLEAN.from_storage(2, "posts.published")

    def test_integer_rejects_bool(self):
        """bool is not accepted where an integer is declared."""
        with pytest.raises(SerializationError, match="boolean"):
            INTEGER.to_storage(True, "users.age")

    def test_text_rejects_wrong_type(self):
        with pytest.raises(SerializationError, match="expected str"):
            TEXT.from_storage(123, "users.name")

    def test_real_accepts_integers(self):
        """Integers are widened to floats."""
        assert REAL.to_storage(3, "f") == 3.0
        assert isinstance(REAL.to_storage(3, "f"), float)

    def test_blob_accepts_bytearray(self):
        assert BLOB.to_storage(bytearray(b"ab"), "f") == b"ab"

    def test_required_rejects_none(self):
        """Non-optional codecs reject None both ways."""
        with pytest.raises(SerializationError, match="required"):
            TEXT.to_storage(None, "users.email")
        with pytest.raises(SerializationError, match="NULL"):
            TEXT.from_storage(None, "users.email")

    def test_optional_passes_none(self):
        codec = INTEGER.optional()
        assert codec.to_storage(None, "users.age") is None
        assert codec.from_storage(None, "users.age") is None
        assert codec.to_storage(7, "users.age") == 7
