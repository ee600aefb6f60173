"""Tests for RFC 8785 canonicalization helpers."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID

import pytest

from herdledger.core.crypto.canonicalization import (
    CanonicalizationError,
    canonicalize_jcs_bytes,
    format_timestamp,
    sha256_hex_jcs,
)


class Species(Enum):
    CATTLE = "cattle"


def test_sha256_hex_jcs_is_order_invariant() -> None:
    left = {"b": 2, "a": {"y": 2, "x": 1}}
    right = {"a": {"x": 1, "y": 2}, "b": 2}
    assert sha256_hex_jcs(left) == sha256_hex_jcs(right)


def test_canonicalize_jcs_bytes_is_compact_and_sorted() -> None:
    assert canonicalize_jcs_bytes({"z": 1, "a": [1, 2]}) == b'{"a":[1,2],"z":1}'


class TestTimestamps:
    def test_utc_with_microseconds_and_z_suffix(self) -> None:
        value = datetime(2024, 3, 1, 8, 30, tzinfo=UTC)
        assert format_timestamp(value) == "2024-03-01T08:30:00.000000Z"

    def test_offset_is_normalized_to_utc(self) -> None:
        value = datetime(2024, 3, 1, 10, 30, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2024-03-01T08:30:00.000000Z"

    def test_naive_is_treated_as_utc(self) -> None:
        naive = datetime(2024, 3, 1, 8, 30, 0, 123456)
        aware = naive.replace(tzinfo=UTC)
        assert canonicalize_jcs_bytes({"t": naive}) == canonicalize_jcs_bytes({"t": aware})

    def test_date_is_iso(self) -> None:
        assert canonicalize_jcs_bytes({"d": date(2024, 3, 1)}) == b'{"d":"2024-03-01"}'


class TestNumbers:
    def test_integral_decimal_becomes_integer(self) -> None:
        assert canonicalize_jcs_bytes({"v": Decimal("5.00")}) == b'{"v":5}'

    def test_fractional_decimal_becomes_number(self) -> None:
        assert canonicalize_jcs_bytes({"v": Decimal("2.5")}) == b'{"v":2.5}'

    def test_integral_float_serializes_like_integer(self) -> None:
        assert canonicalize_jcs_bytes({"v": 5.0}) == canonicalize_jcs_bytes({"v": 5})

    def test_largest_safe_integral_float_becomes_integer(self) -> None:
        assert canonicalize_jcs_bytes({"v": float(2**53 - 1)}) == b'{"v":9007199254740991}'

    @pytest.mark.parametrize("value", [1e20, Decimal("1E+20")])
    def test_integral_values_beyond_safe_range_stay_numbers(self, value: object) -> None:
        assert canonicalize_jcs_bytes({"count": value}) == b'{"count":100000000000000000000}'

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), Decimal("NaN")])
    def test_non_finite_values_rejected(self, value: object) -> None:
        with pytest.raises(CanonicalizationError):
            canonicalize_jcs_bytes({"v": value})


class TestOtherTypes:
    def test_uuid_enum_and_bytes(self) -> None:
        payload = {
            "id": UUID("12345678-1234-5678-1234-567812345678"),
            "species": Species.CATTLE,
            "blob": b"\x00\x01",
        }
        assert canonicalize_jcs_bytes(payload) == (
            b'{"blob":"AAE=","id":"12345678-1234-5678-1234-567812345678","species":"cattle"}'
        )

    def test_tuple_becomes_list(self) -> None:
        assert canonicalize_jcs_bytes({"t": (1, "a")}) == b'{"t":[1,"a"]}'

    def test_set_is_sorted(self) -> None:
        assert canonicalize_jcs_bytes({"s": {3, 1, 2}}) == b'{"s":[1,2,3]}'

    def test_unsupported_type_raises(self) -> None:
        with pytest.raises(CanonicalizationError, match="Unsupported type"):
            canonicalize_jcs_bytes({"v": object()})

    def test_error_is_a_value_error(self) -> None:
        assert issubclass(CanonicalizationError, ValueError)
