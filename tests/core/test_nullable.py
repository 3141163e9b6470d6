"""Tests for the nullable column wrappers."""

import pytest

from rekord_fixer.core.nullable import NullInt64, NullString


class TestNullString:
    def test_null(self):
        value = NullString.scan(None)
        assert not value.valid
        assert value.value_or_none() is None
        assert str(value) == ""

    def test_empty_string_is_valid(self):
        """An empty string is a value, not NULL."""
        value = NullString.scan("")
        assert value.valid
        assert value.value_or_none() == ""

    def test_bytes_and_numbers(self):
        assert NullString.scan(b"2020-01-01").value == "2020-01-01"
        assert NullString.scan(5).value == "5"

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            NullString.scan(object())

    def test_of(self):
        assert NullString.of(None) == NullString()
        assert NullString.of("x") == NullString("x", True)


class TestNullInt64:
    def test_null(self):
        value = NullInt64.scan(None)
        assert not value.valid
        assert value.value_or_none() is None

    def test_zero_is_valid(self):
        """Zero is a value, not NULL."""
        value = NullInt64.scan(0)
        assert value.valid
        assert value.value_or_none() == 0

    @pytest.mark.parametrize("raw, expected", [("12", 12), (" 7 ", 7), ("12.0", 12), (3.9, 3)])
    def test_numeric_conversion(self, raw, expected):
        assert NullInt64.scan(raw) == NullInt64(expected, True)

    def test_empty_string_is_null(self):
        assert not NullInt64.scan("").valid

    def test_non_numeric_string(self):
        with pytest.raises(ValueError):
            NullInt64.scan("abc")

    def test_str(self):
        assert str(NullInt64.of(4)) == "4"
        assert str(NullInt64()) == ""
