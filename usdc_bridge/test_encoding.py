#!/usr/bin/env python3
"""
Amount and parameter encoding tests
"""

import pytest

from usdc_bridge import errors
from usdc_bridge.encoding import (
    ANY_CALLER,
    address_to_bytes32,
    check_fee,
    compute_max_fee,
    format_usdc_amount,
    parse_usdc_amount,
)


class TestParseAmount:

    @pytest.mark.parametrize("amount,units", [
        ("1", 1_000_000),
        ("10.5", 10_500_000),
        ("0.000001", 1),
        ("100.000000", 100_000_000),
        (" 2.25 ", 2_250_000),
    ])
    def test_valid(self, amount, units):
        assert parse_usdc_amount(amount) == units

    @pytest.mark.parametrize("amount", ["", "abc", "-1", "1.0000001", "1e6", "0", "0.000000", ".5"])
    def test_invalid(self, amount):
        with pytest.raises(errors.ValidationError):
            parse_usdc_amount(amount)

    @pytest.mark.parametrize("amount", ["١٠", "１", "1.٥", "१०"])
    def test_non_ascii_digits_rejected(self, amount):
        with pytest.raises(errors.ValidationError):
            parse_usdc_amount(amount)

    def test_format(self):
        assert format_usdc_amount(1_500_000) == "1.500000"
        assert format_usdc_amount(1) == "0.000001"


class TestMaxFee:

    def test_one_percent(self):
        assert compute_max_fee(100_000_000) == 1_000_000

    def test_floor(self):
        assert compute_max_fee(5_000) == 1_000
        assert compute_max_fee(50_000) == 1_000

    def test_floor_wins_for_tiny_amounts(self):
        assert compute_max_fee(500) == 1_000

    def test_fee_must_stay_below_amount(self):
        check_fee(1_001, 1_000)
        with pytest.raises(errors.ValidationError):
            check_fee(1_000, 1_000)
        with pytest.raises(errors.ValidationError):
            check_fee(500, compute_max_fee(500))

    def test_custom_floor(self):
        assert compute_max_fee(10_000, min_fee_units=2_000) == 2_000


class TestAddressToBytes32:

    def test_left_pads_address(self):
        address = "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"
        word = address_to_bytes32(address)

        assert len(word) == 66
        assert word.startswith("0x" + "0" * 24)
        assert word[-40:] == address[2:].lower()

    def test_case_insensitive(self):
        address = "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"
        assert address_to_bytes32(address.lower()) == address_to_bytes32(address)

    @pytest.mark.parametrize("address", ["", "0x1234", "not-an-address", None])
    def test_invalid(self, address):
        with pytest.raises(errors.ValidationError):
            address_to_bytes32(address)

    def test_any_caller_is_zero_word(self):
        assert ANY_CALLER == "0x" + "0" * 64
