from decimal import Decimal

import pytest

from calldata import (
    APPROVE_SELECTOR,
    DEPOSIT_FOR_SELECTOR,
    MAX_UINT256,
    Approve,
    Deposit,
    Operation,
    build,
    encode_address,
    encode_amount,
    parse_selector,
    to_base_units,
)
from errors import InvalidAddress, InvalidAmount
from tests.conftest import make_record

SPENDER = "0x62dDf301B21970e7Cc12c34cAAc9CE9bC975c0a9"


class TestEncodeAmount:
    def test_scales_by_decimals(self):
        assert to_base_units(Decimal("1.5"), 6) == 1_500_000
        assert encode_amount(1.5, 6) == format(1_500_000, "064x")

    def test_truncates_extra_precision(self):
        assert to_base_units("0.1234567", 6) == 123_456

    def test_unlimited(self):
        assert to_base_units("unlimited", 6) == MAX_UINT256
        assert encode_amount("max", 18) == "f" * 64

    @pytest.mark.parametrize("amount", [0, -3, "0", "abc", "", "NaN", "Infinity", "0.0000001"])
    def test_rejects_invalid(self, amount):
        with pytest.raises(InvalidAmount):
            encode_amount(amount, 6)

    def test_large_amount_is_exact(self):
        amount = "123456789012345678901234567891"
        assert to_base_units(amount, 6) == 123456789012345678901234567891 * 10**6
        assert to_base_units(amount + ".9999999", 6) == 123456789012345678901234567891999999

    def test_rejects_overflow(self):
        with pytest.raises(InvalidAmount):
            to_base_units(MAX_UINT256, 6)


class TestEncodeAddress:
    def test_left_zero_extended(self):
        word = encode_address(SPENDER)
        assert len(word) == 64
        assert word == "000000000000000000000000" + SPENDER[2:].lower()

    def test_unprefixed_address_keeps_every_digit(self):
        word = encode_address(SPENDER[2:].lower())
        assert word == encode_address(SPENDER)
        assert word == "0" * 24 + SPENDER[2:].lower()

    def test_deposit_to_unprefixed_recipient(self):
        payload = build(Deposit(amount="1", recipient=SPENDER[2:].lower()))
        assert payload.args[1] == bytes.fromhex("0" * 24 + SPENDER[2:].lower())

    @pytest.mark.parametrize("address", ["0x1234", "not an address", "0x" + "g" * 40])
    def test_rejects_invalid(self, address):
        with pytest.raises(InvalidAddress):
            encode_address(address)


class TestBuild:
    def test_approve_unlimited_matches_known_calldata(self):
        payload = build(Approve(spender=SPENDER, amount="unlimited"))
        assert payload.to_hex() == (
            "0x095ea7b3"
            "00000000000000000000000062ddf301b21970e7cc12c34caac9ce9bc975c0a9"
            "ffffffffffffffffffffffffffffffffffffffffffffffffffffffffffffffff"
        )

    def test_deterministic(self):
        first = build(Approve(spender=SPENDER, amount="unlimited"))
        second = build(Approve(spender=SPENDER, amount="unlimited"))
        assert first == second
        assert first.data == second.data

    def test_layout(self):
        payload = build(Approve(spender=SPENDER, amount="unlimited"))
        assert payload.data[:4] == bytes.fromhex("095ea7b3")
        assert len(payload.data) == 4 + 32 * 2

    def test_deposit_single_argument(self):
        payload = build(Deposit(amount="25"))
        assert payload.to_hex() == "0xb6b55f25" + format(25_000_000, "064x")
        assert len(payload.data) == 4 + 32

    def test_deposit_with_recipient_puts_amount_first(self):
        payload = build(Deposit(amount="2", recipient=SPENDER))
        assert payload.selector == parse_selector(DEPOSIT_FOR_SELECTOR)
        assert payload.args[0] == (2_000_000).to_bytes(32, "big")
        assert payload.args[1].hex() == encode_address(SPENDER)

    def test_custom_selector(self):
        payload = build(Approve(spender=SPENDER, amount=1), selector="0xdeadbeef")
        assert payload.selector == b"\xde\xad\xbe\xef"

    def test_invalid_selector(self):
        with pytest.raises(ValueError):
            parse_selector("0x1234")


class TestOperation:
    def test_approve_ignores_record_amount(self):
        operation = Operation(
            name="approve", kind="approve", contract_address=SPENDER,
            method_selector=APPROVE_SELECTOR, spender=SPENDER,
        )
        payload = operation.call_for(make_record(0))
        assert payload.args[1] == MAX_UINT256.to_bytes(32, "big")

    def test_deposit_to_holder(self):
        operation = Operation(
            name="stable-deposit", kind="deposit", contract_address=SPENDER,
            method_selector=DEPOSIT_FOR_SELECTOR, pay_to_holder=True,
        )
        record = make_record(3, amount="1.5")
        payload = operation.call_for(record)
        assert payload.args[0] == (1_500_000).to_bytes(32, "big")
        assert payload.args[1].hex() == encode_address(record.address)

    def test_deposit_without_amount(self):
        operation = Operation(
            name="deposit", kind="deposit", contract_address=SPENDER, method_selector="0xb6b55f25",
        )
        with pytest.raises(InvalidAmount):
            operation.call_for(make_record(0))

    def test_approve_requires_spender(self):
        with pytest.raises(ValueError):
            Operation(name="x", kind="approve", contract_address=SPENDER, method_selector=APPROVE_SELECTOR)
