import re

from edupay.ledger.receipts import _base36, generate_receipt_number


def test_receipt_number_format() -> None:
    receipt = generate_receipt_number("RCP")

    assert re.fullmatch(r"RCP-[0-9A-Z]+-[0-9A-Z]{4}", receipt)


def test_receipt_prefix_is_configurable() -> None:
    assert generate_receipt_number("KLA").startswith("KLA-")


def test_base36() -> None:
    assert _base36(0) == "0"
    assert _base36(35) == "Z"
    assert _base36(36) == "10"
