from __future__ import annotations

import unittest

from crm_sync.domain.entities import SourceEntity
from crm_sync.domain.records import SourceRecord
from crm_sync.errors import RecordValidationError
from crm_sync.mappers.accounts import AFFILIATE_MAPPING, CUSTOMER_MAPPING
from crm_sync.mappers.field_table import (
    EntityMapping,
    field,
    map_records,
    norm_digits,
    norm_phone,
    norm_str,
    to_number,
)

CUSTOMERS = SourceEntity("customer", "/c", "TRDRID", "THIRDPARTYREVNUM")


class TestNormalizers(unittest.TestCase):
    def test_norm_phone_keeps_valid_numbers(self) -> None:
        self.assertEqual(norm_phone("+30 (210) 123-4567"), "+302101234567")
        self.assertEqual(norm_phone("210.123.4567"), "2101234567")

    def test_norm_phone_drops_invalid_numbers(self) -> None:
        self.assertIsNone(norm_phone("12345"))
        self.assertIsNone(norm_phone("call me"))
        self.assertIsNone(norm_phone(None))

    def test_to_number(self) -> None:
        self.assertEqual(to_number("12"), 12)
        self.assertEqual(to_number(" 12.5 "), 12.5)
        self.assertIsNone(to_number("n/a"))
        self.assertIsNone(to_number(float("inf")))
        self.assertIsNone(to_number(True))

    def test_norm_digits_and_str(self) -> None:
        self.assertEqual(norm_digits("EL 094-123 456"), "094123456")
        self.assertIsNone(norm_digits("EL"))
        self.assertIsNone(norm_str("   "))


class TestEntityMapping(unittest.TestCase):
    def test_duplicate_target_rejected_at_construction(self) -> None:
        with self.assertRaises(ValueError):
            EntityMapping(
                name="bad",
                transforms=(field("A", norm_str, "X"), field("B", norm_str, "X")),
            )

    def test_required_field_must_be_produced(self) -> None:
        with self.assertRaises(ValueError):
            EntityMapping(name="bad", transforms=(field("A", norm_str, "X"),), required_fields=("Y",))

    def test_non_callable_transform_rejected(self) -> None:
        with self.assertRaises(ValueError):
            EntityMapping(name="bad", transforms=(field("A", "upper", "X"),))  # type: ignore[arg-type]

    def test_customer_mapping_with_name_fallback(self) -> None:
        payload = CUSTOMER_MAPPING.map_record(
            {
                "TRDRID": " c-1 ",
                "TRDRNAME": "  ",
                "COMPTITLE": "Acme SA",
                "TIN": "EL123456789",
                "TRDSPHONE1": "2101234567",
                "TRDSSTREET": "Main 1",
                "THIRDPARTYREVNUM": "15",
                "TURVOVER_LY": "1000.50",
                "BALANCE": None,
            }
        )

        self.assertEqual(payload["Trader_ID"], "C-1")
        self.assertEqual(payload["Account_Name"], "Acme SA")
        self.assertEqual(payload["Account_AFM"], "123456789")
        self.assertEqual(payload["Phone"], "2101234567")
        self.assertEqual(payload["Billing_Street"], "Main 1")
        self.assertEqual(payload["Shipping_Street"], "Main 1")
        self.assertEqual(payload["Rev_Number"], 15)
        self.assertEqual(payload["Turnover_LY"], 1000.5)
        self.assertNotIn("Credit_Limit", payload)

    def test_missing_mandatory_field_raises(self) -> None:
        with self.assertRaises(RecordValidationError) as ctx:
            AFFILIATE_MAPPING.map_record({"AFFILIATES_TRDRID": "A1"})
        self.assertEqual(ctx.exception.missing_fields, ("Account_Name",))

    def test_map_records_drops_and_counts(self) -> None:
        records = [
            SourceRecord.from_raw({"TRDRID": "C1", "TRDRNAME": "One"}, CUSTOMERS),
            SourceRecord.from_raw({"TRDRID": "C2"}, CUSTOMERS),
            SourceRecord.from_raw({"TRDRNAME": "Nameless"}, CUSTOMERS),
        ]

        outcome = map_records(records, CUSTOMER_MAPPING)

        self.assertEqual([item.payload["Trader_ID"] for item in outcome.records], ["C1"])
        self.assertEqual(outcome.dropped, 2)
        self.assertEqual(outcome.missing_counts, {"Account_Name": 1, "Trader_ID": 1})
        self.assertIs(outcome.records[0].source, records[0])


if __name__ == "__main__":
    unittest.main()
