import json
import unittest
from datetime import datetime, timezone
from io import StringIO

from ffbox.errors import NilRecordError, UnsupportedFieldError, UnsupportedFormatError
from ffbox.formatter import ReceiptFormatter, extract_receipt_fields, render_receipt_detail
from ffbox.models import Receipt, ReceiptMetadatum, User

RECEIPT_PAYLOAD = {
    "id": 42,
    "status": "confirmed",
    "created_at": "2024-05-01T09:30:00+00:00",
    "origin": "web",
    "mime_type": "application/pdf",
    "description": "Taxi",
    "receipt_metadatum": {"partner_name": "ACME", "issue_date": "2024-04-30", "amount": 1000},
    "user": {"id": 3, "email": "taro@example.com", "display_name": "Taro"},
}


def local_time(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


class DetailTests(unittest.TestCase):
    def test_detail_layout(self) -> None:
        receipt = Receipt.from_dict(RECEIPT_PAYLOAD)
        out = render_receipt_detail(receipt)
        created = local_time(datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc))

        self.assertTrue(out.startswith("ID:              42\n"))
        self.assertIn("Status:          confirmed\n", out)
        self.assertIn(f"Created:         {created}\n", out)
        self.assertIn("Description:     Taxi\n", out)
        self.assertIn("Document Type:   (none)\n", out)
        self.assertIn("\nReceipt Information\n", out)
        self.assertIn("  Partner:       ACME\n", out)
        self.assertIn("  Amount:        ¥1,000\n", out)
        self.assertIn("\nUser\n  Name:          Taro\n  Email:         taro@example.com\n  ID:            3\n", out)

    def test_detail_placeholders(self) -> None:
        receipt = Receipt.from_dict(
            {
                **RECEIPT_PAYLOAD,
                "description": None,
                "receipt_metadatum": {"amount": -500},
                "user": {"id": 3, "email": "taro@example.com"},
            }
        )
        out = render_receipt_detail(receipt)

        self.assertIn("Description:     (none)\n", out)
        self.assertIn("  Partner:       (none)\n", out)
        self.assertIn("  Amount:        -¥500\n", out)
        self.assertIn("  Issue Date:    (none)\n", out)
        self.assertIn("  Name:          (none)\n", out)

    def test_detail_without_metadatum_skips_section(self) -> None:
        payload = {k: v for k, v in RECEIPT_PAYLOAD.items() if k != "receipt_metadatum"}
        out = render_receipt_detail(Receipt.from_dict(payload))
        self.assertNotIn("Receipt Information", out)
        self.assertIn("User\n", out)

    def test_nil_receipt(self) -> None:
        buf = StringIO()
        formatter = ReceiptFormatter(buf)
        with self.assertRaises(NilRecordError):
            formatter.write_detail(None)
        with self.assertRaises(NilRecordError):
            formatter.write_detail_json(None)
        self.assertEqual(buf.getvalue(), "")

    def test_detail_json_is_whole_record(self) -> None:
        buf = StringIO()
        ReceiptFormatter(buf).write_receipt(Receipt.from_dict(RECEIPT_PAYLOAD), "json")
        self.assertEqual(json.loads(buf.getvalue()), RECEIPT_PAYLOAD)

    def test_unknown_format(self) -> None:
        with self.assertRaises(UnsupportedFormatError):
            ReceiptFormatter(StringIO()).write_receipt(Receipt.from_dict(RECEIPT_PAYLOAD), "yaml")


class TableTests(unittest.TestCase):
    def test_empty_list_writes_nothing(self) -> None:
        buf = StringIO()
        ReceiptFormatter(buf).write_table([], [])
        self.assertEqual(buf.getvalue(), "")

    def test_default_columns(self) -> None:
        buf = StringIO()
        ReceiptFormatter(buf).write_table([Receipt.from_dict(RECEIPT_PAYLOAD)])
        out = buf.getvalue()

        header_line = next(line for line in out.splitlines() if "ID" in line)
        positions = [
            header_line.index(h)
            for h in ("ID", "Status", "Created At", "Description", "Partner", "Amount", "Issue Date")
        ]
        self.assertEqual(positions, sorted(positions))
        self.assertIn("ACME", out)
        self.assertIn("¥1,000", out)

    def test_selected_columns_and_alignment(self) -> None:
        receipts = [
            Receipt.from_dict(RECEIPT_PAYLOAD),
            Receipt.from_dict({**RECEIPT_PAYLOAD, "id": 43, "receipt_metadatum": {"amount": 1234567}}),
            Receipt.from_dict({**RECEIPT_PAYLOAD, "id": 44, "receipt_metadatum": None}),
        ]
        buf = StringIO()
        ReceiptFormatter(buf).write_table(receipts, ["receipt_metadatum.amount", "id", "partner"])
        out = buf.getvalue()

        header_line = next(line for line in out.splitlines() if "Amount" in line)
        self.assertLess(header_line.index("Amount"), header_line.index("ID"))
        self.assertLess(header_line.index("ID"), header_line.index("Partner"))
        self.assertIn("    ¥1,000 ", out)
        self.assertIn("¥1,234,567", out)
        self.assertNotIn("Status", out)
        self.assertEqual(out.count("(none)"), 3)

    def test_unknown_field_writes_nothing(self) -> None:
        buf = StringIO()
        with self.assertRaises(UnsupportedFieldError):
            ReceiptFormatter(buf).write_table([Receipt.from_dict(RECEIPT_PAYLOAD)], ["id", "bogus"])
        self.assertEqual(buf.getvalue(), "")


class JsonLinesTests(unittest.TestCase):
    def test_selected_fields_exact(self) -> None:
        buf = StringIO()
        ReceiptFormatter(buf).write_json_lines([Receipt.from_dict(RECEIPT_PAYLOAD)], ["id", "amount"])
        self.assertEqual(buf.getvalue(), '{"id":42,"amount":1000}\n')

    def test_alternate_spellings_share_keys(self) -> None:
        buf = StringIO()
        ReceiptFormatter(buf).write_json_lines(
            [Receipt.from_dict(RECEIPT_PAYLOAD)], ["id", "partner", "user_display_name"]
        )
        self.assertEqual(buf.getvalue(), '{"id":42,"partner_name":"ACME","user_name":"Taro"}\n')

    def test_repeated_names_written_once(self) -> None:
        receipt = Receipt.from_dict(RECEIPT_PAYLOAD)
        self.assertEqual(
            extract_receipt_fields(receipt, ["id", "partner", "partner_name", "id"]),
            {"id": 42, "partner_name": "ACME"},
        )
        buf = StringIO()
        ReceiptFormatter(buf).write_table([receipt], ["id", "id"])
        header_line = next(line for line in buf.getvalue().splitlines() if "ID" in line)
        self.assertEqual(header_line.count("ID"), 2)

    def test_one_object_per_line(self) -> None:
        receipts = [Receipt.from_dict(RECEIPT_PAYLOAD), Receipt.from_dict({**RECEIPT_PAYLOAD, "id": 43})]
        buf = StringIO()
        ReceiptFormatter(buf).write_list(receipts, ["id", "status"], "json")
        lines = buf.getvalue().splitlines()
        self.assertEqual([json.loads(line) for line in lines], [
            {"id": 42, "status": "confirmed"},
            {"id": 43, "status": "confirmed"},
        ])

    def test_no_selection_emits_whole_record(self) -> None:
        buf = StringIO()
        ReceiptFormatter(buf).write_json_lines([Receipt.from_dict(RECEIPT_PAYLOAD)], [])
        self.assertEqual(json.loads(buf.getvalue()), RECEIPT_PAYLOAD)

    def test_absent_values_are_null(self) -> None:
        receipt = Receipt.from_dict({**RECEIPT_PAYLOAD, "receipt_metadatum": None})
        self.assertEqual(
            extract_receipt_fields(receipt, ["id", "partner_name"]),
            {"id": 42, "partner_name": None},
        )

    def test_unknown_field_writes_nothing(self) -> None:
        buf = StringIO()
        with self.assertRaises(UnsupportedFieldError):
            ReceiptFormatter(buf).write_list([Receipt.from_dict(RECEIPT_PAYLOAD)], ["nope"], "json")
        self.assertEqual(buf.getvalue(), "")

    def test_unknown_format(self) -> None:
        with self.assertRaises(UnsupportedFormatError):
            ReceiptFormatter(StringIO()).write_list([], [], "csv")


class ModelTests(unittest.TestCase):
    def test_to_dict_omits_absent_optionals(self) -> None:
        receipt = Receipt(
            id=1,
            status="unconfirmed",
            created_at="2024-01-01T00:00:00Z",
            origin="api",
            mime_type="image/png",
            user=User(id=2, email="a@example.com"),
            receipt_metadatum=ReceiptMetadatum(amount=5),
        )
        payload = receipt.to_dict()
        self.assertNotIn("description", payload)
        self.assertEqual(payload["receipt_metadatum"], {"amount": 5})
        self.assertEqual(payload["user"], {"email": "a@example.com", "id": 2})


if __name__ == "__main__":
    unittest.main()
