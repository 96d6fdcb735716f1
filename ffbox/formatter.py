"""Terminal output for receipts: detail view, table and newline-delimited JSON."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, TextIO

from tabulate import tabulate

from ffbox.errors import NilRecordError, UnsupportedFormatError
from ffbox.fields import (
    RECEIPT_FIELDS,
    RECEIPT_JSON_KEYS,
    FieldDefinition,
    FieldRegistry,
    format_amount,
    format_datetime,
    format_string,
)
from ffbox.models import Receipt

OUTPUT_FORMATS = ("table", "json")
TABLE_FORMAT = "simple_outline"
DETAIL_SEPARATOR = "\n---\n"


def dump_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def render_receipt_detail(receipt: Optional[Receipt]) -> str:
    """Render the fixed detail report for one receipt, similar to ``gh pr view``."""
    if receipt is None:
        raise NilRecordError()

    created_at = format_datetime(receipt.created_at)
    lines = [
        f"ID:              {receipt.id}",
        f"Status:          {receipt.status}",
        f"Created:         {created_at}",
        f"Origin:          {receipt.origin}",
        f"MIME Type:       {receipt.mime_type}",
        f"Description:     {format_string(receipt.description)}",
        f"Document Type:   {format_string(receipt.document_type)}",
        f"Invoice Reg No:  {format_string(receipt.invoice_registration_number)}",
        f"Qualified:       {format_string(receipt.qualified_invoice)}",
    ]

    metadatum = receipt.receipt_metadatum
    if metadatum is not None:
        amount = format_amount(metadatum.amount) if metadatum.amount is not None else format_string(None)
        lines += [
            "",
            "Receipt Information",
            f"  Partner:       {format_string(metadatum.partner_name)}",
            f"  Amount:        {amount}",
            f"  Issue Date:    {format_string(metadatum.issue_date)}",
        ]

    lines += [
        "",
        "User",
        f"  Name:          {format_string(receipt.user.display_name)}",
        f"  Email:         {format_string(receipt.user.email)}",
        f"  ID:            {receipt.user.id}",
    ]
    return "\n".join(lines) + "\n"


def render_receipt_table(receipts: Sequence[Receipt], fields: Sequence[FieldDefinition]) -> str:
    if not receipts:
        return ""
    headers = [fd.header for fd in fields]
    rows = [[fd.render(receipt) for fd in fields] for receipt in receipts]
    table = tabulate(
        rows,
        headers=headers,
        tablefmt=TABLE_FORMAT,
        colalign=[fd.alignment for fd in fields],
        disable_numparse=True,
    )
    return table + "\n"


def extract_receipt_fields(
    receipt: Receipt,
    requested: Sequence[str],
    registry: FieldRegistry = RECEIPT_FIELDS,
) -> Dict[str, Any]:
    """Project a receipt onto the requested field names.

    With no requested names the whole record is returned. Otherwise the keys are
    the requested names, in order, and absent values are ``None``. ``partner``
    and ``user_display_name`` are keyed as ``partner_name`` and ``user_name``;
    names that end up with the same key are written once.
    """
    if not requested:
        return receipt.to_dict()
    definitions = registry.resolve(requested)
    return {
        RECEIPT_JSON_KEYS.get(name, name): fd.extract(receipt) for name, fd in zip(requested, definitions)
    }


class ReceiptFormatter:
    """Writes receipts to ``out`` using the given field registry.

    Every method renders its whole output before writing, so a failure never
    leaves a partial table or JSON object behind.
    """

    def __init__(self, out: TextIO, registry: FieldRegistry = RECEIPT_FIELDS) -> None:
        self.out = out
        self.registry = registry

    def write_detail(self, receipt: Optional[Receipt]) -> None:
        self.out.write(render_receipt_detail(receipt))

    def write_detail_json(self, receipt: Optional[Receipt]) -> None:
        # Field selection never applies to the detail view.
        if receipt is None:
            raise NilRecordError()
        self.out.write(dump_json(receipt.to_dict()) + "\n")

    def write_table(self, receipts: Sequence[Receipt], fields: Sequence[str] = ()) -> None:
        definitions = self.registry.resolve(fields)
        self.out.write(render_receipt_table(receipts, definitions))

    def write_json_lines(self, receipts: Sequence[Receipt], fields: Sequence[str] = ()) -> None:
        if fields:
            self.registry.resolve(fields)
        lines: List[str] = [
            dump_json(extract_receipt_fields(receipt, fields, self.registry)) for receipt in receipts
        ]
        self.out.write("".join(line + "\n" for line in lines))

    def write_list(self, receipts: Sequence[Receipt], fields: Sequence[str], output_format: str) -> None:
        if output_format == "table":
            self.write_table(receipts, fields)
        elif output_format == "json":
            self.write_json_lines(receipts, fields)
        else:
            raise UnsupportedFormatError(output_format)

    def write_receipt(self, receipt: Optional[Receipt], output_format: str) -> None:
        if output_format == "table":
            self.write_detail(receipt)
        elif output_format == "json":
            self.write_detail_json(receipt)
        else:
            raise UnsupportedFormatError(output_format)

    def write_separator(self) -> None:
        self.out.write(DETAIL_SEPARATOR + "\n")
