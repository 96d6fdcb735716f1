"""Receipt records returned by the freee API and parameters for creating them."""

from __future__ import annotations

import io
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Optional

DOCUMENT_TYPES = ("receipt", "invoice", "other")
QUALIFIED_INVOICE_VALUES = ("qualified", "not_qualified", "unselected")
DESCRIPTION_MAX_LENGTH = 255


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


@dataclass(frozen=True)
class User:
    id: int
    email: str
    display_name: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "User":
        return cls(
            id=int(payload["id"]),
            email=payload.get("email", ""),
            display_name=payload.get("display_name"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"display_name": self.display_name, "email": self.email, "id": self.id})


@dataclass(frozen=True)
class ReceiptMetadatum:
    partner_name: Optional[str] = None
    issue_date: Optional[str] = None
    amount: Optional[int] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ReceiptMetadatum":
        amount = payload.get("amount")
        return cls(
            partner_name=payload.get("partner_name"),
            issue_date=payload.get("issue_date"),
            amount=int(amount) if amount is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {"amount": self.amount, "issue_date": self.issue_date, "partner_name": self.partner_name}
        )


@dataclass(frozen=True)
class Receipt:
    id: int
    status: str
    created_at: str
    origin: str
    mime_type: str
    user: User
    description: Optional[str] = None
    document_type: Optional[str] = None
    qualified_invoice: Optional[str] = None
    invoice_registration_number: Optional[str] = None
    receipt_metadatum: Optional[ReceiptMetadatum] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Receipt":
        metadatum = payload.get("receipt_metadatum")
        return cls(
            id=int(payload["id"]),
            status=payload.get("status", ""),
            created_at=payload.get("created_at", ""),
            origin=payload.get("origin", ""),
            mime_type=payload.get("mime_type", ""),
            user=User.from_dict(payload.get("user") or {"id": 0}),
            description=payload.get("description"),
            document_type=payload.get("document_type"),
            qualified_invoice=payload.get("qualified_invoice"),
            invoice_registration_number=payload.get("invoice_registration_number"),
            receipt_metadatum=ReceiptMetadatum.from_dict(metadatum) if metadatum is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Whole-record JSON representation; absent optionals are omitted."""
        return _drop_none(
            {
                "created_at": self.created_at,
                "description": self.description,
                "document_type": self.document_type,
                "id": self.id,
                "invoice_registration_number": self.invoice_registration_number,
                "mime_type": self.mime_type,
                "origin": self.origin,
                "qualified_invoice": self.qualified_invoice,
                "receipt_metadatum": (
                    self.receipt_metadatum.to_dict() if self.receipt_metadatum is not None else None
                ),
                "status": self.status,
                "user": self.user.to_dict(),
            }
        )


@dataclass(frozen=True)
class ReceiptFile:
    """A file attachment: its basename and a callable opening its content."""

    filename: str
    opener: Callable[[], BinaryIO]

    def __post_init__(self) -> None:
        object.__setattr__(self, "filename", os.path.basename(self.filename))

    @classmethod
    def from_path(cls, path: os.PathLike | str) -> "ReceiptFile":
        file_path = Path(path)
        return cls(filename=file_path.name, opener=lambda: file_path.open("rb"))

    @classmethod
    def from_bytes(cls, data: bytes, filename: str) -> "ReceiptFile":
        return cls(filename=filename, opener=lambda: io.BytesIO(data))

    def open(self) -> BinaryIO:
        return self.opener()


@dataclass
class ReceiptCreateParams:
    company_id: int
    receipt: ReceiptFile
    description: Optional[str] = None
    document_type: Optional[str] = None
    qualified_invoice: Optional[str] = None
    receipt_metadatum_amount: Optional[int] = None
    receipt_metadatum_issue_date: Optional[str] = None
    receipt_metadatum_partner_name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.description is not None and len(self.description) > DESCRIPTION_MAX_LENGTH:
            raise ValueError(f"description must be at most {DESCRIPTION_MAX_LENGTH} characters")
        if self.document_type is not None and self.document_type not in DOCUMENT_TYPES:
            raise ValueError(f"invalid document-type: {self.document_type}")
        if self.qualified_invoice is not None and self.qualified_invoice not in QUALIFIED_INVOICE_VALUES:
            raise ValueError(f"invalid qualified-invoice: {self.qualified_invoice}")
        if self.receipt_metadatum_issue_date is not None:
            try:
                datetime.strptime(self.receipt_metadatum_issue_date, "%Y-%m-%d")
            except ValueError as exc:
                raise ValueError(f"issue-date must be yyyy-mm-dd: {exc}") from exc
