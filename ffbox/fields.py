"""Receipt field registry.

Every field that can be selected with ``--fields`` is declared here once, with
its table header, column alignment and two extractors: ``render`` for table
cells and ``extract`` for JSON values. The registry is built once at import and
never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from ffbox.errors import InvalidTimestampError, UnsupportedFieldError
from ffbox.models import Receipt

PLACEHOLDER = "(none)"
CURRENCY_SYMBOL = "¥"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

ALIGN_LEFT = "left"
ALIGN_RIGHT = "right"


def format_string(value: Optional[str]) -> str:
    if value is None or value == "":
        return PLACEHOLDER
    return value


def format_amount(amount: int) -> str:
    """Format an amount as yen with thousands separators, e.g. ``-¥1,234``."""
    sign = "-" if amount < 0 else ""
    return f"{sign}{CURRENCY_SYMBOL}{abs(amount):,}"


def format_datetime(value: str, dest_format: str = DATETIME_FORMAT) -> str:
    """Convert an RFC 3339 timestamp to local time."""
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise InvalidTimestampError(value) from exc
    if parsed.tzinfo is None:
        raise InvalidTimestampError(value)
    return parsed.astimezone().strftime(dest_format)


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    header: str
    alignment: str
    render: Callable[[Receipt], str]
    extract: Callable[[Receipt], Any]


class FieldRegistry:
    """Closed set of field definitions with ordered name lists."""

    def __init__(
        self,
        definitions: Iterable[FieldDefinition],
        all_names: Sequence[str],
        default_names: Sequence[str],
        aliases: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._fields = MappingProxyType({fd.name: fd for fd in definitions})
        self._all_names = tuple(all_names)
        self._default_names = tuple(default_names)
        self._aliases = MappingProxyType(dict(aliases or {}))

    @property
    def fields(self) -> Mapping[str, FieldDefinition]:
        return self._fields

    @property
    def default_names(self) -> List[str]:
        return list(self._default_names)

    def all_names(self) -> List[str]:
        return list(self._all_names)

    def get(self, name: str) -> Optional[FieldDefinition]:
        fd = self._fields.get(name)
        if fd is None and name in self._aliases:
            fd = self._fields.get(self._aliases[name])
        return fd

    def resolve(self, requested: Sequence[str]) -> List[FieldDefinition]:
        """Resolve field names to definitions, preserving the requested order.

        An empty request resolves to the default fields. The first unknown name
        raises :class:`UnsupportedFieldError` and nothing is returned.
        """
        names = list(requested) or list(self._default_names)
        selected: List[FieldDefinition] = []
        for idx, name in enumerate(names):
            fd = self.get(name)
            if fd is None:
                raise UnsupportedFieldError(idx, name)
            selected.append(fd)
        return selected

    def __contains__(self, name: object) -> bool:
        return name in self._fields


def parse_field_selection(raw: Optional[str]) -> List[str]:
    """Split a comma separated ``--fields`` value; empty means defaults."""
    if not raw:
        return []
    return [name.strip() for name in raw.split(",")]


def _metadatum_value(attr: str) -> Callable[[Receipt], Any]:
    def extract(r: Receipt) -> Any:
        if r.receipt_metadatum is None:
            return None
        return getattr(r.receipt_metadatum, attr)

    return extract


def _render_amount(r: Receipt) -> str:
    if r.receipt_metadatum is None or r.receipt_metadatum.amount is None:
        return PLACEHOLDER
    return format_amount(r.receipt_metadatum.amount)


def _render_metadatum_string(attr: str) -> Callable[[Receipt], str]:
    def render(r: Receipt) -> str:
        if r.receipt_metadatum is None:
            return PLACEHOLDER
        return format_string(getattr(r.receipt_metadatum, attr))

    return render


ALL_RECEIPT_FIELD_NAMES = (
    "id",
    "created_at",
    "description",
    "document_type",
    "invoice_registration_number",
    "mime_type",
    "origin",
    "qualified_invoice",
    "receipt_metadatum.amount",
    "receipt_metadatum.issue_date",
    "receipt_metadatum.partner_name",
    "status",
    "user.display_name",
    "user.email",
    "user.id",
)

DEFAULT_RECEIPT_FIELD_NAMES = (
    "id",
    "status",
    "created_at",
    "description",
    "receipt_metadatum.partner_name",
    "receipt_metadatum.amount",
    "receipt_metadatum.issue_date",
)

# Short names accepted in a selection; not listed by --list-fields.
RECEIPT_FIELD_ALIASES = {
    "amount": "receipt_metadatum.amount",
    "issue_date": "receipt_metadatum.issue_date",
    "partner_name": "receipt_metadatum.partner_name",
    "partner": "receipt_metadatum.partner_name",
    "user_id": "user.id",
    "user_email": "user.email",
    "user_name": "user.display_name",
    "user_display_name": "user.display_name",
}

# JSON object keys for names that share a value with another spelling.
RECEIPT_JSON_KEYS = {
    "partner": "partner_name",
    "user_display_name": "user_name",
}

RECEIPT_FIELD_DEFINITIONS = (
    FieldDefinition(
        name="id",
        header="ID",
        alignment=ALIGN_LEFT,
        render=lambda r: str(r.id),
        extract=lambda r: r.id,
    ),
    FieldDefinition(
        name="status",
        header="Status",
        alignment=ALIGN_LEFT,
        render=lambda r: r.status,
        extract=lambda r: r.status,
    ),
    FieldDefinition(
        name="created_at",
        header="Created At",
        alignment=ALIGN_LEFT,
        render=lambda r: format_datetime(r.created_at),
        extract=lambda r: r.created_at,
    ),
    FieldDefinition(
        name="description",
        header="Description",
        alignment=ALIGN_LEFT,
        render=lambda r: format_string(r.description),
        extract=lambda r: r.description,
    ),
    FieldDefinition(
        name="document_type",
        header="Document Type",
        alignment=ALIGN_LEFT,
        render=lambda r: format_string(r.document_type),
        extract=lambda r: r.document_type,
    ),
    FieldDefinition(
        name="invoice_registration_number",
        header="Invoice Reg No",
        alignment=ALIGN_LEFT,
        render=lambda r: format_string(r.invoice_registration_number),
        extract=lambda r: r.invoice_registration_number,
    ),
    FieldDefinition(
        name="mime_type",
        header="MIME Type",
        alignment=ALIGN_LEFT,
        render=lambda r: r.mime_type,
        extract=lambda r: r.mime_type,
    ),
    FieldDefinition(
        name="origin",
        header="Origin",
        alignment=ALIGN_LEFT,
        render=lambda r: r.origin,
        extract=lambda r: r.origin,
    ),
    FieldDefinition(
        name="qualified_invoice",
        header="Qualified Invoice",
        alignment=ALIGN_LEFT,
        render=lambda r: format_string(r.qualified_invoice),
        extract=lambda r: r.qualified_invoice,
    ),
    FieldDefinition(
        name="receipt_metadatum.amount",
        header="Amount",
        alignment=ALIGN_RIGHT,
        render=_render_amount,
        extract=_metadatum_value("amount"),
    ),
    FieldDefinition(
        name="receipt_metadatum.issue_date",
        header="Issue Date",
        alignment=ALIGN_LEFT,
        render=_render_metadatum_string("issue_date"),
        extract=_metadatum_value("issue_date"),
    ),
    FieldDefinition(
        name="receipt_metadatum.partner_name",
        header="Partner",
        alignment=ALIGN_LEFT,
        render=_render_metadatum_string("partner_name"),
        extract=_metadatum_value("partner_name"),
    ),
    FieldDefinition(
        name="user.display_name",
        header="User Name",
        alignment=ALIGN_LEFT,
        render=lambda r: format_string(r.user.display_name),
        extract=lambda r: r.user.display_name,
    ),
    FieldDefinition(
        name="user.email",
        header="User Email",
        alignment=ALIGN_LEFT,
        render=lambda r: r.user.email,
        extract=lambda r: r.user.email,
    ),
    FieldDefinition(
        name="user.id",
        header="User ID",
        alignment=ALIGN_LEFT,
        render=lambda r: str(r.user.id),
        extract=lambda r: r.user.id,
    ),
)

RECEIPT_FIELDS = FieldRegistry(
    RECEIPT_FIELD_DEFINITIONS,
    all_names=ALL_RECEIPT_FIELD_NAMES,
    default_names=DEFAULT_RECEIPT_FIELD_NAMES,
    aliases=RECEIPT_FIELD_ALIASES,
)
